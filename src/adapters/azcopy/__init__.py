from adapters.azcopy.locator import PINNED_VERSION, AzCopyExecutable, locate_azcopy
from adapters.azcopy.runner import AzCopyBackend

__all__ = [
    "PINNED_VERSION",
    "AzCopyBackend",
    "AzCopyExecutable",
    "locate_azcopy",
]
