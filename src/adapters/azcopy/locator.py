"""AzCopy executable discovery and version checks.

Order: `AZST_AZCOPY_PATH`, `azcopy` on PATH when it is the pinned version,
the bundled copy under `~/.local/share/azst/azcopy/`, then `azcopy` on PATH
whatever its version (with a warning).
"""

from __future__ import annotations

import asyncio
import re
import shutil
from dataclasses import dataclass
from pathlib import Path

from core.config import AppSettings
from core.errors import BackendError
from core.log import logger

PINNED_VERSION = "10.30.1"

_VERSION_RE = re.compile(r"azcopy version\s+(\S+)", re.IGNORECASE)


@dataclass(frozen=True)
class AzCopyExecutable:
    path: str
    version: str | None

    @property
    def pinned(self) -> bool:
        return self.version == PINNED_VERSION


def bundled_path() -> Path:
    return Path.home() / ".local" / "share" / "azst" / "azcopy" / "azcopy"


def parse_version(output: str) -> str | None:
    """`azcopy version 10.30.1` -> `10.30.1`."""

    match = _VERSION_RE.search(output or "")
    return match.group(1) if match else None


async def probe_version(path: str) -> str | None:
    try:
        proc = await asyncio.create_subprocess_exec(
            path,
            "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=15)
    except (OSError, asyncio.TimeoutError):
        return None
    return parse_version(stdout.decode("utf-8", errors="replace"))


async def locate_azcopy(settings: AppSettings) -> AzCopyExecutable:
    if settings.azcopy_path is not None:
        explicit = str(settings.azcopy_path)
        version = await probe_version(explicit)
        if version is None:
            raise BackendError(f"AZST_AZCOPY_PATH does not point to a working AzCopy: {explicit}")
        if version != PINNED_VERSION:
            logger.warning("AzCopy {} at {} is not the tested version {}", version, explicit, PINNED_VERSION)
        return AzCopyExecutable(path=explicit, version=version)

    on_path = shutil.which("azcopy")
    path_version = await probe_version(on_path) if on_path else None
    if on_path and path_version == PINNED_VERSION:
        return AzCopyExecutable(path=on_path, version=path_version)

    bundled = bundled_path()
    if bundled.is_file():
        bundled_version = await probe_version(str(bundled))
        if bundled_version is not None:
            return AzCopyExecutable(path=str(bundled), version=bundled_version)

    if on_path and path_version is not None:
        logger.warning(
            "Using AzCopy {} from PATH; azst is tested with {}",
            path_version,
            PINNED_VERSION,
        )
        return AzCopyExecutable(path=on_path, version=path_version)

    raise BackendError(
        f"AzCopy not found. Install AzCopy {PINNED_VERSION} on PATH, "
        f"place it at {bundled}, or set AZST_AZCOPY_PATH"
    )
