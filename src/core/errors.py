"""Error taxonomy shared by services, adapters and the CLI.

Adapters translate SDK/subprocess failures into these types at their
boundary, so services and commands only ever reason about `AzstError`.
"""

from __future__ import annotations


class AzstError(Exception):
    """Base error. Carries optional path context and the process exit code."""

    exit_code: int = 1

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path and self.path not in self.message:
            return f"{self.message} ({self.path})"
        return self.message


class AddressError(AzstError):
    """Malformed or ambiguous `az://` URI / local path."""

    exit_code = 2


class UsageError(AzstError):
    """Invalid flag combination for a command (e.g. directory copy without -r)."""

    exit_code = 2


class AuthError(AzstError):
    """Every credential probe failed."""

    exit_code = 3

    def __init__(self, message: str, *, reasons: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.reasons = dict(reasons or {})

    def __str__(self) -> str:
        if not self.reasons:
            return self.message
        details = "; ".join(f"{kind}: {reason}" for kind, reason in self.reasons.items())
        return f"{self.message} [{details}]"


class NotFoundError(AzstError):
    """Missing root, container or object."""


class StoragePermissionError(AzstError):
    """Authorization denied by the storage service or the filesystem."""


class NetworkError(AzstError):
    """Transient failure that survived every allowed retry."""


class ConflictError(AzstError):
    """Target is not in a state that allows the operation (non-empty container, already exists)."""


class BackendError(AzstError):
    """The bulk-transfer engine is missing or crashed without a per-item report."""


class PartialTransferError(AzstError):
    """At least one plan item failed."""

    def __init__(self, message: str, *, failed: int, succeeded: int) -> None:
        super().__init__(message)
        self.failed = failed
        self.succeeded = succeeded


class OperationCancelled(AzstError):
    """Interrupted by the user; completed items stay completed."""

    exit_code = 130
