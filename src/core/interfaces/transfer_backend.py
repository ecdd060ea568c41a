"""Contrato del motor de transferencia masiva delegado.

- El ejecutor solo depende de `TransferBackend`.
- En producción AzCopy corre como subproceso; los tests usan un fake en memoria.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol, runtime_checkable

from core.domain.models import CredentialKind, TransferOptions


class BulkOperation(str, Enum):
    COPY = "copy"
    REMOVE = "remove"


@dataclass(frozen=True)
class BulkJob:
    """One batch handed to the engine.

    - `source` is the root (URL or local path) the relative `paths` live under.
      For REMOVE it is the root being deleted from.
    - `paths=None` means `source`/`destination` address single objects.
    """

    operation: BulkOperation
    source: str
    destination: str | None = None
    paths: tuple[str, ...] | None = None
    options: TransferOptions = field(default_factory=TransferOptions)
    auth_kind: CredentialKind | None = None


@dataclass
class BulkJobReport:
    status: str = "Completed"
    completed: int = 0
    skipped: int = 0
    bytes_transferred: int = 0
    failed: dict[str, str] = field(default_factory=dict)
    log_file: str | None = None
    error: str | None = None
    cancelled: bool = False

    @property
    def crashed(self) -> bool:
        """No per-item information: the whole job must be treated as failed."""

        return self.error is not None


@dataclass(frozen=True)
class BackendEvent:
    """Structured progress relayed from the engine to the UI."""

    kind: str  # info | progress | error | done
    message: str = ""
    percent: float | None = None
    completed: int | None = None
    total: int | None = None
    bytes_done: int | None = None
    bytes_total: int | None = None


EventCallback = Callable[[BackendEvent], None]


@runtime_checkable
class TransferBackend(Protocol):
    name: str

    async def run(
        self,
        job: BulkJob,
        *,
        on_event: EventCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> BulkJobReport:
        """Run `job` to completion (or cancellation). Never raises for per-item failures."""

        ...
