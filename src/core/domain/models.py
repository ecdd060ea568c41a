"""Modelos del dominio (Pydantic v2).

Describen *qué* se mueve (direcciones, inventarios, planes, resultados),
nunca *cómo*: aquí no vive código de SDK, subprocesos ni CLI.

Nota:
- Las rutas relativas usan siempre `/`, también para ficheros locales.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel, Field, PrivateAttr, model_validator
from pydantic.config import ConfigDict

BLOB_ENDPOINT_SUFFIX = "blob.core.windows.net"


class Scheme(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class Location(BaseModel):
    """Normalized address with prefix/leaf intent. Immutable once resolved."""

    model_config = ConfigDict(frozen=True)

    scheme: Scheme
    account: str | None = Field(default=None, description="Storage account (remote only).")
    container: str | None = Field(default=None, description="Container (remote only).")
    path: str = Field(
        default="",
        description="Blob path inside the container, or the local filesystem path.",
    )
    is_prefix: bool = Field(
        default=False,
        description="A trailing separator marks everything under `path` rather than one object.",
    )

    @property
    def is_remote(self) -> bool:
        return self.scheme is Scheme.REMOTE

    @property
    def name(self) -> str:
        """Last path segment ('' for a container root)."""

        return self.path.rstrip("/").rsplit("/", 1)[-1]

    def as_prefix(self) -> Location:
        """Same address with directory intent."""

        if self.is_prefix:
            return self
        return self.model_copy(update={"is_prefix": True})

    def with_path(self, path: str, *, is_prefix: bool = False) -> Location:
        return self.model_copy(update={"path": path, "is_prefix": is_prefix})

    def join(self, relative_path: str) -> str:
        """Full path/key of `relative_path` under this location."""

        relative_path = relative_path.lstrip("/")
        base = self.path.rstrip("/")
        if not base and self.path.startswith("/"):
            return "/" + relative_path
        if not base:
            return relative_path if self.is_remote else relative_path or "."
        if not relative_path:
            return base
        return f"{base}/{relative_path}"

    def display(self) -> str:
        if not self.is_remote:
            return self.path
        parts = [self.account or ""]
        if self.container:
            parts.append(self.container)
            if self.path:
                parts.append(self.path.rstrip("/"))
        text = "az://" + "/".join(parts)
        if self.is_prefix and self.container:
            text += "/"
        return text

    def https_url(self, path: str | None = None) -> str:
        """HTTPS endpoint for the delegated bulk engine."""

        if not self.is_remote or not self.account:
            raise ValueError("https_url() requires a remote location with an account")
        url = f"https://{self.account}.{BLOB_ENDPOINT_SUFFIX}"
        if self.container:
            url += f"/{self.container}"
            key = self.path if path is None else path
            if key:
                url += "/" + quote(key.strip("/"), safe="/")
        return url


class CredentialKind(str, Enum):
    SERVICE_PRINCIPAL = "service_principal"
    MANAGED_IDENTITY = "managed_identity"
    CLI_SESSION = "cli_session"

    @classmethod
    def parse(cls, value: str) -> CredentialKind:
        """Accept the canonical names plus the short aliases users tend to type."""

        aliases = {
            "environment": cls.SERVICE_PRINCIPAL,
            "env": cls.SERVICE_PRINCIPAL,
            "sp": cls.SERVICE_PRINCIPAL,
            "spn": cls.SERVICE_PRINCIPAL,
            "msi": cls.MANAGED_IDENTITY,
            "managed": cls.MANAGED_IDENTITY,
            "cli": cls.CLI_SESSION,
            "azcli": cls.CLI_SESSION,
        }
        key = value.strip().lower().replace("-", "_")
        if key in aliases:
            return aliases[key]
        return cls(key)


class Credential(BaseModel):
    """Resolved identity, shared read-only by every task of one invocation."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: CredentialKind
    material: Any = Field(
        default=None,
        repr=False,
        exclude=True,
        description="Bearer token for the storage scope.",
    )
    expires_on: datetime = Field(..., description="Token expiry (UTC).")

    def is_expired(self, *, now: datetime | None = None, skew_seconds: int = 120) -> bool:
        now = now or datetime.now(timezone.utc)
        return now + timedelta(seconds=skew_seconds) >= self.expires_on


class InventoryEntry(BaseModel):
    """One listed object/file (or virtual directory) relative to the listing root."""

    model_config = ConfigDict(frozen=True)

    relative_path: str = Field(..., description="Path relative to the operation root, '/'-separated.")
    size_bytes: int = Field(default=0, ge=0)
    last_modified: datetime | None = None
    content_hash: str | None = Field(
        default=None,
        description="Integrity checksum (hex MD5) when the backend exposes one.",
    )
    is_directory: bool = False


class ActionKind(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"
    SKIP = "skip"


class SkipReason(str, Enum):
    PATTERN_EXCLUDED = "pattern-excluded"
    NOT_INCLUDED = "pattern-not-included"
    UNCHANGED = "unchanged"


class TransferAction(BaseModel):
    """Tagged action over one relative path; `reason` is set only for Skip."""

    model_config = ConfigDict(frozen=True)

    kind: ActionKind
    relative_path: str
    source: InventoryEntry | None = None
    destination: InventoryEntry | None = None
    reason: SkipReason | None = None

    @model_validator(mode="after")
    def _reason_only_for_skip(self) -> TransferAction:
        if (self.kind is ActionKind.SKIP) != (self.reason is not None):
            raise ValueError("Skip actions need a reason; other actions must not carry one")
        return self

    @property
    def moves_content(self) -> bool:
        return self.kind in (ActionKind.ADD, ActionKind.UPDATE)

    def label(self) -> str:
        if self.kind is ActionKind.SKIP and self.reason is not None:
            return f"skip({self.reason.value})"
        return self.kind.value


class TransferPlan(BaseModel):
    """Ordered actions plus aggregate counts. Consumed exactly once by the executor."""

    actions: tuple[TransferAction, ...] = ()

    _consumed: bool = PrivateAttr(default=False)

    @property
    def counts(self) -> dict[ActionKind, int]:
        tally = Counter(action.kind for action in self.actions)
        return {kind: tally.get(kind, 0) for kind in ActionKind}

    @property
    def total_bytes(self) -> int:
        return sum(
            action.source.size_bytes
            for action in self.actions
            if action.moves_content and action.source is not None
        )

    @property
    def is_noop(self) -> bool:
        return all(action.kind is ActionKind.SKIP for action in self.actions)

    @property
    def consumed(self) -> bool:
        return self._consumed

    def of_kind(self, *kinds: ActionKind) -> list[TransferAction]:
        return [action for action in self.actions if action.kind in kinds]

    def consume(self) -> tuple[TransferAction, ...]:
        if self._consumed:
            raise RuntimeError("TransferPlan was already executed")
        self._consumed = True
        return self.actions


class TransferEndpoints(BaseModel):
    """Roots a plan's relative paths are resolved against."""

    model_config = ConfigDict(frozen=True)

    source: Location | None = None
    destination: Location
    single_object: bool = Field(
        default=False,
        description="Plan moves one object whose destination key may differ from its name.",
    )

    def source_key(self, relative_path: str) -> str:
        if self.source is None:
            raise ValueError("plan has no source side")
        if self.single_object:
            return self.source.path
        return self.source.join(relative_path)

    def destination_key(self, relative_path: str) -> str:
        if self.single_object:
            return self.destination.path
        return self.destination.join(relative_path)


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class TransferResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: TransferAction
    outcome: Outcome
    reason: str | None = Field(default=None, description="Failure or skip reason.")
    bytes_transferred: int = Field(default=0, ge=0)
    duration: float = Field(default=0.0, ge=0, description="Seconds.")


class TransferOptions(BaseModel):
    """Execution knobs. Backend-specific ones are passed through, not reimplemented."""

    model_config = ConfigDict(frozen=True)

    concurrency: int = Field(default=8, ge=1, le=256)
    dry_run: bool = False
    cap_mbps: float | None = Field(default=None, gt=0)
    block_size_mb: float | None = Field(default=None, gt=0)
    put_hash: bool = False
    force: bool = False


class TransferSummary(BaseModel):
    """Command-level collection of per-item results."""

    results: list[TransferResult] = Field(default_factory=list)
    dry_run: bool = False
    cancelled: bool = Field(
        default=False,
        description="Interrupted: `results` is incomplete.",
    )
    duration: float = 0.0
    log_file: str | None = Field(default=None, description="Bulk engine log, when one ran.")

    def _count(self, outcome: Outcome) -> int:
        return sum(1 for result in self.results if result.outcome is outcome)

    @property
    def succeeded(self) -> int:
        return self._count(Outcome.SUCCESS)

    @property
    def failed(self) -> int:
        return self._count(Outcome.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(Outcome.SKIPPED)

    @property
    def bytes_transferred(self) -> int:
        return sum(result.bytes_transferred for result in self.results)

    @property
    def failures(self) -> list[TransferResult]:
        return [result for result in self.results if result.outcome is Outcome.FAILED]

    @property
    def ok(self) -> bool:
        return not self.cancelled and self.failed == 0


class SizeRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    size_bytes: int = Field(..., ge=0)
    display_size: str
    is_total: bool = False
