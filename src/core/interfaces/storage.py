"""Contratos de la API directa de almacenamiento.

- `BlobStore`: metadatos y lecturas dentro de una cuenta.
- `AccountCatalog`: descubrimiento de cuentas en el plano de gestión.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Protocol, runtime_checkable


@dataclass(frozen=True)
class BlobRecord:
    """One listing item: a blob, or a virtual directory when `is_prefix`."""

    name: str
    size: int = 0
    last_modified: datetime | None = None
    content_md5: str | None = None
    etag: str | None = None
    content_type: str | None = None
    is_prefix: bool = False


@dataclass(frozen=True)
class BlobPage:
    items: list[BlobRecord] = field(default_factory=list)
    continuation_token: str | None = None


@dataclass(frozen=True)
class ContainerRecord:
    name: str
    last_modified: datetime | None = None


@dataclass(frozen=True)
class AccountRecord:
    """A storage account visible to the resolved credential."""

    name: str
    location: str = ""
    resource_group: str = ""
    subscription_id: str = ""


@runtime_checkable
class AccountCatalog(Protocol):
    """Management-plane lookup of storage accounts.

    Raises `StoragePermissionError`, `NetworkError` or `AzstError`.
    """

    async def list_accounts(self) -> list[AccountRecord]: ...


@runtime_checkable
class BlobStore(Protocol):
    """Async client bound to one storage account.

    Implementations raise `core.errors` types only: `NotFoundError`,
    `StoragePermissionError`, `ConflictError`, `NetworkError`.
    """

    account: str

    async def list_containers(self) -> list[ContainerRecord]: ...

    async def container_exists(self, container: str) -> bool: ...

    async def list_page(
        self,
        container: str,
        *,
        prefix: str = "",
        delimiter: str | None = None,
        continuation_token: str | None = None,
    ) -> BlobPage:
        """Fetch one page; `continuation_token=None` on the result means last page."""

        ...

    async def get_blob(self, container: str, name: str) -> BlobRecord | None:
        """Properties of one blob, or None when it does not exist."""

        ...

    def download(
        self,
        container: str,
        name: str,
        *,
        offset: int | None = None,
        length: int | None = None,
    ) -> AsyncIterator[bytes]: ...

    async def delete_blob(self, container: str, name: str) -> None: ...

    async def create_container(self, container: str) -> None: ...

    async def delete_container(self, container: str) -> None: ...

    async def close(self) -> None: ...
