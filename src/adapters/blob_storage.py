"""Direct storage API client over `azure.storage.blob.aio`.

Azure SDK exceptions are translated into `core.errors` at this boundary;
nothing above this module imports `azure.*`.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from azure.core.credentials_async import AsyncTokenCredential
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.blob.aio import BlobPrefix, BlobServiceClient

from core.domain.models import BLOB_ENDPOINT_SUFFIX
from core.errors import (
    AzstError,
    ConflictError,
    NetworkError,
    NotFoundError,
    StoragePermissionError,
)
from core.interfaces.storage import BlobPage, BlobRecord, ContainerRecord

_TRANSIENT_STATUS = {408, 429, 500, 502, 503, 504}


def translate_error(exc: Exception, *, path: str | None = None) -> AzstError:
    """Map an Azure SDK exception onto the azst error taxonomy."""

    message = getattr(exc, "message", None) or str(exc)
    message = message.splitlines()[0] if message else type(exc).__name__

    if isinstance(exc, ResourceNotFoundError):
        return NotFoundError(message, path=path)
    if isinstance(exc, ResourceExistsError):
        return ConflictError(message, path=path)
    if isinstance(exc, ClientAuthenticationError):
        return StoragePermissionError(message, path=path)
    if isinstance(exc, (ServiceRequestError, ServiceResponseError)):
        return NetworkError(message, path=path)
    if isinstance(exc, HttpResponseError):
        status = exc.status_code or 0
        if status in (401, 403):
            return StoragePermissionError(message, path=path)
        if status == 404:
            return NotFoundError(message, path=path)
        if status == 409:
            return ConflictError(message, path=path)
        if status in _TRANSIENT_STATUS:
            return NetworkError(message, path=path)
    return AzstError(message, path=path)


@asynccontextmanager
async def _translated(path: str | None = None) -> AsyncIterator[None]:
    try:
        yield
    except (HttpResponseError, ServiceRequestError, ServiceResponseError) as exc:
        raise translate_error(exc, path=path) from exc


def _md5_hex(value: bytes | bytearray | None) -> str | None:
    if not value:
        return None
    return bytes(value).hex()


def _record(item: object) -> BlobRecord:
    if isinstance(item, BlobPrefix):
        return BlobRecord(name=item.name, is_prefix=True)
    settings = getattr(item, "content_settings", None)
    return BlobRecord(
        name=item.name,  # type: ignore[attr-defined]
        size=getattr(item, "size", 0) or 0,
        last_modified=getattr(item, "last_modified", None),
        content_md5=_md5_hex(getattr(settings, "content_md5", None)),
        etag=getattr(item, "etag", None),
        content_type=getattr(settings, "content_type", None),
    )


class AzureBlobStore:
    """`BlobStore` bound to one storage account."""

    def __init__(self, account: str, *, credential: AsyncTokenCredential) -> None:
        self.account = account
        # Retries are owned by core.services.retry.
        self._client = BlobServiceClient(
            account_url=f"https://{account}.{BLOB_ENDPOINT_SUFFIX}",
            credential=credential,
            retry_total=0,
        )

    def _where(self, container: str, name: str = "") -> str:
        suffix = f"/{name}" if name else ""
        return f"az://{self.account}/{container}{suffix}"

    async def list_containers(self) -> list[ContainerRecord]:
        async with _translated(f"az://{self.account}"):
            return [
                ContainerRecord(name=item.name, last_modified=item.last_modified)
                async for item in self._client.list_containers()
            ]

    async def container_exists(self, container: str) -> bool:
        async with _translated(self._where(container)):
            return await self._client.get_container_client(container).exists()

    async def list_page(
        self,
        container: str,
        *,
        prefix: str = "",
        delimiter: str | None = None,
        continuation_token: str | None = None,
    ) -> BlobPage:
        client = self._client.get_container_client(container)
        if delimiter:
            iterable = client.walk_blobs(name_starts_with=prefix or None, delimiter=delimiter)
        else:
            iterable = client.list_blobs(name_starts_with=prefix or None)

        async with _translated(self._where(container, prefix)):
            pages = iterable.by_page(continuation_token=continuation_token)
            async for page in pages:
                items = [_record(item) async for item in page]
                return BlobPage(items=items, continuation_token=pages.continuation_token or None)
        return BlobPage()

    async def get_blob(self, container: str, name: str) -> BlobRecord | None:
        client = self._client.get_blob_client(container, name)
        try:
            async with _translated(self._where(container, name)):
                properties = await client.get_blob_properties()
        except NotFoundError:
            return None
        return _record(properties)

    async def download(
        self,
        container: str,
        name: str,
        *,
        offset: int | None = None,
        length: int | None = None,
    ) -> AsyncIterator[bytes]:
        client = self._client.get_blob_client(container, name)
        async with _translated(self._where(container, name)):
            if length is not None:
                stream = await client.download_blob(offset=offset or 0, length=length)
            elif offset:
                stream = await client.download_blob(offset=offset)
            else:
                stream = await client.download_blob()
            async for chunk in stream.chunks():
                yield chunk

    async def delete_blob(self, container: str, name: str) -> None:
        async with _translated(self._where(container, name)):
            await self._client.get_blob_client(container, name).delete_blob()

    async def create_container(self, container: str) -> None:
        async with _translated(self._where(container)):
            await self._client.create_container(container)

    async def delete_container(self, container: str) -> None:
        async with _translated(self._where(container)):
            await self._client.delete_container(container)

    async def close(self) -> None:
        await self._client.close()
