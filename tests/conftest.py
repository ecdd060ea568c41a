"""Shared fixtures and in-memory fakes for the storage and transfer backends."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable

import pytest

from core.config import AppSettings
from core.context import InvocationContext
from core.domain.models import Credential, CredentialKind
from core.errors import AzstError, ConflictError, NotFoundError
from core.interfaces.credentials import STORAGE_SCOPE, ProbeFailure
from core.interfaces.storage import AccountRecord, BlobPage, BlobRecord, ContainerRecord
from core.interfaces.transfer_backend import BackendEvent, BulkJob, BulkJobReport
from core.services.credential_chain import CredentialChain

EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


@dataclass
class FakeBlob:
    data: bytes = b""
    last_modified: datetime = EPOCH
    content_md5: str | None = None


class FakeBlobStore:
    """Dict-backed `BlobStore` with injectable failures."""

    def __init__(self, account: str = "acct", *, page_size: int = 1000) -> None:
        self.account = account
        self.page_size = page_size
        self.containers: dict[str, dict[str, FakeBlob]] = {}
        self.delete_failures: dict[str, AzstError] = {}
        self.list_failures: list[AzstError] = []
        self.deleted: list[str] = []
        self.list_calls = 0
        self.closed = False

    def add(
        self,
        container: str,
        name: str,
        data: bytes = b"",
        *,
        content_md5: str | None = None,
        last_modified: datetime = EPOCH,
    ) -> None:
        self.containers.setdefault(container, {})[name] = FakeBlob(data, last_modified, content_md5)

    def _record(self, name: str, blob: FakeBlob) -> BlobRecord:
        return BlobRecord(
            name=name,
            size=len(blob.data),
            last_modified=blob.last_modified,
            content_md5=blob.content_md5,
        )

    def _container(self, container: str) -> dict[str, FakeBlob]:
        if container not in self.containers:
            raise NotFoundError(f"container {container} not found")
        return self.containers[container]

    async def list_containers(self) -> list[ContainerRecord]:
        return [ContainerRecord(name=name, last_modified=EPOCH) for name in self.containers]

    async def container_exists(self, container: str) -> bool:
        return container in self.containers

    async def list_page(
        self,
        container: str,
        *,
        prefix: str = "",
        delimiter: str | None = None,
        continuation_token: str | None = None,
    ) -> BlobPage:
        self.list_calls += 1
        if self.list_failures:
            raise self.list_failures.pop(0)
        blobs = self._container(container)
        items: list[BlobRecord] = []
        seen_prefixes: set[str] = set()
        for name in sorted(blobs):
            if not name.startswith(prefix):
                continue
            rest = name[len(prefix):]
            if delimiter and delimiter in rest:
                virtual = prefix + rest.split(delimiter, 1)[0] + delimiter
                if virtual not in seen_prefixes:
                    seen_prefixes.add(virtual)
                    items.append(BlobRecord(name=virtual, is_prefix=True))
                continue
            items.append(self._record(name, blobs[name]))

        start = int(continuation_token or 0)
        end = start + self.page_size
        token = str(end) if end < len(items) else None
        return BlobPage(items=items[start:end], continuation_token=token)

    async def get_blob(self, container: str, name: str) -> BlobRecord | None:
        blob = self.containers.get(container, {}).get(name)
        return None if blob is None else self._record(name, blob)

    async def download(
        self,
        container: str,
        name: str,
        *,
        offset: int | None = None,
        length: int | None = None,
    ) -> AsyncIterator[bytes]:
        blob = self._container(container).get(name)
        if blob is None:
            raise NotFoundError("blob not found", path=name)
        start = offset or 0
        end = len(blob.data) if length is None else start + length
        data = blob.data[start:end]
        for index in range(0, len(data), 4):
            yield data[index:index + 4]

    async def delete_blob(self, container: str, name: str) -> None:
        if name in self.delete_failures:
            raise self.delete_failures[name]
        blobs = self._container(container)
        if name not in blobs:
            raise NotFoundError("blob not found", path=name)
        del blobs[name]
        self.deleted.append(name)

    async def create_container(self, container: str) -> None:
        if container in self.containers:
            raise ConflictError("container already exists")
        self.containers[container] = {}

    async def delete_container(self, container: str) -> None:
        self._container(container)
        del self.containers[container]

    async def close(self) -> None:
        self.closed = True


class FakeTransferBackend:
    """Records jobs and returns scripted reports."""

    name = "fake"

    def __init__(
        self,
        *,
        failures: dict[str, str] | None = None,
        crash: str | None = None,
        on_job: Callable[[BulkJob], None] | None = None,
    ) -> None:
        self.jobs: list[BulkJob] = []
        self.failures = dict(failures or {})
        self.crash = crash
        self.on_job = on_job

    async def run(
        self,
        job: BulkJob,
        *,
        on_event=None,
        cancel: asyncio.Event | None = None,
    ) -> BulkJobReport:
        self.jobs.append(job)
        if self.crash is not None:
            return BulkJobReport(status="Failed", error=self.crash)
        if self.on_job is not None:
            self.on_job(job)

        paths = job.paths if job.paths is not None else (job.source,)
        failed = {path: reason for path, reason in self.failures.items() if path in paths}
        if on_event is not None:
            on_event(BackendEvent(kind="done", message="Completed", completed=len(paths) - len(failed)))
        return BulkJobReport(
            status="CompletedWithErrors" if failed else "Completed",
            completed=len(paths) - len(failed),
            failed=failed,
        )


class StubProbe:
    """Credential probe with a scripted outcome."""

    def __init__(
        self,
        kind: CredentialKind,
        *,
        failure: str | None = None,
        lifetime: timedelta = timedelta(hours=1),
    ) -> None:
        self.kind = kind
        self.failure = failure
        self.lifetime = lifetime
        self.calls = 0

    async def attempt(self, scope: str = STORAGE_SCOPE) -> Credential:
        self.calls += 1
        if self.failure is not None:
            raise ProbeFailure(self.failure)
        return Credential(
            kind=self.kind,
            material=f"token-{self.kind.value}-{self.calls}",
            expires_on=datetime.now(timezone.utc) + self.lifetime,
        )


class FakeAccountCatalog:
    """Fixed storage account list with an optional scripted failure."""

    def __init__(self, accounts: list[AccountRecord] | None = None, *, failures: list[AzstError] | None = None) -> None:
        self.accounts = list(accounts or [])
        self.failures = list(failures or [])
        self.calls = 0

    async def list_accounts(self) -> list[AccountRecord]:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return list(self.accounts)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep the developer's environment and user config out of the tests."""

    import os

    for key in list(os.environ):
        if key.startswith(("AZST_", "AZCOPY_")) or key == "AZURE_CREDENTIAL_KIND":
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        _env_file=None,
        default_account="acct",
        concurrency=4,
        max_retries=2,
        retry_backoff_seconds=0.0,
        retry_backoff_cap_seconds=0.0,
        direct_delete_threshold=50,
    )


@pytest.fixture
def store() -> FakeBlobStore:
    return FakeBlobStore("acct")


@pytest.fixture
def backend() -> FakeTransferBackend:
    return FakeTransferBackend()


@pytest.fixture
def make_context(settings, store, backend):
    def factory(
        *,
        stores: dict[str, FakeBlobStore] | None = None,
        transfer_backend: FakeTransferBackend | None = None,
        app_settings: AppSettings | None = None,
        catalog: FakeAccountCatalog | None = None,
    ) -> InvocationContext:
        by_account = stores or {store.account: store}

        def store_factory(account: str) -> FakeBlobStore:
            if account not in by_account:
                by_account[account] = FakeBlobStore(account)
            return by_account[account]

        return InvocationContext(
            settings=app_settings or settings,
            credentials=CredentialChain([StubProbe(CredentialKind.CLI_SESSION)]),
            backend=transfer_backend or backend,
            store_factory=store_factory,
            account_catalog=catalog or FakeAccountCatalog(),
        )

    return factory
