"""Executor behaviour against the in-memory store and backend."""

import pytest

from conftest import FakeTransferBackend
from core.domain.models import (
    ActionKind,
    InventoryEntry,
    Outcome,
    TransferEndpoints,
    TransferOptions,
)
from core.errors import StoragePermissionError
from core.interfaces.transfer_backend import BulkOperation
from core.services.address import resolve
from core.services.diff_engine import diff, plan_removal


def entries(*names: str, size: int = 10) -> list[InventoryEntry]:
    return [InventoryEntry(relative_path=name, size_bytes=size) for name in names]


@pytest.mark.asyncio
async def test_dry_run_touches_nothing_and_mirrors_the_plan(make_context, backend, store):
    store.add("c", "dir/old", b"x")
    plan = diff(entries("a", "b"), entries("old"), mirror=True)
    endpoints = TransferEndpoints(source=resolve("/tmp/src/"), destination=resolve("az://acct/c/dir/"))

    summary = await make_context().executor().execute(plan, endpoints, TransferOptions(dry_run=True))

    assert backend.jobs == []
    assert store.deleted == []
    assert summary.dry_run is True
    assert [(r.action.relative_path, r.outcome, r.reason) for r in summary.results] == [
        ("a", Outcome.SKIPPED, "dry-run"),
        ("b", Outcome.SKIPPED, "dry-run"),
        ("old", Outcome.SKIPPED, "dry-run"),
    ]


@pytest.mark.asyncio
async def test_copy_job_carries_roots_paths_and_auth(make_context, backend):
    plan = diff(entries("a.txt", "sub/b.txt"), [])
    endpoints = TransferEndpoints(source=resolve("/data/src/"), destination=resolve("az://acct/c/up/"))

    summary = await make_context().executor().execute(plan, endpoints, TransferOptions(concurrency=3))

    (job,) = backend.jobs
    assert job.operation is BulkOperation.COPY
    assert job.source == "/data/src"
    assert job.destination == "https://acct.blob.core.windows.net/c/up"
    assert job.paths == ("a.txt", "sub/b.txt")
    assert job.options.concurrency == 3
    assert job.auth_kind is not None
    assert summary.succeeded == 2
    assert summary.bytes_transferred == 20
    assert summary.ok


@pytest.mark.asyncio
async def test_per_item_backend_failures_are_reported(make_context):
    backend = FakeTransferBackend(failures={"b": "Failed (HTTP 403)"})
    plan = diff(entries("a", "b", "c"), [])
    endpoints = TransferEndpoints(source=resolve("/src/"), destination=resolve("az://acct/c/"))

    summary = await make_context(transfer_backend=backend).executor().execute(plan, endpoints, TransferOptions())

    assert (summary.succeeded, summary.failed) == (2, 1)
    assert summary.failures[0].action.relative_path == "b"
    assert summary.failures[0].reason == "Failed (HTTP 403)"


@pytest.mark.asyncio
async def test_crashed_backend_fails_every_item(make_context):
    backend = FakeTransferBackend(crash="azcopy exited with code 1")
    plan = diff(entries("a", "b"), [])
    endpoints = TransferEndpoints(source=resolve("/src/"), destination=resolve("az://acct/c/"))

    summary = await make_context(transfer_backend=backend).executor().execute(plan, endpoints, TransferOptions())

    assert summary.failed == 2
    assert {r.reason for r in summary.results} == {"azcopy exited with code 1"}


@pytest.mark.asyncio
async def test_rm_with_one_permission_error(make_context, store):
    for name in ("dir/a", "dir/b", "dir/c"):
        store.add("c", name, b"1")
    store.delete_failures["dir/b"] = StoragePermissionError("AuthorizationPermissionMismatch")

    plan = plan_removal(entries("a", "b", "c"))
    summary = await make_context().executor().execute(
        plan, TransferEndpoints(destination=resolve("az://acct/c/dir/")), TransferOptions()
    )

    assert (summary.succeeded, summary.failed) == (2, 1)
    assert summary.failures[0].action.relative_path == "b"
    assert sorted(store.deleted) == ["dir/a", "dir/c"]


@pytest.mark.asyncio
async def test_force_treats_missing_objects_as_removed(make_context, store):
    store.add("c", "dir/a", b"1")
    plan = plan_removal(entries("a", "gone"))
    endpoints = TransferEndpoints(destination=resolve("az://acct/c/dir/"))

    strict = await make_context().executor().execute(plan, endpoints, TransferOptions())
    assert strict.failed == 1

    store.add("c", "dir/a", b"1")
    plan = plan_removal(entries("a", "gone"))
    forced = await make_context().executor().execute(plan, endpoints, TransferOptions(force=True))
    assert forced.failed == 0
    assert {r.reason for r in forced.results} == {None, "already absent"}


@pytest.mark.asyncio
async def test_large_remote_delete_goes_to_bulk_backend(make_context, backend, settings):
    names = [f"f{i:03d}" for i in range(settings.direct_delete_threshold + 1)]
    plan = plan_removal(entries(*names))

    summary = await make_context().executor().execute(
        plan, TransferEndpoints(destination=resolve("az://acct/c/")), TransferOptions()
    )

    (job,) = backend.jobs
    assert job.operation is BulkOperation.REMOVE
    assert job.source == "https://acct.blob.core.windows.net/c"
    assert len(job.paths) == len(names)
    assert summary.succeeded == len(names)


@pytest.mark.asyncio
async def test_local_deletes_use_the_filesystem(make_context, backend, tmp_path):
    (tmp_path / "a").write_bytes(b"1")
    plan = plan_removal(entries("a", "missing"))

    summary = await make_context().executor().execute(
        plan, TransferEndpoints(destination=resolve(f"{tmp_path}/")), TransferOptions()
    )

    assert not (tmp_path / "a").exists()
    assert backend.jobs == []
    assert (summary.succeeded, summary.failed) == (1, 1)


@pytest.mark.asyncio
async def test_move_keeps_sources_whose_copy_failed(make_context, tmp_path):
    for name in ("a", "b"):
        (tmp_path / name).write_bytes(b"1")
    backend = FakeTransferBackend(failures={"b": "Failed (HTTP 500)"})
    plan = diff(entries("a", "b"), [])
    endpoints = TransferEndpoints(source=resolve(f"{tmp_path}/"), destination=resolve("az://acct/c/"))

    summary = await make_context(transfer_backend=backend).executor().execute(
        plan, endpoints, TransferOptions(), move=True
    )

    assert not (tmp_path / "a").exists()
    assert (tmp_path / "b").exists()
    assert (summary.succeeded, summary.failed) == (1, 1)


@pytest.mark.asyncio
async def test_move_removes_unchanged_sources(make_context, store, backend):
    store.add("c", "src/a", b"1234567890")
    plan = diff(entries("a"), entries("a"))
    endpoints = TransferEndpoints(source=resolve("az://acct/c/src/"), destination=resolve("az://acct/c/dst/"))

    summary = await make_context().executor().execute(plan, endpoints, TransferOptions(), move=True)

    assert backend.jobs == []
    assert store.deleted == ["src/a"]
    assert summary.skipped == 1


@pytest.mark.asyncio
async def test_cancel_before_start_leaves_items_unreported(make_context, backend):
    ctx = make_context()
    ctx.cancel.set()
    plan = diff(entries("a"), entries("b"), mirror=True)
    endpoints = TransferEndpoints(source=resolve("/src/"), destination=resolve("az://acct/c/"))

    summary = await ctx.executor().execute(plan, endpoints, TransferOptions())

    assert summary.cancelled is True
    assert summary.results == []
    assert backend.jobs == []


@pytest.mark.asyncio
async def test_plan_order_is_preserved_in_results(make_context, store):
    store.add("c", "z", b"1")
    plan = diff(entries("b", "a"), entries("z"), mirror=True)
    endpoints = TransferEndpoints(source=resolve("/src/"), destination=resolve("az://acct/c/"))

    summary = await make_context().executor().execute(plan, endpoints, TransferOptions())

    assert [(r.action.relative_path, r.action.kind) for r in summary.results] == [
        ("a", ActionKind.ADD),
        ("b", ActionKind.ADD),
        ("z", ActionKind.DELETE),
    ]
