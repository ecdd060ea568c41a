import pytest

from conftest import FakeBlobStore
from core.errors import NetworkError, NotFoundError, OperationCancelled
from core.services.address import resolve


def _lister(make_context, store: FakeBlobStore):
    return make_context(stores={store.account: store}).lister()


@pytest.mark.asyncio
async def test_local_directory_listing(make_context, tmp_path):
    (tmp_path / "a.txt").write_bytes(b"x" * 10)
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "b.txt").write_bytes(b"y" * 20)

    lister = make_context().lister()
    entries = await lister.collect(resolve(f"{tmp_path}/"))

    assert [(e.relative_path, e.size_bytes) for e in entries] == [("a.txt", 10), ("sub/b.txt", 20)]
    assert all(e.last_modified is not None for e in entries)


@pytest.mark.asyncio
async def test_local_non_recursive_shows_directories(make_context, tmp_path):
    (tmp_path / "a.txt").write_bytes(b"x")
    (tmp_path / "sub").mkdir()

    entries = await make_context().lister().collect(resolve(f"{tmp_path}/"), recursive=False)

    assert [(e.relative_path, e.is_directory) for e in entries] == [("a.txt", False), ("sub/", True)]


@pytest.mark.asyncio
async def test_missing_local_root(make_context, tmp_path):
    with pytest.raises(NotFoundError):
        await make_context().lister().collect(resolve(str(tmp_path / "nope")))


@pytest.mark.asyncio
async def test_remote_listing_follows_continuation_tokens(make_context):
    store = FakeBlobStore("acct", page_size=2)
    for name in ("dir/a", "dir/b", "dir/c", "dir/d", "dir/e", "other"):
        store.add("c", name, b"12345")

    entries = await _lister(make_context, store).collect(resolve("az://acct/c/dir/"))

    assert [e.relative_path for e in entries] == ["a", "b", "c", "d", "e"]
    assert store.list_calls == 3


@pytest.mark.asyncio
async def test_remote_non_recursive_uses_virtual_directories(make_context, store):
    store.add("c", "top.txt", b"1")
    store.add("c", "dir/a", b"1")
    store.add("c", "dir/deep/b", b"1")

    entries = await _lister(make_context, store).collect(resolve("az://acct/c"), recursive=False)

    assert [(e.relative_path, e.is_directory) for e in entries] == [("dir/", True), ("top.txt", False)]


@pytest.mark.asyncio
async def test_remote_leaf_address_lists_the_single_object(make_context, store):
    store.add("c", "dir/a.bin", b"abc", content_md5="aa" * 16)

    entries = await _lister(make_context, store).collect(resolve("az://acct/c/dir/a.bin"))

    assert len(entries) == 1
    assert entries[0].relative_path == "a.bin"
    assert entries[0].content_hash == "aa" * 16


@pytest.mark.asyncio
async def test_missing_container_and_prefix(make_context, store):
    lister = _lister(make_context, store)

    with pytest.raises(NotFoundError):
        await lister.collect(resolve("az://acct/missing/"))
    assert await lister.collect(resolve("az://acct/missing/"), missing_ok=True) == []

    store.add("c", "x", b"1")
    with pytest.raises(NotFoundError):
        await lister.collect(resolve("az://acct/c/nothing-here"))


@pytest.mark.asyncio
async def test_transient_page_failures_are_retried(make_context, store):
    store.add("c", "a", b"1")
    store.list_failures = [NetworkError("reset"), NetworkError("reset")]

    entries = await _lister(make_context, store).collect(resolve("az://acct/c/"))

    assert [e.relative_path for e in entries] == ["a"]


@pytest.mark.asyncio
async def test_exhausted_retries_surface_network_error(make_context, store):
    store.add("c", "a", b"1")
    store.list_failures = [NetworkError("reset")] * 3

    with pytest.raises(NetworkError, match="after 3 attempts"):
        await _lister(make_context, store).collect(resolve("az://acct/c/"))


@pytest.mark.asyncio
async def test_collect_many_keeps_input_order(make_context, store, tmp_path):
    store.add("c", "one", b"1")
    (tmp_path / "local.txt").write_bytes(b"22")

    lister = _lister(make_context, store)
    remote, local = await lister.collect_many([resolve("az://acct/c/"), resolve(f"{tmp_path}/")])

    assert [e.relative_path for e in remote] == ["one"]
    assert [e.relative_path for e in local] == ["local.txt"]


@pytest.mark.asyncio
async def test_cancelled_remote_listing_raises_operation_cancelled(make_context, store):
    store.add("c", "a", b"1")
    context = make_context(stores={store.account: store})
    context.cancel.set()

    with pytest.raises(OperationCancelled) as cancelled:
        await context.lister().collect(resolve("az://acct/c/"))

    assert cancelled.value.exit_code == 130
    assert store.list_calls == 0


@pytest.mark.asyncio
async def test_cancelled_local_listing_raises_operation_cancelled(make_context, tmp_path):
    (tmp_path / "a.txt").write_bytes(b"1")
    context = make_context()
    context.cancel.set()

    with pytest.raises(OperationCancelled):
        await context.lister().collect(resolve(f"{tmp_path}/"), recursive=False)
