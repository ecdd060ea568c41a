"""Command orchestration.

Each command resolves its addresses, lists, plans and executes through the
services above. Printing, prompting and progress stay in the CLI layer;
the hooks passed in here are the only way back to it.
"""

from __future__ import annotations

import asyncio
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Callable, Sequence

from core.context import InvocationContext
from core.domain.models import (
    InventoryEntry,
    Location,
    SizeRow,
    TransferEndpoints,
    TransferOptions,
    TransferPlan,
    TransferSummary,
)
from core.errors import (
    AddressError,
    ConflictError,
    NotFoundError,
    OperationCancelled,
    PartialTransferError,
    UsageError,
)
from core.interfaces.storage import AccountRecord, ContainerRecord
from core.interfaces.transfer_backend import EventCallback
from core.log import logger
from core.services import address
from core.services.diff_engine import PatternFilter, compile_path_glob, diff, glob_depth, plan_removal
from core.services.retry import with_retries
from core.services.size_aggregator import aggregate


@dataclass(frozen=True)
class ByteRange:
    """`start-end` (inclusive), `start-` or `-N` (last N bytes)."""

    start: int | None = None
    end: int | None = None
    suffix: int | None = None

    def resolve(self, size: int) -> tuple[int, int | None]:
        """(offset, length) for an object of `size` bytes; length None reads to the end."""

        if self.suffix is not None:
            length = min(self.suffix, size)
            return size - length, length
        start = self.start or 0
        if size and start >= size:
            raise UsageError(f"Range start {start} is beyond the end of the object ({size} bytes)")
        if self.end is None:
            return start, None
        return start, self.end - start + 1


_RANGE_RE = re.compile(r"^\s*(\d*)\s*-\s*(\d*)\s*$")


def parse_range(text: str) -> ByteRange:
    match = _RANGE_RE.match(text or "")
    if not match or not (match.group(1) or match.group(2)):
        raise UsageError(f"Invalid range '{text}' (expected start-end, start- or -N)")
    start_text, end_text = match.groups()
    if not start_text:
        suffix = int(end_text)
        if suffix == 0:
            raise UsageError("Range -N needs N > 0")
        return ByteRange(suffix=suffix)
    start = int(start_text)
    end = int(end_text) if end_text else None
    if end is not None and end < start:
        raise UsageError(f"Invalid range '{text}': end is before start")
    return ByteRange(start=start, end=end)


def resolve_address(
    ctx: InvocationContext,
    text: str,
    *,
    require_container: bool = True,
    account: str | None = None,
) -> Location:
    """Resolve `text`; `account` overrides the configured default for legacy URIs."""

    return address.resolve(
        text,
        default_account=account or ctx.settings.default_account,
        require_container=require_container,
    )


def raise_for_summary(summary: TransferSummary) -> None:
    """Turn an unsuccessful summary into the command-level error."""

    if summary.failed:
        raise PartialTransferError(
            f"{summary.failed} of {len(summary.results)} item(s) failed",
            failed=summary.failed,
            succeeded=summary.succeeded,
        )
    if summary.cancelled:
        raise OperationCancelled(f"Interrupted after {summary.succeeded} completed item(s)")


def _pattern_root(location: Location, prefix: str) -> Location:
    if location.is_remote:
        return location.with_path(prefix, is_prefix=True)
    return location.with_path(prefix.rstrip("/") or ".", is_prefix=True)


def _wildcard_root(location: Location) -> tuple[Location, str | None]:
    """Split a wildcard in the last segment into (literal prefix root, pattern)."""

    split = address.split_wildcard(location.path)
    if split is None:
        return location, None
    prefix, pattern = split
    if "/" in pattern:
        raise AddressError("Wildcards are only supported in the last path segment", path=location.display())
    return _pattern_root(location, prefix), pattern


# -- ls ---------------------------------------------------------------------------------


@dataclass
class Listing:
    location: Location | None = None
    entries: list[InventoryEntry] = field(default_factory=list)
    containers: list[ContainerRecord] | None = None
    accounts: list[AccountRecord] | None = None
    account: str | None = None


async def list_accounts(ctx: InvocationContext) -> list[AccountRecord]:
    catalog = ctx.account_catalog
    if catalog is None:
        raise UsageError("Storage account discovery is not available; pass az://<account>/")
    records = await with_retries(catalog.list_accounts, settings=ctx.settings, what="list storage accounts")
    return sorted(records, key=lambda record: record.name)


async def list_containers(ctx: InvocationContext, account: str) -> list[ContainerRecord]:
    store = ctx.store_for(account)
    records = await with_retries(store.list_containers, settings=ctx.settings, what=f"list containers of {account}")
    return sorted(records, key=lambda record: record.name)


def _match_listing(
    entries: list[InventoryEntry],
    pattern: str,
    *,
    recursive: bool,
) -> list[InventoryEntry]:
    """Filter a listing by an address wildcard.

    A `**` pattern matches whole relative paths at any depth. Otherwise the
    pattern spans a fixed number of segments: entries at that depth are kept,
    deeper ones collapse into their matching directory unless `recursive`,
    in which case everything under a matching directory is kept.
    """

    matcher = compile_path_glob(pattern)
    depth = glob_depth(pattern)
    if depth is None:
        return [entry for entry in entries if matcher.match(entry.relative_path.rstrip("/"))]

    matched: dict[str, InventoryEntry] = {}
    for entry in entries:
        segments = entry.relative_path.rstrip("/").split("/")
        if len(segments) < depth or not matcher.match("/".join(segments[:depth])):
            continue
        if recursive or len(segments) == depth:
            matched.setdefault(entry.relative_path, entry)
        else:
            directory = "/".join(segments[:depth]) + "/"
            matched.setdefault(directory, InventoryEntry(relative_path=directory, is_directory=True))
    return list(matched.values())


async def list_location(
    ctx: InvocationContext,
    text: str | None,
    *,
    recursive: bool = False,
    account: str | None = None,
) -> Listing:
    """`ls`: storage accounts, containers of an account, or entries under a path/prefix."""

    if not text:
        if account:
            if not address.looks_like_account(account):
                raise AddressError(f"Invalid storage account name '{account}'")
            return Listing(containers=await list_containers(ctx, account), account=account)
        return Listing(accounts=await list_accounts(ctx))

    location = resolve_address(ctx, text, require_container=False, account=account)
    if location.is_remote and location.container is None:
        name = location.account or ""
        return Listing(containers=await list_containers(ctx, name), account=name)

    split = address.split_wildcard(location.path)
    if split is None:
        entries = await ctx.lister().collect(location, recursive=recursive)
        entries.sort(key=lambda entry: entry.relative_path)
        return Listing(location=location, entries=entries)

    prefix, pattern = split
    if location.is_prefix:
        # `dir*/` lists the contents of every matching directory.
        pattern += "/*"
    root = _pattern_root(location, prefix)
    # Patterns spanning several segments need the flat listing underneath the root.
    deep = glob_depth(pattern) != 1
    entries = await ctx.lister().collect(root, recursive=recursive or deep)
    entries = _match_listing(entries, pattern, recursive=recursive)
    entries.sort(key=lambda entry: entry.relative_path)
    return Listing(location=root, entries=entries)


# -- cat --------------------------------------------------------------------------------


async def open_object(
    ctx: InvocationContext,
    text: str,
    *,
    byte_range: ByteRange | None = None,
) -> tuple[Location, AsyncIterator[bytes]]:
    """Resolve a blob and return its content stream (optionally a byte range)."""

    location = resolve_address(ctx, text)
    if not location.is_remote:
        raise UsageError("cat reads az:// objects only", path=text)
    if location.is_prefix or not location.path:
        raise UsageError("cat needs an object, not a prefix", path=location.display())

    store = ctx.store_for(location.account or "")
    record = await with_retries(
        lambda: store.get_blob(location.container or "", location.path),
        settings=ctx.settings,
        what=f"get {location.display()}",
    )
    if record is None:
        raise NotFoundError("No such object", path=location.display())

    offset: int | None = None
    length: int | None = None
    if byte_range is not None:
        offset, length = byte_range.resolve(record.size)
    return location, store.download(location.container or "", location.path, offset=offset, length=length)


# -- cp / sync / mv ---------------------------------------------------------------------


@dataclass
class PreparedTransfer:
    plan: TransferPlan
    endpoints: TransferEndpoints
    move: bool = False


def _is_local_dir(location: Location) -> bool:
    return not location.is_remote and Path(location.path).is_dir()


def _single_destination(destination: Location, name: str) -> Location:
    if destination.is_prefix or _is_local_dir(destination):
        return destination.with_path(destination.join(name), is_prefix=False)
    return destination


async def _require_container(ctx: InvocationContext, location: Location) -> None:
    if not location.is_remote:
        return
    store = ctx.store_for(location.account or "")
    exists = await with_retries(
        lambda: store.container_exists(location.container or ""),
        settings=ctx.settings,
        what=f"check container {location.container}",
    )
    if not exists:
        raise NotFoundError(f"Container '{location.container}' does not exist", path=location.display())


async def prepare_transfer(
    ctx: InvocationContext,
    source_text: str,
    destination_text: str,
    *,
    recursive: bool = False,
    include: str | None = None,
    exclude: str | None = None,
    mirror: bool = False,
    move: bool = False,
    command: str = "cp",
) -> PreparedTransfer:
    """Resolve both sides, list them and compute the plan for cp/sync/mv."""

    source = resolve_address(ctx, source_text)
    destination = resolve_address(ctx, destination_text)
    if not source.is_remote and not destination.is_remote:
        raise UsageError(f"{command} needs at least one az:// address; use your shell for local-only work")

    patterns = PatternFilter.from_strings(include, exclude)
    lister = ctx.lister()

    source_root, wildcard = _wildcard_root(source)
    if wildcard is not None:
        patterns = PatternFilter(include=patterns.include | {wildcard}, exclude=patterns.exclude)

    single = None
    if wildcard is None and not source.is_prefix:
        single = await lister.probe_object(source)

    if single is not None:
        target = _single_destination(destination, single.relative_path)
        await _require_container(ctx, target)
        existing = await lister.probe_object(target)
        destination_entries = []
        if existing is not None:
            destination_entries.append(existing.model_copy(update={"relative_path": single.relative_path}))
        plan = diff(
            [single],
            destination_entries,
            include=patterns.include,
            exclude=patterns.exclude,
        )
        endpoints = TransferEndpoints(source=source, destination=target, single_object=True)
        return PreparedTransfer(plan=plan, endpoints=endpoints, move=move)

    if not recursive and wildcard is None:
        raise UsageError(f"{source.display()} is a directory or prefix; use -r", path=source.display())

    source_root = source_root.as_prefix()
    destination_root = destination.as_prefix()
    await _require_container(ctx, destination_root)

    source_entries, destination_entries = await asyncio.gather(
        lister.collect(source_root, recursive=True),
        lister.collect(destination_root, recursive=True, missing_ok=True),
    )
    if not source_entries and wildcard is None:
        raise NotFoundError("Nothing to transfer", path=source_root.display())

    logger.debug(
        "{}: {} source entries, {} destination entries",
        command,
        len(source_entries),
        len(destination_entries),
    )
    plan = diff(
        source_entries,
        destination_entries,
        include=patterns.include,
        exclude=patterns.exclude,
        mirror=mirror,
    )
    endpoints = TransferEndpoints(source=source_root, destination=destination_root)
    return PreparedTransfer(plan=plan, endpoints=endpoints, move=move)


async def execute_transfer(
    ctx: InvocationContext,
    prepared: PreparedTransfer,
    options: TransferOptions,
    *,
    on_event: EventCallback | None = None,
) -> TransferSummary:
    executor = ctx.executor(on_event=on_event)
    summary = await executor.execute(prepared.plan, prepared.endpoints, options, move=prepared.move)
    source = prepared.endpoints.source
    if prepared.move and source is not None and not source.is_remote and not options.dry_run:
        if not prepared.endpoints.single_object:
            prune_empty_dirs(Path(source.path))
    return summary


# -- rm ---------------------------------------------------------------------------------


async def prepare_removal(
    ctx: InvocationContext,
    text: str,
    *,
    recursive: bool = False,
    include: str | None = None,
    exclude: str | None = None,
    force: bool = False,
) -> PreparedTransfer:
    """List the target and plan one Delete per entry that survives the patterns."""

    location = resolve_address(ctx, text)
    patterns = PatternFilter.from_strings(include, exclude)
    lister = ctx.lister()

    root, wildcard = _wildcard_root(location)
    if wildcard is not None:
        patterns = PatternFilter(include=patterns.include | {wildcard}, exclude=patterns.exclude)

    if wildcard is None and not location.is_prefix:
        single = await lister.probe_object(location)
        if single is not None:
            plan = plan_removal([single], include=patterns.include, exclude=patterns.exclude)
            endpoints = TransferEndpoints(destination=location, single_object=True)
            return PreparedTransfer(plan=plan, endpoints=endpoints)

    root = root.as_prefix()
    try:
        entries = await lister.collect(root, recursive=True)
    except NotFoundError:
        if not force:
            raise
        entries = []
    if entries and not recursive and wildcard is None:
        raise UsageError(f"{location.display()} is a directory or prefix; use -r", path=location.display())
    if not entries and not force and wildcard is None:
        raise NotFoundError("Nothing to remove", path=root.display())

    plan = plan_removal(entries, include=patterns.include, exclude=patterns.exclude)
    return PreparedTransfer(plan=plan, endpoints=TransferEndpoints(destination=root))


async def execute_removal(
    ctx: InvocationContext,
    prepared: PreparedTransfer,
    options: TransferOptions,
    *,
    on_event: EventCallback | None = None,
) -> TransferSummary:
    summary = await ctx.executor(on_event=on_event).execute(prepared.plan, prepared.endpoints, options)
    root = prepared.endpoints.destination
    if not root.is_remote and not prepared.endpoints.single_object and not options.dry_run:
        prune_empty_dirs(Path(root.path))
    return summary


def prune_empty_dirs(root: Path) -> None:
    """Remove directories left empty under `root` (and `root` itself)."""

    if not root.is_dir():
        return
    for dirpath, _dirnames, _filenames in os.walk(root, topdown=False):
        try:
            os.rmdir(dirpath)
        except OSError:
            continue


# -- du ---------------------------------------------------------------------------------


async def disk_usage(
    ctx: InvocationContext,
    texts: Sequence[str],
    *,
    summarize: bool = False,
    human_readable: bool = False,
    total: bool = False,
    account: str | None = None,
) -> list[SizeRow]:
    locations = [resolve_address(ctx, text, account=account) for text in texts]
    inventories = await ctx.lister().collect_many(locations, recursive=True)
    return aggregate(
        list(zip(locations, inventories)),
        summarize=summarize,
        human_readable=human_readable,
        total=total,
    )


# -- mb / rb ----------------------------------------------------------------------------


def _container_location(ctx: InvocationContext, text: str) -> Location:
    location = resolve_address(ctx, text)
    if not location.is_remote:
        raise UsageError("Expected an az:// container address", path=text)
    if location.path:
        raise UsageError(
            "Container address must not include a path (az://account/container)",
            path=location.display(),
        )
    return location


async def make_bucket(ctx: InvocationContext, text: str, *, force: bool = False) -> bool:
    """Create a container. Returns False when it already existed and `force` is set."""

    location = _container_location(ctx, text)
    store = ctx.store_for(location.account or "")
    try:
        await with_retries(
            lambda: store.create_container(location.container or ""),
            settings=ctx.settings,
            what=f"create container {location.container}",
        )
    except ConflictError:
        if force:
            return False
        raise
    return True


async def remove_bucket(
    ctx: InvocationContext,
    text: str,
    *,
    force: bool = False,
    confirm: Callable[[str], bool] | None = None,
) -> bool:
    """Delete a container. Returns False when the user declined the prompt."""

    location = _container_location(ctx, text)
    container = location.container or ""
    store = ctx.store_for(location.account or "")

    exists = await with_retries(
        lambda: store.container_exists(container),
        settings=ctx.settings,
        what=f"check container {container}",
    )
    if not exists:
        raise NotFoundError(f"Container '{container}' does not exist", path=location.display())

    page = await with_retries(
        lambda: store.list_page(container),
        settings=ctx.settings,
        what=f"list {location.display()}",
    )
    if page.items and not force:
        raise ConflictError(
            f"Container '{container}' is not empty; use -f to remove it with its contents",
            path=location.display(),
        )
    if not force and confirm is not None and not confirm(f"Remove empty container '{container}'?"):
        return False

    await with_retries(
        lambda: store.delete_container(container),
        settings=ctx.settings,
        what=f"delete container {container}",
    )
    return True
