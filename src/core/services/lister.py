"""Inventory listing for local and remote locations.

`Lister.list` is an async generator: restartable only by calling it again,
never resumable mid-stream. Remote pages are fetched through the direct
API, each page retried with bounded backoff; entries already yielded stay
yielded if a later page finally fails with `NetworkError`.
"""

from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Callable, Sequence

from core.config import AppSettings
from core.domain.models import InventoryEntry, Location
from core.errors import NotFoundError, OperationCancelled, StoragePermissionError
from core.interfaces.storage import BlobRecord, BlobStore
from core.log import logger
from core.services.retry import with_retries


def entry_from_record(record: BlobRecord, *, prefix: str) -> InventoryEntry:
    relative = record.name[len(prefix):] if record.name.startswith(prefix) else record.name
    return InventoryEntry(
        relative_path=relative,
        size_bytes=record.size,
        last_modified=record.last_modified,
        content_hash=record.content_md5,
        is_directory=record.is_prefix,
    )


def _local_entry(path: Path, relative_path: str) -> InventoryEntry:
    stat = path.stat()
    return InventoryEntry(
        relative_path=relative_path,
        size_bytes=stat.st_size,
        last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        content_hash=None,
    )


class Lister:
    """Produces `InventoryEntry` sequences from the filesystem or the direct API."""

    def __init__(
        self,
        *,
        store_for: Callable[[str], BlobStore],
        settings: AppSettings,
        cancel: asyncio.Event | None = None,
    ) -> None:
        self._store_for = store_for
        self._settings = settings
        self._cancel = cancel

    async def list(self, location: Location, *, recursive: bool = True) -> AsyncIterator[InventoryEntry]:
        if location.is_remote:
            async for entry in self._list_remote(location, recursive=recursive):
                yield entry
        else:
            async for entry in self._list_local(location, recursive=recursive):
                yield entry

    async def collect(
        self,
        location: Location,
        *,
        recursive: bool = True,
        missing_ok: bool = False,
    ) -> list[InventoryEntry]:
        try:
            return [entry async for entry in self.list(location, recursive=recursive)]
        except NotFoundError:
            if missing_ok:
                return []
            raise

    async def collect_many(
        self,
        locations: Sequence[Location],
        *,
        recursive: bool = True,
        concurrency: int | None = None,
    ) -> list[list[InventoryEntry]]:
        """List several roots through a bounded pool; results keep input order."""

        sem = asyncio.Semaphore(max(1, concurrency or self._settings.concurrency))
        slots: list[list[InventoryEntry]] = [[] for _ in locations]

        async def list_one(index: int, location: Location) -> None:
            async with sem:
                slots[index] = await self.collect(location, recursive=recursive)

        await asyncio.gather(*(list_one(i, loc) for i, loc in enumerate(locations)))
        return slots

    async def probe_object(self, location: Location) -> InventoryEntry | None:
        """The single object/file at `location`, or None if it is absent or a directory."""

        if location.is_prefix:
            return None
        if location.is_remote:
            store = self._store_for(location.account or "")
            record = await with_retries(
                lambda: store.get_blob(location.container or "", location.path),
                settings=self._settings,
                what=f"get {location.display()}",
            )
            if record is None:
                return None
            entry = entry_from_record(record, prefix="")
            return entry.model_copy(update={"relative_path": location.name})
        path = Path(location.path)
        if not path.is_file():
            return None
        return await asyncio.to_thread(_local_entry, path, path.name)

    # -- remote -----------------------------------------------------------------------

    async def _list_remote(self, location: Location, *, recursive: bool) -> AsyncIterator[InventoryEntry]:
        store = self._store_for(location.account or "")
        container = location.container or ""

        exists = await with_retries(
            lambda: store.container_exists(container),
            settings=self._settings,
            what=f"check container {container}",
        )
        if not exists:
            raise NotFoundError(f"Container '{container}' does not exist", path=location.display())

        if not location.is_prefix and location.path:
            single = await self.probe_object(location)
            if single is not None:
                yield single
                return

        prefix = location.path.rstrip("/") + "/" if location.path else ""
        delimiter = None if recursive else "/"
        token: str | None = None
        found = 0

        while True:
            self._checkpoint(location.display())
            current = token
            page = await with_retries(
                lambda: store.list_page(
                    container,
                    prefix=prefix,
                    delimiter=delimiter,
                    continuation_token=current,
                ),
                settings=self._settings,
                what=f"list {location.display()}",
            )
            logger.debug("Listed page of {} items under {}", len(page.items), location.display())
            for record in page.items:
                entry = entry_from_record(record, prefix=prefix)
                if not entry.relative_path:
                    continue
                found += 1
                yield entry
            token = page.continuation_token
            if not token:
                break

        if found == 0 and not location.is_prefix and location.path:
            raise NotFoundError("No such object or prefix", path=location.display())

    # -- local ------------------------------------------------------------------------

    async def _list_local(self, location: Location, *, recursive: bool) -> AsyncIterator[InventoryEntry]:
        root = Path(location.path)
        if not root.exists():
            raise NotFoundError("Path does not exist", path=location.path)
        if root.is_file():
            if location.is_prefix:
                raise NotFoundError("Not a directory", path=location.path)
            yield await asyncio.to_thread(_local_entry, root, root.name)
            return

        entries = await asyncio.to_thread(self._walk_local, root, recursive)
        for entry in entries:
            yield entry

    def _walk_local(self, root: Path, recursive: bool) -> list[InventoryEntry]:
        self._checkpoint(str(root))
        entries: list[InventoryEntry] = []

        def on_error(exc: OSError) -> None:
            if isinstance(exc, PermissionError):
                raise StoragePermissionError("Permission denied", path=str(exc.filename or root)) from exc
            raise exc

        if not recursive:
            for child in sorted(root.iterdir()):
                if child.is_dir():
                    entries.append(InventoryEntry(relative_path=child.name + "/", is_directory=True))
                elif child.is_file():
                    entries.append(_local_entry(child, child.name))
            return entries

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
            self._checkpoint(dirpath)
            dirnames.sort()
            for filename in sorted(filenames):
                full = Path(dirpath) / filename
                if not full.is_file():
                    continue
                relative = full.relative_to(root).as_posix()
                entries.append(_local_entry(full, relative))
        return entries

    def _checkpoint(self, path: str) -> None:
        if self._cancel is not None and self._cancel.is_set():
            raise OperationCancelled("Interrupted while listing", path=path)
