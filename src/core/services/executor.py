"""Plan execution across the two backends.

- Content-moving actions (Add/Update) go to the bulk `TransferBackend` as one job.
- Deletes run after all content actions. Small batches (and every local
  delete) go through the direct API on a bounded pool; larger remote
  batches go to the bulk backend.
- `dry_run` consumes the plan and reports every actionable item as skipped
  without touching either backend.
- `move=True` removes a source object only once its copy reported success
  (or the destination already held identical content).
- Cancellation is cooperative: remaining slots stay empty and the summary
  is flagged as cancelled.
"""

from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass
from typing import Callable

from core.config import AppSettings
from core.domain.models import (
    ActionKind,
    CredentialKind,
    Location,
    Outcome,
    SkipReason,
    TransferAction,
    TransferEndpoints,
    TransferOptions,
    TransferPlan,
    TransferResult,
    TransferSummary,
)
from core.errors import AzstError, BackendError, NotFoundError, StoragePermissionError
from core.interfaces.storage import BlobStore
from core.interfaces.transfer_backend import (
    BulkJob,
    BulkJobReport,
    BulkOperation,
    EventCallback,
    TransferBackend,
)
from core.log import logger
from core.services.credential_chain import CredentialChain
from core.services.retry import with_retries

DRY_RUN_REASON = "dry-run"

_NOT_FOUND_MARKERS = ("blobnotfound", "resourcenotfound", "404", "not found", "does not exist")


@dataclass
class _DeleteOutcome:
    outcome: Outcome
    reason: str | None = None


def location_root(location: Location) -> str:
    """URL (remote) or filesystem path (local) the plan's relative paths hang off."""

    if location.is_remote:
        return location.https_url(location.path.rstrip("/"))
    return location.path


def _is_not_found(reason: str) -> bool:
    lowered = reason.lower()
    return any(marker in lowered for marker in _NOT_FOUND_MARKERS)


def _remove_local(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError as exc:
        raise NotFoundError("No such file", path=path) from exc
    except PermissionError as exc:
        raise StoragePermissionError("Permission denied", path=path) from exc
    except IsADirectoryError as exc:
        raise AzstError("Is a directory", path=path) from exc


class TransferExecutor:
    """Runs a `TransferPlan` and produces one `TransferResult` per item."""

    def __init__(
        self,
        *,
        backend: TransferBackend,
        store_for: Callable[[str], BlobStore],
        settings: AppSettings,
        credentials: CredentialChain | None = None,
        cancel: asyncio.Event | None = None,
        on_event: EventCallback | None = None,
    ) -> None:
        self._backend = backend
        self._store_for = store_for
        self._settings = settings
        self._credentials = credentials
        self._cancel = cancel
        self._on_event = on_event

    @property
    def cancelled(self) -> bool:
        return self._cancel is not None and self._cancel.is_set()

    async def execute(
        self,
        plan: TransferPlan,
        endpoints: TransferEndpoints,
        options: TransferOptions,
        *,
        move: bool = False,
    ) -> TransferSummary:
        started = time.monotonic()
        actions = plan.consume()
        slots: list[TransferResult | None] = [None] * len(actions)
        summary = TransferSummary(dry_run=options.dry_run)

        for index, action in enumerate(actions):
            if action.kind is ActionKind.SKIP:
                slots[index] = TransferResult(
                    action=action,
                    outcome=Outcome.SKIPPED,
                    reason=action.reason.value if action.reason else None,
                )
            elif options.dry_run:
                slots[index] = TransferResult(action=action, outcome=Outcome.SKIPPED, reason=DRY_RUN_REASON)

        if options.dry_run:
            summary.results = [slot for slot in slots if slot is not None]
            summary.duration = time.monotonic() - started
            return summary

        content = [i for i, a in enumerate(actions) if a.moves_content]
        deletes = [i for i, a in enumerate(actions) if a.kind is ActionKind.DELETE]

        if content and not self.cancelled:
            report = await self._copy(actions, content, endpoints, options)
            summary.log_file = report.log_file
            self._apply_copy_report(actions, content, slots, report, started)
            if report.cancelled:
                summary.cancelled = True

        if deletes and not self.cancelled:
            outcomes = await self._delete(
                endpoints.destination,
                [actions[i].relative_path for i in deletes],
                options,
                single_object=endpoints.single_object,
            )
            for i in deletes:
                outcome = outcomes.get(actions[i].relative_path)
                if outcome is not None:
                    slots[i] = TransferResult(action=actions[i], outcome=outcome.outcome, reason=outcome.reason)

        if move and endpoints.source is not None and not self.cancelled:
            await self._remove_sources(actions, slots, endpoints, options)

        if self.cancelled or any(slot is None for slot in slots):
            summary.cancelled = True
        summary.results = [slot for slot in slots if slot is not None]
        summary.duration = time.monotonic() - started
        logger.debug(
            "Executed plan: {} ok, {} failed, {} skipped{}",
            summary.succeeded,
            summary.failed,
            summary.skipped,
            " (cancelled)" if summary.cancelled else "",
        )
        return summary

    # -- content ----------------------------------------------------------------------

    async def _auth_kind(self, *locations: Location | None) -> CredentialKind | None:
        if self._credentials is None or not any(loc is not None and loc.is_remote for loc in locations):
            return None
        credential = await self._credentials.resolve()
        return credential.kind

    async def _run_job(self, job: BulkJob) -> BulkJobReport:
        try:
            return await self._backend.run(job, on_event=self._on_event, cancel=self._cancel)
        except BackendError as exc:
            return BulkJobReport(status="Failed", error=str(exc))

    async def _copy(
        self,
        actions: tuple[TransferAction, ...],
        indexes: list[int],
        endpoints: TransferEndpoints,
        options: TransferOptions,
    ) -> BulkJobReport:
        if endpoints.source is None:
            raise ValueError("copy actions need a source endpoint")
        auth_kind = await self._auth_kind(endpoints.source, endpoints.destination)

        if endpoints.single_object:
            job = BulkJob(
                operation=BulkOperation.COPY,
                source=self._object_address(endpoints.source, endpoints.source.path),
                destination=self._object_address(endpoints.destination, endpoints.destination.path),
                options=options,
                auth_kind=auth_kind,
            )
        else:
            job = BulkJob(
                operation=BulkOperation.COPY,
                source=location_root(endpoints.source),
                destination=location_root(endpoints.destination),
                paths=tuple(actions[i].relative_path for i in indexes),
                options=options,
                auth_kind=auth_kind,
            )
        logger.debug("Handing {} item(s) to {}", len(indexes), self._backend.name)
        return await self._run_job(job)

    @staticmethod
    def _object_address(location: Location, key: str) -> str:
        if location.is_remote:
            return location.https_url(key)
        return key

    @staticmethod
    def _apply_copy_report(
        actions: tuple[TransferAction, ...],
        indexes: list[int],
        slots: list[TransferResult | None],
        report: BulkJobReport,
        started: float,
    ) -> None:
        elapsed = time.monotonic() - started
        single = len(indexes) == 1
        for i in indexes:
            action = actions[i]
            if report.crashed:
                slots[i] = TransferResult(action=action, outcome=Outcome.FAILED, reason=report.error)
                continue
            reason = report.failed.get(action.relative_path)
            if reason is None and single and report.failed:
                # Single-object jobs report the object under its own key.
                reason = next(iter(report.failed.values()))
            if reason is not None:
                slots[i] = TransferResult(action=action, outcome=Outcome.FAILED, reason=reason)
            elif report.cancelled:
                continue
            else:
                size = action.source.size_bytes if action.source else 0
                slots[i] = TransferResult(
                    action=action,
                    outcome=Outcome.SUCCESS,
                    bytes_transferred=size,
                    duration=elapsed,
                )

    # -- deletes ----------------------------------------------------------------------

    async def _delete(
        self,
        root: Location,
        paths: list[str],
        options: TransferOptions,
        *,
        single_object: bool = False,
    ) -> dict[str, _DeleteOutcome]:
        direct = (
            not root.is_remote
            or single_object
            or len(paths) <= self._settings.direct_delete_threshold
        )
        if direct:
            return await self._delete_direct(root, paths, options, single_object=single_object)
        return await self._delete_bulk(root, paths, options)

    async def _delete_direct(
        self,
        root: Location,
        paths: list[str],
        options: TransferOptions,
        *,
        single_object: bool,
    ) -> dict[str, _DeleteOutcome]:
        sem = asyncio.Semaphore(max(1, options.concurrency))
        outcomes: dict[str, _DeleteOutcome] = {}

        async def delete_one(relative_path: str) -> None:
            async with sem:
                if self.cancelled:
                    return
                key = root.path if single_object else root.join(relative_path)
                try:
                    if root.is_remote:
                        store = self._store_for(root.account or "")
                        await with_retries(
                            lambda: store.delete_blob(root.container or "", key),
                            settings=self._settings,
                            what=f"delete {key}",
                        )
                    else:
                        await asyncio.to_thread(_remove_local, key)
                except NotFoundError as exc:
                    if options.force:
                        outcomes[relative_path] = _DeleteOutcome(Outcome.SUCCESS, "already absent")
                    else:
                        outcomes[relative_path] = _DeleteOutcome(Outcome.FAILED, str(exc))
                    return
                except AzstError as exc:
                    outcomes[relative_path] = _DeleteOutcome(Outcome.FAILED, str(exc))
                    return
                outcomes[relative_path] = _DeleteOutcome(Outcome.SUCCESS)

        await asyncio.gather(*(delete_one(path) for path in paths))
        return outcomes

    async def _delete_bulk(
        self,
        root: Location,
        paths: list[str],
        options: TransferOptions,
    ) -> dict[str, _DeleteOutcome]:
        job = BulkJob(
            operation=BulkOperation.REMOVE,
            source=location_root(root),
            paths=tuple(paths),
            options=options,
            auth_kind=await self._auth_kind(root),
        )
        logger.debug("Handing {} deletion(s) to {}", len(paths), self._backend.name)
        report = await self._run_job(job)

        outcomes: dict[str, _DeleteOutcome] = {}
        for path in paths:
            if report.crashed:
                outcomes[path] = _DeleteOutcome(Outcome.FAILED, report.error)
                continue
            reason = report.failed.get(path)
            if reason is None:
                if not report.cancelled:
                    outcomes[path] = _DeleteOutcome(Outcome.SUCCESS)
            elif options.force and _is_not_found(reason):
                outcomes[path] = _DeleteOutcome(Outcome.SUCCESS, "already absent")
            else:
                outcomes[path] = _DeleteOutcome(Outcome.FAILED, reason)
        return outcomes

    # -- mv ---------------------------------------------------------------------------

    async def _remove_sources(
        self,
        actions: tuple[TransferAction, ...],
        slots: list[TransferResult | None],
        endpoints: TransferEndpoints,
        options: TransferOptions,
    ) -> None:
        source = endpoints.source
        if source is None:
            return

        movable: list[int] = []
        for i, action in enumerate(actions):
            result = slots[i]
            if result is None:
                continue
            copied = action.moves_content and result.outcome is Outcome.SUCCESS
            unchanged = action.kind is ActionKind.SKIP and action.reason is SkipReason.UNCHANGED
            if copied or unchanged:
                movable.append(i)
        if not movable:
            return

        outcomes = await self._delete(
            source,
            [actions[i].relative_path for i in movable],
            options.model_copy(update={"force": True}),
            single_object=endpoints.single_object,
        )
        for i in movable:
            outcome = outcomes.get(actions[i].relative_path)
            current = slots[i]
            if outcome is None or current is None or outcome.outcome is not Outcome.FAILED:
                continue
            slots[i] = TransferResult(
                action=current.action,
                outcome=Outcome.FAILED,
                reason=f"copied, but removing the source failed: {outcome.reason}",
                bytes_transferred=current.bytes_transferred,
                duration=current.duration,
            )
