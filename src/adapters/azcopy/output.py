"""Incremental parsing of AzCopy JSON output into events and a job report."""

from __future__ import annotations

import json
import os
from urllib.parse import unquote, urlsplit

from pydantic import ValidationError

from adapters.azcopy.models import InitMessage, OutputLine, ProgressMessage
from core.interfaces.transfer_backend import BackendEvent, BulkJobReport


def _normalize(address: str) -> str:
    """Comparable form: URL without query, unquoted; local paths made absolute."""

    if address.startswith(("https://", "http://")):
        parts = urlsplit(address)
        return f"{parts.scheme}://{parts.netloc}{unquote(parts.path)}".rstrip("/")
    return os.path.abspath(address).replace(os.sep, "/").rstrip("/")


def relative_to_root(address: str, root: str | None) -> str | None:
    """`address` relative to `root`, or None if it does not live under it."""

    if not address or not root:
        return None
    full = _normalize(address)
    base = _normalize(root)
    if full == base:
        return ""
    if full.startswith(base + "/"):
        return full[len(base) + 1:]
    return None


class OutputCollector:
    """Feeds on stdout lines; yields UI events and accumulates a `BulkJobReport`."""

    def __init__(self, *, source_root: str, destination_root: str | None = None) -> None:
        self._source_root = source_root
        self._destination_root = destination_root
        self.report = BulkJobReport(status="InProgress")
        self.finished = False
        self.last_error: str | None = None

    def feed(self, line: str) -> BackendEvent | None:
        line = line.strip()
        if not line:
            return None
        try:
            envelope = OutputLine.model_validate_json(line)
        except ValidationError:
            return BackendEvent(kind="info", message=line)

        kind = envelope.message_type
        content = envelope.message_content
        if kind == "Init":
            self._on_init(content)
            return None
        if kind in ("Progress", "EndOfJob"):
            return self._on_progress(content)
        if kind == "Error":
            self.last_error = content.strip()
            return BackendEvent(kind="error", message=self.last_error)
        if kind == "Info":
            message = content.strip()
            return BackendEvent(kind="info", message=message.removeprefix("INFO: "))
        return None

    def _on_init(self, content: str) -> None:
        try:
            init = InitMessage.model_validate_json(content)
        except ValidationError:
            return
        self.report.log_file = init.log_file_location

    def _on_progress(self, content: str) -> BackendEvent | None:
        try:
            progress = ProgressMessage.model_validate(json.loads(content))
        except (ValueError, ValidationError):
            return None

        report = self.report
        report.status = progress.job_status
        report.completed = progress.transfers_completed
        report.skipped = progress.transfers_skipped
        report.bytes_transferred = progress.total_bytes_transferred
        for failure in progress.failed_transfers:
            relative = relative_to_root(failure.src, self._source_root)
            if relative is None:
                relative = relative_to_root(failure.dst, self._destination_root)
            report.failed[relative if relative is not None else failure.src] = failure.reason()

        if progress.finished:
            self.finished = True
            return BackendEvent(
                kind="done",
                message=progress.job_status,
                percent=100.0,
                completed=progress.transfers_completed,
                total=progress.total_transfers,
                bytes_done=progress.total_bytes_transferred,
                bytes_total=progress.total_bytes_expected,
            )
        return BackendEvent(
            kind="progress",
            percent=progress.percent_complete,
            completed=progress.transfers_completed,
            total=progress.total_transfers,
            bytes_done=progress.total_bytes_transferred,
            bytes_total=progress.total_bytes_expected,
        )
