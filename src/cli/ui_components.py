"""Componentes de UI para la CLI (Rich).

- Solo renderizado: los comandos pasan objetos de dominio ya terminados.
- Nada aquí habla con el almacenamiento.
"""

from __future__ import annotations

from datetime import datetime

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
)
from rich.table import Table
from rich.text import Text

from core.domain.models import (
    ActionKind,
    InventoryEntry,
    Location,
    Outcome,
    SizeRow,
    TransferPlan,
    TransferSummary,
)
from core.interfaces.storage import AccountRecord, ContainerRecord
from core.interfaces.transfer_backend import BackendEvent
from core.services.size_aggregator import format_size

_ACTION_STYLES = {
    ActionKind.ADD: "green",
    ActionKind.UPDATE: "yellow",
    ActionKind.DELETE: "red",
    ActionKind.SKIP: "dim",
}


def _timestamp(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def print_accounts(console: Console, accounts: list[AccountRecord], *, long: bool = False) -> None:
    if not long:
        for account in accounts:
            console.print(f"az://{account.name}/", markup=False, highlight=False)
        return

    table = Table(box=None, show_header=True, pad_edge=False, header_style="bold")
    table.add_column("Account")
    table.add_column("Location", style="dim")
    table.add_column("Resource group", style="dim")
    for account in accounts:
        table.add_row(f"az://{account.name}/", account.location or "-", account.resource_group or "-")
    console.print(table)


def print_containers(console: Console, account: str, containers: list[ContainerRecord]) -> None:
    for container in containers:
        console.print(f"az://{account}/{container.name}/", markup=False, highlight=False)


def print_listing(
    console: Console,
    location: Location,
    entries: list[InventoryEntry],
    *,
    long: bool = False,
    human_readable: bool = False,
) -> None:
    """Entries under `location`, one per line; `long` adds size and modification time."""

    if not long:
        for entry in entries:
            console.print(_entry_label(location, entry), markup=False, highlight=False)
        return

    table = Table(box=None, show_header=False, pad_edge=False)
    table.add_column("Size", justify="right")
    table.add_column("Modified", style="dim")
    table.add_column("Name", overflow="fold")
    total = 0
    for entry in entries:
        if entry.is_directory:
            table.add_row("DIR", "", Text(_entry_label(location, entry), style="bold blue"))
            continue
        total += entry.size_bytes
        table.add_row(
            format_size(entry.size_bytes, human_readable=human_readable),
            _timestamp(entry.last_modified),
            Text(_entry_label(location, entry)),
        )
    console.print(table)
    files = sum(1 for entry in entries if not entry.is_directory)
    console.print(
        f"TOTAL: {files} objects, {format_size(total, human_readable=human_readable)}",
        style="dim",
    )


def _entry_label(location: Location, entry: InventoryEntry) -> str:
    if location.is_remote:
        if not location.is_prefix and entry.relative_path == location.name:
            return location.display()
        return location.as_prefix().display() + entry.relative_path
    if not location.is_prefix and entry.relative_path == location.name:
        return location.path
    return location.join(entry.relative_path)


def print_sizes(console: Console, rows: list[SizeRow]) -> None:
    for row in rows:
        style = "bold" if row.is_total else None
        console.print(f"{row.display_size:>12}  {row.label}", style=style, markup=False, highlight=False)


def build_plan_table(plan: TransferPlan, *, limit: int = 50) -> Table:
    """Plan preview (first `limit` non-skip actions) with a counts caption."""

    counts = plan.counts
    caption = ", ".join(f"{counts[kind]} {kind.value}" for kind in ActionKind)
    table = Table(title="Plan", caption=f"{caption}; {format_size(plan.total_bytes, human_readable=True)} to move")
    table.add_column("Action", no_wrap=True)
    table.add_column("Path", overflow="fold")
    table.add_column("Size", justify="right")

    actionable = sum(1 for action in plan.actions if action.kind is not ActionKind.SKIP)
    shown = 0
    for action in plan.actions:
        if action.kind is ActionKind.SKIP:
            continue
        if shown >= limit:
            table.add_row("...", f"{actionable - shown} more", "")
            break
        entry = action.source or action.destination
        size = format_size(entry.size_bytes, human_readable=True) if entry else ""
        table.add_row(Text(action.label(), style=_ACTION_STYLES[action.kind]), action.relative_path, size)
        shown += 1
    return table


def print_summary(console: Console, summary: TransferSummary, *, verb: str = "transferred") -> None:
    """One-line outcome plus the per-item failure list."""

    if summary.dry_run:
        actionable = sum(1 for r in summary.results if r.reason == "dry-run")
        console.print(f"[yellow]Dry run:[/yellow] {actionable} item(s) would be {verb}; nothing was changed.")
        return

    size = format_size(summary.bytes_transferred, human_readable=True)
    line = f"{summary.succeeded} {verb}, {summary.failed} failed, {summary.skipped} skipped ({size}"
    line += f", {summary.duration:.1f}s)"
    if summary.failed:
        console.print(f"[yellow]![/yellow] {line}")
    elif summary.cancelled:
        console.print(f"[yellow]Interrupted:[/yellow] {line}")
    else:
        console.print(f"[green]OK[/green] {line}")

    failures = [r for r in summary.results if r.outcome is Outcome.FAILED]
    if failures:
        table = Table(title="Failures", title_style="bold red")
        table.add_column("Path", overflow="fold")
        table.add_column("Reason", style="red", overflow="fold")
        for result in failures:
            table.add_row(result.action.relative_path, result.reason or "unknown")
        console.print(table)
    if summary.log_file and summary.failed:
        console.print(f"Log file: {summary.log_file}", style="dim")


class BackendProgress:
    """Relays bulk engine events to a Rich progress bar (stderr)."""

    def __init__(self, console: Console, *, description: str = "Transferring") -> None:
        self._console = console
        self._description = description
        self._progress: Progress | None = None
        self._task: TaskID | None = None

    def __enter__(self) -> BackendProgress:
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()

    def stop(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None

    def _ensure(self) -> Progress:
        if self._progress is None:
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                TextColumn("({task.fields[files]})"),
                TimeRemainingColumn(),
                console=self._console,
                transient=True,
            )
            self._progress.start()
            self._task = self._progress.add_task(self._description, total=100.0, files="")
        return self._progress

    def __call__(self, event: BackendEvent) -> None:
        if event.kind == "progress":
            progress = self._ensure()
            files = f"{event.completed or 0}/{event.total or 0} files"
            if self._task is not None:
                progress.update(self._task, completed=event.percent or 0.0, files=files)
        elif event.kind == "done":
            self.stop()
        elif event.kind == "error":
            self._console.print(Text.assemble(("x ", "red"), event.message))
        elif event.kind == "info" and event.message:
            self._console.print(Text.assemble(("i ", "blue"), (event.message, "dim")))
