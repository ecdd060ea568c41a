"""azst command line (Typer).

Commands parse flags, hand off to `core.services.operations` and render the
results with Rich. Every `AzstError` is caught once, in `_execute`, and
turned into a red message plus the error's exit code.
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, TypeVar

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from adapters.json_exporter import export_summary_json
from cli import doctor
from cli.context import build_context
from cli.ui_components import (
    BackendProgress,
    build_plan_table,
    print_accounts,
    print_containers,
    print_listing,
    print_sizes,
    print_summary,
)
from core.config import AppSettings
from core.context import InvocationContext
from core.domain.models import ActionKind, SizeRow, TransferOptions, TransferSummary
from core.errors import AzstError, OperationCancelled
from core.log import configure_logging, logger
from core.services import operations

T = TypeVar("T")

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Unix-style commands for Azure Blob Storage (az://account/container/path).",
    context_settings={"help_option_names": ["--help"]},
)
app.add_typer(doctor.app, name="doctor")

_console = Console()
_err = Console(stderr=True)

# Replaced in tests to run commands against in-memory fakes.
context_factory: Callable[[AppSettings], InvocationContext] = build_context


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on stderr."),
) -> None:
    settings = AppSettings()
    configure_logging("DEBUG" if verbose else settings.log_level)
    ctx.obj = settings


def _settings(ctx: typer.Context) -> AppSettings:
    settings = ctx.find_root().obj
    return settings if isinstance(settings, AppSettings) else AppSettings()


async def _with_context(settings: AppSettings, work: Callable[[InvocationContext], Awaitable[T]]) -> T:
    invocation = context_factory(settings)
    loop = asyncio.get_running_loop()
    handler_installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, invocation.cancel.set)
        handler_installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        logger.debug("SIGINT handler not available; Ctrl+C aborts immediately")
    try:
        return await work(invocation)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
        await invocation.aclose()


def _execute(ctx: typer.Context, work: Callable[[InvocationContext], Awaitable[T]]) -> T:
    try:
        return asyncio.run(_with_context(_settings(ctx), work))
    except AzstError as exc:
        _err.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=exc.exit_code) from exc
    except KeyboardInterrupt as exc:
        # Only reached where no SIGINT handler could be installed.
        _err.print("[red]Error:[/red] Interrupted")
        raise typer.Exit(code=OperationCancelled.exit_code) from exc


def _options(
    *,
    concurrency: int | None,
    settings: AppSettings,
    dry_run: bool,
    cap_mbps: float | None = None,
    block_size_mb: float | None = None,
    put_md5: bool = False,
    force: bool = False,
) -> TransferOptions:
    for hint, value in (("--cap-mbps", cap_mbps), ("--block-size-mb", block_size_mb)):
        if value is not None and value <= 0:
            raise typer.BadParameter("must be greater than 0", param_hint=hint)
    try:
        return TransferOptions(
            concurrency=concurrency or settings.concurrency,
            dry_run=dry_run,
            cap_mbps=cap_mbps,
            block_size_mb=block_size_mb,
            put_hash=put_md5,
            force=force,
        )
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _finish(summary: TransferSummary, *, command: str, verb: str, json_summary: Path | None) -> None:
    print_summary(_err, summary, verb=verb)
    if json_summary is not None:
        path = export_summary_json(summary=summary, command=command, output_path=json_summary)
        _err.print(f"Summary written to {path}", style="dim")
    operations.raise_for_summary(summary)


# -- ls / cat / du -----------------------------------------------------------------------

_ACCOUNT_HELP = "Storage account for az://container/path URIs (overrides AZST_DEFAULT_ACCOUNT)."


@app.command()
def ls(
    ctx: typer.Context,
    path: Optional[str] = typer.Argument(None, help="az:// URI or local path; omit to list storage accounts."),
    long: bool = typer.Option(False, "-l", "--long", help="Show size and modification time."),
    human_readable: bool = typer.Option(False, "-h", "-H", "--human-readable", help="Sizes in KiB/MiB/GiB."),
    recursive: bool = typer.Option(False, "-r", "-R", "--recursive", help="List everything under the prefix."),
    account: Optional[str] = typer.Option(None, "-a", "--account", help=_ACCOUNT_HELP),
) -> None:
    """List storage accounts or containers, or the objects under an address."""

    async def work(invocation: InvocationContext) -> operations.Listing:
        return await operations.list_location(invocation, path, recursive=recursive, account=account)

    listing = _execute(ctx, work)
    if listing.accounts is not None:
        if not listing.accounts:
            _err.print("No storage accounts found", style="dim")
        print_accounts(_console, listing.accounts, long=long)
    elif listing.containers is not None:
        print_containers(_console, listing.account or "", listing.containers)
    elif listing.location is not None:
        print_listing(_console, listing.location, listing.entries, long=long, human_readable=human_readable)


@app.command()
def cat(
    ctx: typer.Context,
    uris: List[str] = typer.Argument(..., help="One or more az:// objects."),
    header: bool = typer.Option(False, "--header", help="Print '==> uri <==' before each object (stderr)."),
    byte_range: Optional[str] = typer.Option(None, "-r", "--range", help="start-end, start- or -N."),
) -> None:
    """Write object content to stdout."""

    stdout = typer.get_binary_stream("stdout")

    async def work(invocation: InvocationContext) -> None:
        parsed = operations.parse_range(byte_range) if byte_range else None
        for index, uri in enumerate(uris):
            location, chunks = await operations.open_object(invocation, uri, byte_range=parsed)
            if header:
                if index:
                    _err.print()
                _err.print(f"==> {location.display()} <==", markup=False, highlight=False)
            async for chunk in chunks:
                stdout.write(chunk)
            stdout.flush()

    _execute(ctx, work)


@app.command()
def du(
    ctx: typer.Context,
    paths: List[str] = typer.Argument(..., help="az:// URIs or local paths."),
    summarize: bool = typer.Option(False, "-s", "--summarize", help="One total per argument."),
    human_readable: bool = typer.Option(False, "-h", "-H", "--human-readable", help="Sizes in KiB/MiB/GiB."),
    total: bool = typer.Option(False, "-c", "--total", help="Append a grand total."),
    account: Optional[str] = typer.Option(None, "-a", "--account", help=_ACCOUNT_HELP),
) -> None:
    """Show object sizes."""

    async def work(invocation: InvocationContext) -> list[SizeRow]:
        return await operations.disk_usage(
            invocation,
            paths,
            summarize=summarize,
            human_readable=human_readable,
            total=total,
            account=account,
        )

    print_sizes(_console, _execute(ctx, work))


# -- cp / sync / mv / rm -----------------------------------------------------------------


def _transfer(
    ctx: typer.Context,
    *,
    command: str,
    source: str,
    destination: str,
    recursive: bool,
    options: TransferOptions,
    include: str | None,
    exclude: str | None,
    json_summary: Path | None,
    mirror: bool = False,
    move: bool = False,
) -> None:
    async def work(invocation: InvocationContext) -> None:
        prepared = await operations.prepare_transfer(
            invocation,
            source,
            destination,
            recursive=recursive,
            include=include,
            exclude=exclude,
            mirror=mirror,
            move=move,
            command=command,
        )
        plan = prepared.plan
        deletes = plan.counts[ActionKind.DELETE]
        if options.dry_run or deletes:
            _err.print(build_plan_table(plan))
        if deletes and not options.dry_run and not options.force:
            if not typer.confirm(f"Delete {deletes} object(s) from {prepared.endpoints.destination.display()}?"):
                raise typer.Abort()

        with BackendProgress(_err, description=command) as progress:
            summary = await operations.execute_transfer(invocation, prepared, options, on_event=progress)
        _finish(summary, command=command, verb="moved" if move else "transferred", json_summary=json_summary)

    _execute(ctx, work)


_INCLUDE_HELP = "Only paths matching one of these ';'-separated globs."
_EXCLUDE_HELP = "Skip paths matching any of these ';'-separated globs (wins over include)."


@app.command()
def cp(
    ctx: typer.Context,
    source: str = typer.Argument(...),
    destination: str = typer.Argument(...),
    recursive: bool = typer.Option(False, "-r", "-R", "--recursive", help="Copy directories/prefixes."),
    concurrency: Optional[int] = typer.Option(None, "-j", "--concurrency", min=1, max=256),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan, change nothing."),
    cap_mbps: Optional[float] = typer.Option(None, "--cap-mbps", min=0.0, help="Bandwidth cap (Mbps)."),
    block_size_mb: Optional[float] = typer.Option(None, "--block-size-mb", min=0.0),
    put_md5: bool = typer.Option(False, "--put-md5", help="Store an MD5 hash on upload."),
    include: Optional[str] = typer.Option(None, "--include-pattern", help=_INCLUDE_HELP),
    exclude: Optional[str] = typer.Option(None, "--exclude-pattern", help=_EXCLUDE_HELP),
    json_summary: Optional[Path] = typer.Option(None, "--json-summary", help="Write the summary as JSON."),
) -> None:
    """Copy between local paths and az:// URIs."""

    options = _options(
        concurrency=concurrency,
        settings=_settings(ctx),
        dry_run=dry_run,
        cap_mbps=cap_mbps,
        block_size_mb=block_size_mb,
        put_md5=put_md5,
    )
    _transfer(
        ctx,
        command="cp",
        source=source,
        destination=destination,
        recursive=recursive,
        options=options,
        include=include,
        exclude=exclude,
        json_summary=json_summary,
    )


@app.command()
def sync(
    ctx: typer.Context,
    source: str = typer.Argument(...),
    destination: str = typer.Argument(...),
    delete: bool = typer.Option(False, "-d", "--delete", help="Delete destination objects missing from the source."),
    force: bool = typer.Option(False, "-f", "--force", help="Do not ask before deleting."),
    concurrency: Optional[int] = typer.Option(None, "-j", "--concurrency", min=1, max=256),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan, change nothing."),
    cap_mbps: Optional[float] = typer.Option(None, "--cap-mbps", min=0.0),
    block_size_mb: Optional[float] = typer.Option(None, "--block-size-mb", min=0.0),
    put_md5: bool = typer.Option(False, "--put-md5"),
    include: Optional[str] = typer.Option(None, "--include-pattern", help=_INCLUDE_HELP),
    exclude: Optional[str] = typer.Option(None, "--exclude-pattern", help=_EXCLUDE_HELP),
    json_summary: Optional[Path] = typer.Option(None, "--json-summary"),
) -> None:
    """Make the destination match the source (only changed files move)."""

    options = _options(
        concurrency=concurrency,
        settings=_settings(ctx),
        dry_run=dry_run,
        cap_mbps=cap_mbps,
        block_size_mb=block_size_mb,
        put_md5=put_md5,
        force=force,
    )
    _transfer(
        ctx,
        command="sync",
        source=source,
        destination=destination,
        recursive=True,
        options=options,
        include=include,
        exclude=exclude,
        json_summary=json_summary,
        mirror=delete,
    )


@app.command()
def mv(
    ctx: typer.Context,
    source: str = typer.Argument(...),
    destination: str = typer.Argument(...),
    recursive: bool = typer.Option(False, "-r", "-R", "--recursive"),
    concurrency: Optional[int] = typer.Option(None, "-j", "--concurrency", min=1, max=256),
    dry_run: bool = typer.Option(False, "--dry-run"),
    cap_mbps: Optional[float] = typer.Option(None, "--cap-mbps", min=0.0),
    block_size_mb: Optional[float] = typer.Option(None, "--block-size-mb", min=0.0),
    put_md5: bool = typer.Option(False, "--put-md5"),
    include: Optional[str] = typer.Option(None, "--include-pattern", help=_INCLUDE_HELP),
    exclude: Optional[str] = typer.Option(None, "--exclude-pattern", help=_EXCLUDE_HELP),
    json_summary: Optional[Path] = typer.Option(None, "--json-summary"),
) -> None:
    """Copy, then remove each source object whose copy succeeded."""

    options = _options(
        concurrency=concurrency,
        settings=_settings(ctx),
        dry_run=dry_run,
        cap_mbps=cap_mbps,
        block_size_mb=block_size_mb,
        put_md5=put_md5,
    )
    _transfer(
        ctx,
        command="mv",
        source=source,
        destination=destination,
        recursive=recursive,
        options=options,
        include=include,
        exclude=exclude,
        json_summary=json_summary,
        move=True,
    )


@app.command()
def rm(
    ctx: typer.Context,
    target: str = typer.Argument(..., help="az:// URI or local path."),
    recursive: bool = typer.Option(False, "-r", "-R", "--recursive", help="Remove everything under the prefix."),
    force: bool = typer.Option(False, "-f", "--force", help="No prompt; missing objects are not errors."),
    concurrency: Optional[int] = typer.Option(None, "-j", "--concurrency", min=1, max=256),
    dry_run: bool = typer.Option(False, "--dry-run"),
    include: Optional[str] = typer.Option(None, "--include-pattern", help=_INCLUDE_HELP),
    exclude: Optional[str] = typer.Option(None, "--exclude-pattern", help=_EXCLUDE_HELP),
    json_summary: Optional[Path] = typer.Option(None, "--json-summary"),
) -> None:
    """Remove objects or files."""

    options = _options(concurrency=concurrency, settings=_settings(ctx), dry_run=dry_run, force=force)

    async def work(invocation: InvocationContext) -> None:
        prepared = await operations.prepare_removal(
            invocation,
            target,
            recursive=recursive,
            include=include,
            exclude=exclude,
            force=force,
        )
        deletes = prepared.plan.counts[ActionKind.DELETE]
        if dry_run:
            _err.print(build_plan_table(prepared.plan))
        elif deletes and not force:
            if not typer.confirm(f"Remove {deletes} object(s) under {prepared.endpoints.destination.display()}?"):
                raise typer.Abort()

        with BackendProgress(_err, description="rm") as progress:
            summary = await operations.execute_removal(invocation, prepared, options, on_event=progress)
        _finish(summary, command="rm", verb="removed", json_summary=json_summary)

    _execute(ctx, work)


# -- mb / rb -----------------------------------------------------------------------------


@app.command()
def mb(
    ctx: typer.Context,
    uri: str = typer.Argument(..., help="az://account/container"),
    force: bool = typer.Option(False, "-f", "--force", help="An existing container is not an error."),
) -> None:
    """Create a container."""

    async def work(invocation: InvocationContext) -> bool:
        return await operations.make_bucket(invocation, uri, force=force)

    if _execute(ctx, work):
        _console.print(f"[green]Created[/green] {escape(uri)}")
    else:
        _console.print(f"[yellow]Already exists:[/yellow] {escape(uri)}")


@app.command()
def rb(
    ctx: typer.Context,
    uri: str = typer.Argument(..., help="az://account/container"),
    force: bool = typer.Option(False, "-f", "--force", help="Remove the container with all its contents."),
) -> None:
    """Remove a container."""

    async def work(invocation: InvocationContext) -> bool:
        return await operations.remove_bucket(
            invocation,
            uri,
            force=force,
            confirm=lambda message: typer.confirm(message, default=False),
        )

    if _execute(ctx, work):
        _console.print(f"[green]Removed[/green] {escape(uri)}")
    else:
        _console.print("Cancelled.")


def run() -> None:
    app()
