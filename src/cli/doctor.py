"""Doctor command for environment diagnostics."""

from __future__ import annotations

import asyncio

import httpx
import typer
from rich.console import Console
from rich.table import Table

from adapters.azcopy import PINNED_VERSION, locate_azcopy
from adapters.credential_probes import build_probes
from adapters.http_client import build_async_client
from core.config import AppSettings, write_user_env_vars
from core.errors import AuthError, AzstError
from core.services.address import looks_like_account
from core.services.credential_chain import CredentialChain, parse_forced_kind

app = typer.Typer(no_args_is_help=True, help="Environment diagnostics and configuration checks.")

_console = Console()


async def _check_imds(settings: AppSettings) -> tuple[bool, str]:
    try:
        async with build_async_client(
            settings,
            extra_headers={"Metadata": "true"},
            timeout_seconds=settings.imds_timeout_seconds,
        ) as client:
            response = await client.get(settings.imds_endpoint, params={"api-version": "2018-02-01"})
        return True, f"HTTP {response.status_code}"
    except httpx.HTTPError as exc:
        return False, str(exc) or type(exc).__name__


async def _check_credentials(settings: AppSettings) -> tuple[bool, str]:
    try:
        chain = CredentialChain(build_probes(settings), forced_kind=parse_forced_kind(settings.credential_kind))
        credential = await chain.resolve()
    except AuthError as exc:
        return False, str(exc)
    return True, f"{credential.kind.value} (expires {credential.expires_on:%Y-%m-%d %H:%M} UTC)"


async def _check_azcopy(settings: AppSettings) -> tuple[str, str]:
    try:
        executable = await locate_azcopy(settings)
    except AzstError as exc:
        return "FAIL", str(exc)
    status = "OK" if executable.pinned else "WARN"
    return status, f"{executable.path} (version {executable.version}, tested {PINNED_VERSION})"


@app.command()
def run() -> None:
    """Run baseline diagnostics and show recommended fixes."""

    settings = AppSettings()

    table = Table(title="azst Doctor")
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    # Config
    if settings.default_account:
        table.add_row("Default account", "OK", settings.default_account)
    else:
        table.add_row("Default account", "OPTIONAL", "Not set -> only az://account/container/path URIs work")
    if settings.credential_kind:
        table.add_row("Forced credential", "OK", settings.credential_kind)

    ok_creds, detail_creds = asyncio.run(_check_credentials(settings))
    table.add_row("Credentials", "OK" if ok_creds else "FAIL", detail_creds)

    status_azcopy, detail_azcopy = asyncio.run(_check_azcopy(settings))
    table.add_row("AzCopy", status_azcopy, detail_azcopy)

    # Connectivity (best-effort)
    ok_imds, detail_imds = asyncio.run(_check_imds(settings))
    table.add_row("Instance metadata", "OK" if ok_imds else "UNREACHABLE", detail_imds)

    _console.print(table)

    if not ok_creds:
        _console.print(
            "\n[yellow]Note:[/yellow] Run `az login`, or set AZURE_TENANT_ID, AZURE_CLIENT_ID "
            "and AZURE_CLIENT_SECRET for a service principal."
        )
    if status_azcopy == "FAIL":
        _console.print(
            f"\n[yellow]Note:[/yellow] cp, sync, mv and large rm need AzCopy {PINNED_VERSION}."
        )


@app.command(name="set-account")
def set_account(name: str = typer.Argument(..., help="Storage account used by az://container/path URIs.")) -> None:
    """Store the default storage account in the user config .env."""

    name = name.strip()
    if not looks_like_account(name):
        raise typer.BadParameter("account names are 3-24 lowercase letters or digits")

    env_path = write_user_env_vars({"AZST_DEFAULT_ACCOUNT": name})
    _console.print(f"[green]Saved default account to:[/green] {env_path}")


@app.command(name="unset-account")
def unset_account() -> None:
    """Remove the default storage account from the user config .env."""

    env_path = write_user_env_vars({"AZST_DEFAULT_ACCOUNT": None})
    _console.print(f"[green]Removed default account from:[/green] {env_path}")
