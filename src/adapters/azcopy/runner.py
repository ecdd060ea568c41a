"""`TransferBackend` implementation that drives AzCopy as a subprocess."""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Mapping

from adapters.azcopy.locator import AzCopyExecutable, locate_azcopy
from adapters.azcopy.output import OutputCollector
from core.config import AppSettings
from core.domain.models import CredentialKind, TransferOptions
from core.errors import BackendError
from core.interfaces.transfer_backend import (
    BackendEvent,
    BulkJob,
    BulkJobReport,
    BulkOperation,
    EventCallback,
)
from core.log import logger

# Forwarded unmodified from the caller's environment.
PASSTHROUGH_VARS = (
    "AZCOPY_CONCURRENCY_VALUE",
    "AZCOPY_CONCURRENT_FILES",
    "AZCOPY_CONCURRENT_SCAN",
    "AZCOPY_BUFFER_GB",
    "AZCOPY_LOG_LOCATION",
    "AZCOPY_JOB_PLAN_LOCATION",
    "AZCOPY_DISABLE_HIERARCHICAL_SCAN",
    "AZCOPY_PARALLEL_STAT_FILES",
)

_AUTO_LOGIN = {
    CredentialKind.SERVICE_PRINCIPAL: "SPN",
    CredentialKind.MANAGED_IDENTITY: "MSI",
    CredentialKind.CLI_SESSION: "AZCLI",
}

_TERMINATE_GRACE_SECONDS = 10.0


def _number(value: float) -> str:
    return f"{value:g}"


def option_args(options: TransferOptions) -> list[str]:
    args: list[str] = []
    if options.cap_mbps is not None:
        args.append(f"--cap-mbps={_number(options.cap_mbps)}")
    if options.block_size_mb is not None:
        args.append(f"--block-size-mb={_number(options.block_size_mb)}")
    if options.put_hash:
        args.append("--put-md5")
    return args


def build_command(job: BulkJob, *, executable: str, list_file: str | None = None) -> list[str]:
    """Full AzCopy argv for `job`."""

    if job.operation is BulkOperation.COPY:
        if job.destination is None:
            raise ValueError("copy jobs need a destination")
        argv = [executable, "copy", job.source, job.destination, "--overwrite=true"]
        if list_file is not None:
            argv += ["--recursive", "--as-subdir=false", f"--list-of-files={list_file}"]
        argv += option_args(job.options)
    else:
        argv = [executable, "remove", job.source]
        if list_file is not None:
            argv += ["--recursive", f"--list-of-files={list_file}"]
    argv += ["--output-type", "json"]
    return argv


def build_env(job: BulkJob, *, base: Mapping[str, str] | None = None) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    env.setdefault("AZCOPY_CONCURRENCY_VALUE", str(job.options.concurrency))

    if job.auth_kind is not None:
        env["AZCOPY_AUTO_LOGIN_TYPE"] = _AUTO_LOGIN[job.auth_kind]
        if job.auth_kind is CredentialKind.SERVICE_PRINCIPAL:
            env["AZCOPY_SPA_APPLICATION_ID"] = env.get("AZURE_CLIENT_ID", "")
            env["AZCOPY_SPA_CLIENT_SECRET"] = env.get("AZURE_CLIENT_SECRET", "")
            env["AZCOPY_TENANT_ID"] = env.get("AZURE_TENANT_ID", "")

    forwarded = [name for name in PASSTHROUGH_VARS if name in env]
    if forwarded:
        logger.debug("Forwarding AzCopy tuning variables: {}", ", ".join(forwarded))
    return env


class AzCopyBackend:
    """Runs one AzCopy job per `BulkJob`, relaying its JSON progress."""

    name = "azcopy"

    def __init__(self, settings: AppSettings, *, executable: AzCopyExecutable | None = None) -> None:
        self._settings = settings
        self._executable = executable

    async def executable(self) -> AzCopyExecutable:
        if self._executable is None:
            self._executable = await locate_azcopy(self._settings)
        return self._executable

    async def run(
        self,
        job: BulkJob,
        *,
        on_event: EventCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> BulkJobReport:
        executable = await self.executable()
        list_file: str | None = None
        try:
            if job.paths is not None:
                list_file = self._write_list_file(job.paths)
            argv = build_command(job, executable=executable.path, list_file=list_file)
            logger.debug("Running: {}", " ".join(argv))
            return await self._run_process(job, argv, on_event=on_event, cancel=cancel)
        finally:
            if list_file is not None:
                Path(list_file).unlink(missing_ok=True)

    @staticmethod
    def _write_list_file(paths: tuple[str, ...]) -> str:
        handle = tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            prefix="azst-",
            suffix=".list",
            delete=False,
        )
        with handle:
            for path in paths:
                handle.write(path + "\n")
        return handle.name

    async def _run_process(
        self,
        job: BulkJob,
        argv: list[str],
        *,
        on_event: EventCallback | None,
        cancel: asyncio.Event | None,
    ) -> BulkJobReport:
        collector = OutputCollector(source_root=job.source, destination_root=job.destination)
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=build_env(job),
            )
        except OSError as exc:
            raise BackendError(f"Could not start AzCopy: {exc}") from exc

        async def pump() -> None:
            assert proc.stdout is not None
            async for raw in proc.stdout:
                event = collector.feed(raw.decode("utf-8", errors="replace"))
                if event is not None and on_event is not None:
                    on_event(event)

        reader = asyncio.create_task(pump())
        assert proc.stderr is not None
        errors = asyncio.create_task(proc.stderr.read())
        waiter = asyncio.create_task(proc.wait())
        watched: set[asyncio.Task] = {waiter}
        cancel_task: asyncio.Task | None = None
        if cancel is not None:
            cancel_task = asyncio.create_task(cancel.wait())
            watched.add(cancel_task)

        try:
            await asyncio.wait(watched, return_when=asyncio.FIRST_COMPLETED)
            if not waiter.done():
                logger.warning("Interrupted; stopping AzCopy")
                collector.report.cancelled = True
                await self._terminate(proc)
            await waiter
            await reader
            stderr = await errors
        finally:
            if cancel_task is not None:
                cancel_task.cancel()

        report = collector.report
        if report.cancelled:
            return report
        if proc.returncode != 0 and not collector.finished:
            detail = collector.last_error or stderr.decode("utf-8", errors="replace").strip()
            report.error = f"AzCopy exited with code {proc.returncode}: {detail or 'no output'}"
            if on_event is not None:
                on_event(BackendEvent(kind="error", message=report.error))
        elif proc.returncode != 0 and not report.failed:
            report.error = collector.last_error or f"AzCopy job finished with status {report.status}"
        return report

    @staticmethod
    async def _terminate(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=_TERMINATE_GRACE_SECONDS)
        except asyncio.TimeoutError:
            proc.kill()
