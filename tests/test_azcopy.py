"""AzCopy command construction, JSON output parsing and subprocess driving."""

import asyncio
import json
import stat
import sys

import pytest

from adapters.azcopy import PINNED_VERSION, AzCopyBackend, AzCopyExecutable
from adapters.azcopy.locator import locate_azcopy, parse_version
from adapters.azcopy.output import OutputCollector, relative_to_root
from adapters.azcopy.runner import build_command, build_env, option_args
from core.domain.models import CredentialKind, TransferOptions
from core.errors import BackendError
from core.interfaces.transfer_backend import BulkJob, BulkOperation

DEST = "https://acct.blob.core.windows.net/c/up"


def envelope(message_type: str, content) -> str:
    if not isinstance(content, str):
        content = json.dumps(content)
    return json.dumps({"TimeStamp": "2024-05-01T12:00:00Z", "MessageType": message_type, "MessageContent": content})


def progress(status: str = "InProgress", **fields) -> str:
    payload = {
        "JobStatus": status,
        "TotalTransfers": "3",
        "TransfersCompleted": "1",
        "TransfersFailed": "0",
        "TransfersSkipped": "0",
        "TotalBytesTransferred": "10",
        "TotalBytesExpected": "30",
        "PercentComplete": "33.3",
        "FailedTransfers": None,
    }
    payload.update(fields)
    return envelope("EndOfJob" if status != "InProgress" else "Progress", payload)


# -- output --------------------------------------------------------------------------------


def test_collector_tracks_progress_and_failures():
    collector = OutputCollector(source_root="/data/src", destination_root=DEST)

    assert collector.feed(envelope("Init", {"LogFileLocation": "/logs/job.log", "JobID": "j1"})) is None
    event = collector.feed(progress())
    assert event.kind == "progress"
    assert event.percent == pytest.approx(33.3)
    assert (event.completed, event.total) == (1, 3)

    done = collector.feed(
        progress(
            "CompletedWithErrors",
            TransfersCompleted="2",
            TransfersFailed="1",
            FailedTransfers=[{"Src": "/data/src/sub/b.txt", "Dst": f"{DEST}/sub/b.txt", "ErrorCode": 403}],
        )
    )
    assert done.kind == "done"
    assert collector.finished
    report = collector.report
    assert report.status == "CompletedWithErrors"
    assert report.completed == 2
    assert report.failed == {"sub/b.txt": "Failed (HTTP 403)"}
    assert report.log_file == "/logs/job.log"


def test_collector_maps_remote_failures_with_query_strings():
    collector = OutputCollector(source_root="https://acct.blob.core.windows.net/c/dir")
    collector.feed(
        progress(
            "Failed",
            FailedTransfers=[{"Src": "https://acct.blob.core.windows.net/c/dir/a%20b.txt?sig=x", "ErrorCode": 404}],
        )
    )

    assert collector.report.failed == {"a b.txt": "Failed (HTTP 404)"}


def test_collector_passes_through_errors_and_plain_text():
    collector = OutputCollector(source_root="/src")

    error = collector.feed(envelope("Error", "failed to perform copy command"))
    assert error.kind == "error"
    assert collector.last_error == "failed to perform copy command"

    info = collector.feed("not json at all")
    assert (info.kind, info.message) == ("info", "not json at all")
    assert collector.feed("   ") is None


def test_relative_to_root():
    assert relative_to_root(f"{DEST}/x/y.txt", DEST) == "x/y.txt"
    assert relative_to_root(DEST, DEST) == ""
    assert relative_to_root("https://other.blob.core.windows.net/c/x", DEST) is None
    assert relative_to_root("/data/srcx/a", "/data/src") is None
    assert relative_to_root("", DEST) is None


# -- command line --------------------------------------------------------------------------


def test_copy_command_with_list_file():
    job = BulkJob(
        operation=BulkOperation.COPY,
        source="/data/src",
        destination=DEST,
        paths=("a.txt",),
        options=TransferOptions(cap_mbps=100, block_size_mb=8, put_hash=True),
    )

    argv = build_command(job, executable="azcopy", list_file="/tmp/list")

    assert argv == [
        "azcopy",
        "copy",
        "/data/src",
        DEST,
        "--overwrite=true",
        "--recursive",
        "--as-subdir=false",
        "--list-of-files=/tmp/list",
        "--cap-mbps=100",
        "--block-size-mb=8",
        "--put-md5",
        "--output-type",
        "json",
    ]


def test_single_object_copy_and_remove_commands():
    single = BulkJob(operation=BulkOperation.COPY, source="/a.txt", destination=f"{DEST}/a.txt")
    assert build_command(single, executable="azcopy") == [
        "azcopy",
        "copy",
        "/a.txt",
        f"{DEST}/a.txt",
        "--overwrite=true",
        "--output-type",
        "json",
    ]

    remove = BulkJob(operation=BulkOperation.REMOVE, source=DEST, paths=("a",))
    assert build_command(remove, executable="azcopy", list_file="L") == [
        "azcopy",
        "remove",
        DEST,
        "--recursive",
        "--list-of-files=L",
        "--output-type",
        "json",
    ]


def test_option_args_empty_by_default():
    assert option_args(TransferOptions()) == []
    assert option_args(TransferOptions(cap_mbps=0.5)) == ["--cap-mbps=0.5"]


def test_env_maps_credential_kinds():
    base = {"AZURE_CLIENT_ID": "app", "AZURE_CLIENT_SECRET": "s3cret", "AZURE_TENANT_ID": "tenant"}
    job = BulkJob(
        operation=BulkOperation.COPY,
        source="/src",
        destination=DEST,
        options=TransferOptions(concurrency=16),
        auth_kind=CredentialKind.SERVICE_PRINCIPAL,
    )

    env = build_env(job, base=base)

    assert env["AZCOPY_AUTO_LOGIN_TYPE"] == "SPN"
    assert env["AZCOPY_SPA_APPLICATION_ID"] == "app"
    assert env["AZCOPY_SPA_CLIENT_SECRET"] == "s3cret"
    assert env["AZCOPY_TENANT_ID"] == "tenant"
    assert env["AZCOPY_CONCURRENCY_VALUE"] == "16"

    cli_job = BulkJob(operation=BulkOperation.REMOVE, source=DEST, auth_kind=CredentialKind.CLI_SESSION)
    cli_env = build_env(cli_job, base={"AZCOPY_CONCURRENCY_VALUE": "AUTO"})
    assert cli_env["AZCOPY_AUTO_LOGIN_TYPE"] == "AZCLI"
    assert cli_env["AZCOPY_CONCURRENCY_VALUE"] == "AUTO"
    assert "AZCOPY_SPA_CLIENT_SECRET" not in cli_env


# -- locator -------------------------------------------------------------------------------


def test_parse_version():
    assert parse_version("azcopy version 10.30.1\n") == "10.30.1"
    assert parse_version("garbage") is None


@pytest.mark.asyncio
async def test_locate_fails_without_any_azcopy(settings, monkeypatch, tmp_path):
    monkeypatch.setattr("adapters.azcopy.locator.shutil.which", lambda name: None)
    monkeypatch.setattr("adapters.azcopy.locator.bundled_path", lambda: tmp_path / "missing" / "azcopy")

    with pytest.raises(BackendError, match="AzCopy not found"):
        await locate_azcopy(settings)


# -- subprocess ----------------------------------------------------------------------------


def _fake_azcopy(tmp_path, lines: list[str], *, exit_code: int = 0, sleep: float = 0.0):
    """A shell script standing in for azcopy: prints `lines`, then exits."""

    body = tmp_path / "output.jsonl"
    body.write_text("\n".join(lines) + "\n", encoding="utf-8")
    script = tmp_path / "azcopy"
    pause = f"exec sleep {sleep}\n" if sleep else ""
    script.write_text(f"#!/bin/sh\ncat '{body}'\n{pause}exit {exit_code}\n", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return AzCopyExecutable(path=str(script), version=PINNED_VERSION)


posix_only = pytest.mark.skipif(sys.platform.startswith("win"), reason="uses a /bin/sh stand-in")


@posix_only
@pytest.mark.asyncio
async def test_backend_runs_the_process_and_reports(settings, tmp_path):
    executable = _fake_azcopy(
        tmp_path,
        [
            envelope("Init", {"LogFileLocation": "/logs/j.log"}),
            progress(),
            progress("Completed", TransfersCompleted="2", TotalBytesTransferred="20"),
        ],
    )
    events = []
    job = BulkJob(operation=BulkOperation.COPY, source="/src", destination=DEST, paths=("a", "b"))

    report = await AzCopyBackend(settings, executable=executable).run(job, on_event=events.append)

    assert report.status == "Completed"
    assert report.completed == 2
    assert report.bytes_transferred == 20
    assert report.log_file == "/logs/j.log"
    assert not report.crashed
    assert [e.kind for e in events] == ["progress", "done"]


@posix_only
@pytest.mark.asyncio
async def test_backend_crash_without_final_status(settings, tmp_path):
    executable = _fake_azcopy(tmp_path, [envelope("Error", "cannot authenticate")], exit_code=1)
    job = BulkJob(operation=BulkOperation.REMOVE, source=DEST, paths=("a",))

    report = await AzCopyBackend(settings, executable=executable).run(job)

    assert report.crashed
    assert "cannot authenticate" in report.error


@posix_only
@pytest.mark.asyncio
async def test_backend_stops_the_process_on_cancel(settings, tmp_path):
    executable = _fake_azcopy(tmp_path, [progress()], sleep=30)
    cancel = asyncio.Event()
    job = BulkJob(operation=BulkOperation.COPY, source="/src", destination=DEST, paths=("a",))

    async def interrupt() -> None:
        await asyncio.sleep(0.3)
        cancel.set()

    _, report = await asyncio.gather(
        interrupt(),
        asyncio.wait_for(AzCopyBackend(settings, executable=executable).run(job, cancel=cancel), timeout=20),
    )

    assert report.cancelled
