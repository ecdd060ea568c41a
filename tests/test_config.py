import pytest

from core.config import AppSettings, get_user_config_dir, read_user_env, user_env_keys, write_user_env_vars
from core.errors import UsageError
from adapters.json_exporter import summary_payload
from core.domain.models import ActionKind, Outcome, TransferAction, TransferResult, TransferSummary


def test_write_user_env_vars_merges_and_sorts(tmp_path):
    env_path = tmp_path / "cfg" / ".env"

    write_user_env_vars({"AZST_DEFAULT_ACCOUNT": "first", "AZST_CONCURRENCY": "4"}, env_path=env_path)
    write_user_env_vars({"AZST_DEFAULT_ACCOUNT": "second", "AZST_LOG_LEVEL": None}, env_path=env_path)

    lines = env_path.read_text(encoding="utf-8").splitlines()
    assert lines == [
        "# azst user config (.env)",
        "AZST_CONCURRENCY=4",
        "AZST_DEFAULT_ACCOUNT=second",
    ]


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("AZST_DEFAULT_ACCOUNT", "envacct")
    monkeypatch.setenv("AZST_CONCURRENCY", "12")
    monkeypatch.setenv("AZURE_CREDENTIAL_KIND", "managed_identity")

    settings = AppSettings(_env_file=None)

    assert settings.default_account == "envacct"
    assert settings.concurrency == 12
    assert settings.credential_kind == "managed_identity"


def test_settings_defaults(monkeypatch):
    settings = AppSettings(_env_file=None)

    assert settings.default_account is None
    assert settings.direct_delete_threshold == 50
    assert settings.azcopy_path is None
    assert settings.credential_kind is None


def test_user_config_dir_follows_xdg(monkeypatch, tmp_path):
    monkeypatch.setattr("core.config.sys.platform", "linux")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))

    assert get_user_config_dir() == tmp_path / "azst"


def test_summary_payload_shape():
    action = TransferAction(kind=ActionKind.UPDATE, relative_path="a.txt")
    summary = TransferSummary(
        results=[TransferResult(action=action, outcome=Outcome.SUCCESS, bytes_transferred=5)],
        duration=1.23456,
    )

    payload = summary_payload(summary, command="sync")

    assert payload["duration_seconds"] == 1.235
    assert payload["items"] == [
        {"action": "update", "path": "a.txt", "outcome": "success", "reason": None, "bytes": 5}
    ]


def test_write_user_env_vars_keeps_comments_and_removes_none(tmp_path):
    env_path = tmp_path / ".env"
    env_path.write_text(
        "# my notes\nexport AZST_DEFAULT_ACCOUNT=old\nAZST_LOG_LEVEL=DEBUG\nAZST_DEFAULT_ACCOUNT=dup\n",
        encoding="utf-8",
    )

    write_user_env_vars({"AZST_DEFAULT_ACCOUNT": "new", "AZST_LOG_LEVEL": None}, env_path=env_path)

    assert env_path.read_text(encoding="utf-8") == "# my notes\nAZST_DEFAULT_ACCOUNT=new\n"
    assert read_user_env(env_path) == {"AZST_DEFAULT_ACCOUNT": "new"}


def test_write_user_env_vars_rejects_unknown_keys(tmp_path):
    env_path = tmp_path / ".env"

    with pytest.raises(UsageError, match="AZST_NOPE"):
        write_user_env_vars({"AZST_NOPE": "1"}, env_path=env_path)
    assert not env_path.exists()


def test_user_env_keys_follow_settings_fields():
    keys = user_env_keys()

    assert {"AZST_DEFAULT_ACCOUNT", "AZST_MANAGEMENT_ENDPOINT", "AZURE_CREDENTIAL_KIND"} <= keys
    assert "AZURE_CLIENT_SECRET" not in keys
