"""Configuración de azst.

- Variables de entorno cargadas una vez con pydantic-settings (prefijo `AZST_`).
- Un `.env` por usuario guarda valores como la cuenta por defecto entre ejecuciones.

Nota: `write_user_env_vars` solo acepta claves que `AppSettings` conoce.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import UsageError


def get_user_config_dir() -> Path:
    """Per-user configuration directory (cross-platform, no extra dependencies)."""

    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", str(Path.home())))
        return base / "azst"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "azst"

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "azst"
    return Path.home() / ".config" / "azst"


def get_user_env_file() -> Path:
    return get_user_config_dir() / ".env"


USER_ENV_HEADER = "# azst user config (.env)"


def user_env_keys() -> frozenset[str]:
    """Variable names `AppSettings` reads; the only keys the user `.env` may hold."""

    keys = {f"AZST_{name.upper()}" for name in AppSettings.model_fields}
    keys.add("AZURE_CREDENTIAL_KIND")
    return frozenset(keys)


def _split_assignment(line: str) -> tuple[str, str] | None:
    stripped = line.strip()
    if not stripped or stripped.startswith("#") or "=" not in stripped:
        return None
    key, value = stripped.removeprefix("export ").split("=", 1)
    key = key.strip()
    if not key:
        return None
    return key, value.strip().strip('"').strip("'")


def read_user_env(env_path: Path | None = None) -> dict[str, str]:
    env_path = env_path or get_user_env_file()
    if not env_path.exists():
        return {}
    pairs = (_split_assignment(line) for line in env_path.read_text(encoding="utf-8").splitlines())
    return dict(pair for pair in pairs if pair is not None)


def write_user_env_vars(values: dict[str, str | None], *, env_path: Path | None = None) -> Path:
    """Set azst settings in the user's `.env`; a None value removes the key.

    Comments and unrelated lines stay where they are. Updated keys are
    rewritten in place, new ones are appended in sorted order.
    """

    unknown = sorted(set(values) - user_env_keys())
    if unknown:
        raise UsageError(f"Unknown azst setting(s): {', '.join(unknown)}")

    env_path = env_path or get_user_env_file()
    env_path.parent.mkdir(parents=True, exist_ok=True)
    lines = env_path.read_text(encoding="utf-8").splitlines() if env_path.exists() else [USER_ENV_HEADER]

    written: set[str] = set()
    output: list[str] = []
    for line in lines:
        assignment = _split_assignment(line)
        if assignment is None or assignment[0] not in values:
            output.append(line)
            continue
        key = assignment[0]
        # Later duplicates of a rewritten key would shadow the new value.
        if key not in written and values[key] is not None:
            output.append(f"{key}={values[key]}")
        written.add(key)

    for key in sorted(set(values) - written):
        if values[key] is not None:
            output.append(f"{key}={values[key]}")

    env_path.write_text("\n".join(output) + "\n", encoding="utf-8")
    return env_path


class AppSettings(BaseSettings):
    """Central application settings, validated at the environment boundary."""

    model_config = SettingsConfigDict(
        env_prefix="AZST_",
        extra="ignore",
        case_sensitive=False,
        # Project `.env` first (dev), then the user's global config.
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
        populate_by_name=True,
    )

    default_account: str | None = Field(
        default=None,
        description="Storage account used by legacy `az://container/path` URIs.",
    )
    concurrency: int = Field(
        default=8,
        ge=1,
        le=256,
        description="Worker pool size for listing and metadata-only operations.",
    )
    direct_delete_threshold: int = Field(
        default=50,
        ge=0,
        description="Deletions at or below this count go through the direct API; above it, the bulk backend.",
    )
    max_retries: int = Field(
        default=4,
        ge=0,
        le=10,
        description="Retries for transient network failures before surfacing NetworkError.",
    )
    retry_backoff_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Initial backoff delay, doubled per attempt.",
    )
    retry_backoff_cap_seconds: float = Field(
        default=8.0,
        ge=0,
        description="Upper bound for a single backoff delay.",
    )
    azcopy_path: Path | None = Field(
        default=None,
        description="Explicit AzCopy executable; skips discovery when set.",
    )
    imds_endpoint: str = Field(
        default="http://169.254.169.254/metadata/identity/oauth2/token",
        min_length=8,
        description="Instance metadata token endpoint probed for managed identity.",
    )
    imds_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Timeout for the managed identity probe (seconds).",
    )
    management_endpoint: str = Field(
        default="https://management.azure.com",
        min_length=8,
        description="Azure Resource Manager endpoint used to discover storage accounts.",
    )
    http_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Timeout for plain HTTP requests (seconds).",
    )
    user_agent: str = Field(
        default="azst/0.3",
        min_length=1,
        description="User-Agent for plain HTTP requests.",
    )
    log_level: str = Field(
        default="WARNING",
        description="Log level for the loguru sink.",
    )
    credential_kind: str | None = Field(
        default=None,
        validation_alias=AliasChoices("AZURE_CREDENTIAL_KIND", "AZST_CREDENTIAL_KIND"),
        description="Forces a single credential probe (service_principal, managed_identity, cli_session).",
    )
