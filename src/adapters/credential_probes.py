"""Credential probes and the SDK bridge for the resolved credential.

Probe order is fixed by `build_probes`: environment service principal,
managed identity (instance metadata endpoint), Azure CLI session.
"""

from __future__ import annotations

import os
import time
from datetime import datetime, timezone
from typing import Any, Mapping

import httpx
from azure.core.credentials import AccessToken
from azure.core.exceptions import AzureError
from azure.identity.aio import AzureCliCredential, ClientSecretCredential

from adapters.http_client import build_async_client
from core.config import AppSettings
from core.domain.models import Credential, CredentialKind
from core.interfaces.credentials import STORAGE_SCOPE, CredentialProbe, ProbeFailure
from core.services.credential_chain import CredentialChain

SERVICE_PRINCIPAL_VARS = ("AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET")
IMDS_API_VERSION = "2018-02-01"


def _expiry(epoch: int | float | str) -> datetime:
    return datetime.fromtimestamp(float(epoch), tz=timezone.utc)


def _first_line(exc: Exception) -> str:
    text = getattr(exc, "message", None) or str(exc) or type(exc).__name__
    return text.strip().splitlines()[0]


class EnvironmentProbe:
    """Service principal from AZURE_TENANT_ID / AZURE_CLIENT_ID / AZURE_CLIENT_SECRET."""

    kind = CredentialKind.SERVICE_PRINCIPAL

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = environ if environ is not None else os.environ

    async def attempt(self, scope: str = STORAGE_SCOPE) -> Credential:
        missing = [name for name in SERVICE_PRINCIPAL_VARS if not self._environ.get(name)]
        if missing:
            raise ProbeFailure(f"missing {', '.join(missing)}")

        try:
            credential = ClientSecretCredential(
                tenant_id=self._environ["AZURE_TENANT_ID"],
                client_id=self._environ["AZURE_CLIENT_ID"],
                client_secret=self._environ["AZURE_CLIENT_SECRET"],
            )
        except ValueError as exc:
            # azure-identity validates the tenant id before any request.
            raise ProbeFailure(f"invalid service principal settings: {_first_line(exc)}") from exc
        try:
            token = await credential.get_token(scope)
        except (AzureError, ValueError) as exc:
            raise ProbeFailure(f"token exchange failed: {_first_line(exc)}") from exc
        finally:
            await credential.close()
        return Credential(kind=self.kind, material=token.token, expires_on=_expiry(token.expires_on))


class ManagedIdentityProbe:
    """Token from the instance metadata endpoint (IMDS)."""

    kind = CredentialKind.MANAGED_IDENTITY

    def __init__(
        self,
        settings: AppSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    async def attempt(self, scope: str = STORAGE_SCOPE) -> Credential:
        resource = scope.removesuffix(".default")
        params = {"api-version": IMDS_API_VERSION, "resource": resource}

        try:
            async with build_async_client(
                self._settings,
                extra_headers={"Metadata": "true"},
                timeout_seconds=self._settings.imds_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.get(self._settings.imds_endpoint, params=params)
        except httpx.HTTPError as exc:
            raise ProbeFailure(f"instance metadata endpoint unreachable: {_first_line(exc)}") from exc

        if response.status_code != 200:
            raise ProbeFailure(f"instance metadata endpoint returned HTTP {response.status_code}")
        try:
            payload: dict[str, Any] = response.json()
            token = payload["access_token"]
            raw_expiry = payload.get("expires_on")
            expires_on = _expiry(raw_expiry) if raw_expiry else _expiry(time.time() + float(payload.get("expires_in", 0)))
        except (ValueError, KeyError, TypeError) as exc:
            raise ProbeFailure("instance metadata endpoint returned an unexpected payload") from exc
        return Credential(kind=self.kind, material=token, expires_on=expires_on)


class CliSessionProbe:
    """Token cached by a local `az login` session."""

    kind = CredentialKind.CLI_SESSION

    async def attempt(self, scope: str = STORAGE_SCOPE) -> Credential:
        credential = AzureCliCredential()
        try:
            token = await credential.get_token(scope)
        except (AzureError, ValueError) as exc:
            raise ProbeFailure(_first_line(exc)) from exc
        finally:
            await credential.close()
        return Credential(kind=self.kind, material=token.token, expires_on=_expiry(token.expires_on))


def build_probes(settings: AppSettings) -> list[CredentialProbe]:
    return [EnvironmentProbe(), ManagedIdentityProbe(settings), CliSessionProbe()]


class ChainTokenCredential:
    """Async token credential for the Azure SDK, backed by the invocation's chain."""

    def __init__(self, chain: CredentialChain) -> None:
        self._chain = chain

    async def get_token(self, *scopes: str, **kwargs: Any) -> AccessToken:
        credential = await self._chain.resolve()
        return AccessToken(str(credential.material), int(credential.expires_on.timestamp()))

    async def close(self) -> None:
        return None

    async def __aenter__(self) -> ChainTokenCredential:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
