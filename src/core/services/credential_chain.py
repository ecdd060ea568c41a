"""Credential resolution chain.

States: UNRESOLVED -> PROBING_ENVIRONMENT -> PROBING_MANAGED_IDENTITY ->
PROBING_CLI_SESSION -> RESOLVED(kind) | FAILED.

- Probes run strictly in the order given and the chain stops at the first success.
- A forced kind (AZURE_CREDENTIAL_KIND) runs only that probe.
- The resolved credential is cached for the invocation; on expiry the
  whole chain runs once more from the top.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Sequence

from core.domain.models import Credential, CredentialKind
from core.errors import AuthError
from core.interfaces.credentials import STORAGE_SCOPE, CredentialProbe, ProbeFailure
from core.log import logger


class ChainState(str, Enum):
    UNRESOLVED = "unresolved"
    PROBING_ENVIRONMENT = "probing_environment"
    PROBING_MANAGED_IDENTITY = "probing_managed_identity"
    PROBING_CLI_SESSION = "probing_cli_session"
    RESOLVED = "resolved"
    FAILED = "failed"


_PROBING_STATE = {
    CredentialKind.SERVICE_PRINCIPAL: ChainState.PROBING_ENVIRONMENT,
    CredentialKind.MANAGED_IDENTITY: ChainState.PROBING_MANAGED_IDENTITY,
    CredentialKind.CLI_SESSION: ChainState.PROBING_CLI_SESSION,
}


def parse_forced_kind(value: str | None) -> CredentialKind | None:
    if value is None or not value.strip():
        return None
    try:
        return CredentialKind.parse(value)
    except ValueError as exc:
        valid = ", ".join(kind.value for kind in CredentialKind)
        raise AuthError(f"Unknown AZURE_CREDENTIAL_KIND '{value}' (expected one of: {valid})") from exc


class CredentialChain:
    """Ordered, short-circuiting credential resolution, cached per invocation."""

    def __init__(
        self,
        probes: Sequence[CredentialProbe],
        *,
        forced_kind: CredentialKind | None = None,
        scope: str = STORAGE_SCOPE,
    ) -> None:
        self._probes = list(probes)
        self._forced_kind = forced_kind
        self._scope = scope
        self._state = ChainState.UNRESOLVED
        self._credential: Credential | None = None
        self._attempted: list[CredentialKind] = []
        self._lock = asyncio.Lock()

    @property
    def state(self) -> ChainState:
        return self._state

    @property
    def attempted(self) -> list[CredentialKind]:
        """Probes tried by the most recent run, in order."""

        return list(self._attempted)

    @property
    def cached(self) -> Credential | None:
        return self._credential

    def _selected_probes(self) -> list[CredentialProbe]:
        if self._forced_kind is None:
            return self._probes
        selected = [probe for probe in self._probes if probe.kind is self._forced_kind]
        if not selected:
            raise AuthError(f"No credential probe available for '{self._forced_kind.value}'")
        return selected[:1]

    async def resolve(self) -> Credential:
        """Return the cached credential, running the chain on first use or expiry."""

        async with self._lock:
            if self._credential is not None and not self._credential.is_expired():
                return self._credential
            if self._credential is not None:
                logger.debug("Credential ({}) expired; re-running the chain", self._credential.kind.value)
                self._credential = None
            return await self._run()

    async def _run(self) -> Credential:
        probes = self._selected_probes()
        reasons: dict[str, str] = {}
        self._attempted = []

        for probe in probes:
            self._state = _PROBING_STATE.get(probe.kind, self._state)
            self._attempted.append(probe.kind)
            logger.debug("Trying credential probe: {}", probe.kind.value)
            try:
                credential = await probe.attempt(self._scope)
            except ProbeFailure as exc:
                reasons[probe.kind.value] = str(exc) or type(exc).__name__
                logger.debug("Probe {} failed: {}", probe.kind.value, reasons[probe.kind.value])
                continue

            self._state = ChainState.RESOLVED
            self._credential = credential
            logger.debug("Resolved credential via {}", credential.kind.value)
            return credential

        self._state = ChainState.FAILED
        raise AuthError("Could not resolve Azure credentials", reasons=reasons)
