"""Contrato de las sondas de credenciales.

Cada sonda es una estrategia independiente de la cadena de resolución:
devuelve una `Credential` o lanza `ProbeFailure` con un motivo que la
cadena agrega en `AuthError`.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from core.domain.models import Credential, CredentialKind

STORAGE_SCOPE = "https://storage.azure.com/.default"
MANAGEMENT_SCOPE = "https://management.azure.com/.default"


class ProbeFailure(Exception):
    """The probe could not produce a credential."""


@runtime_checkable
class CredentialProbe(Protocol):
    kind: CredentialKind

    async def attempt(self, scope: str = STORAGE_SCOPE) -> Credential: ...
