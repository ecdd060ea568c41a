"""Wrapper de httpx.

- Estandariza timeouts y headers de las llamadas HTTP fuera del SDK de Azure.
- Lo usan la sonda de identidad administrada (IMDS), el catálogo de cuentas
  de Resource Manager y las comprobaciones de `doctor`.
- `transport` permite sustituir la red por `httpx.MockTransport` en tests.
"""

from __future__ import annotations

import httpx

from core.config import AppSettings


def build_async_client(
    settings: AppSettings | None = None,
    *,
    extra_headers: dict[str, str] | None = None,
    timeout_seconds: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an `httpx.AsyncClient` with the application's timeouts and headers.

    `transport` lets tests plug in `httpx.MockTransport`.
    """

    settings = settings or AppSettings()
    headers: dict[str, str] = {
        "User-Agent": settings.user_agent,
        "Accept": "application/json",
    }
    if extra_headers:
        headers.update(extra_headers)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds or settings.http_timeout_seconds),
        follow_redirects=False,
        headers=headers,
        transport=transport,
    )
