"""Storage account discovery through Azure Resource Manager.

The blob data plane cannot enumerate accounts, so `ls` without an address
asks the management plane: every subscription the credential can see, then
the storage accounts of each one. Responses are paged with `nextLink`.
"""

from __future__ import annotations

from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from adapters.http_client import build_async_client
from core.config import AppSettings
from core.errors import AzstError, NetworkError, StoragePermissionError
from core.interfaces.storage import AccountRecord
from core.log import logger
from core.services.credential_chain import CredentialChain

SUBSCRIPTIONS_API_VERSION = "2022-12-01"
STORAGE_API_VERSION = "2023-01-01"


class _Subscription(BaseModel):
    model_config = ConfigDict(extra="ignore")

    subscription_id: str = Field(alias="subscriptionId")


class _StorageAccount(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    location: str = ""
    id: str = ""


class _Page(BaseModel):
    model_config = ConfigDict(extra="ignore")

    value: list[dict[str, Any]] = Field(default_factory=list)
    next_link: str | None = Field(default=None, alias="nextLink")


M = TypeVar("M", bound=BaseModel)


def resource_group_of(resource_id: str) -> str:
    """`/subscriptions/s/resourceGroups/rg/providers/...` -> `rg`."""

    parts = [part for part in resource_id.split("/") if part]
    for index, part in enumerate(parts[:-1]):
        if part.lower() == "resourcegroups":
            return parts[index + 1]
    return ""


class ArmAccountCatalog:
    """Lists storage accounts with a management-scope token from the credential chain."""

    def __init__(
        self,
        settings: AppSettings,
        chain: CredentialChain,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._chain = chain
        self._transport = transport

    async def list_accounts(self) -> list[AccountRecord]:
        credential = await self._chain.resolve()
        endpoint = self._settings.management_endpoint.rstrip("/")

        async with build_async_client(
            self._settings,
            extra_headers={"Authorization": f"Bearer {credential.material}"},
            transport=self._transport,
        ) as client:
            subscriptions = await self._collect(
                client,
                f"{endpoint}/subscriptions",
                {"api-version": SUBSCRIPTIONS_API_VERSION},
                _Subscription,
            )
            records: list[AccountRecord] = []
            for subscription in subscriptions:
                accounts = await self._collect(
                    client,
                    f"{endpoint}/subscriptions/{subscription.subscription_id}"
                    "/providers/Microsoft.Storage/storageAccounts",
                    {"api-version": STORAGE_API_VERSION},
                    _StorageAccount,
                )
                logger.debug("Subscription {}: {} storage account(s)", subscription.subscription_id, len(accounts))
                records.extend(
                    AccountRecord(
                        name=account.name,
                        location=account.location,
                        resource_group=resource_group_of(account.id),
                        subscription_id=subscription.subscription_id,
                    )
                    for account in accounts
                )
        return records

    async def _collect(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: dict[str, str],
        model: type[M],
    ) -> list[M]:
        items: list[M] = []
        next_url: str | None = url
        next_params: dict[str, str] | None = params
        while next_url:
            page = await self._get_page(client, next_url, next_params)
            try:
                items.extend(model.model_validate(item) for item in page.value)
            except ValidationError as exc:
                raise AzstError("Resource Manager returned an unexpected payload", path=next_url) from exc
            # nextLink already carries its query string.
            next_url, next_params = page.next_link, None
        return items

    async def _get_page(self, client: httpx.AsyncClient, url: str, params: dict[str, str] | None) -> _Page:
        try:
            response = await client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise NetworkError(f"Resource Manager unreachable: {exc}", path=url) from exc

        status = response.status_code
        if status in (401, 403):
            raise StoragePermissionError("Not authorized to list storage accounts", path=url)
        if status == 429 or status >= 500:
            raise NetworkError(f"Resource Manager returned HTTP {status}", path=url)
        if status != 200:
            raise AzstError(f"Resource Manager returned HTTP {status}", path=url)
        try:
            return _Page.model_validate(response.json())
        except ValueError as exc:
            raise AzstError("Resource Manager returned an unexpected payload", path=url) from exc
