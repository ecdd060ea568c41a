"""Per-invocation context.

Built once by the CLI and passed explicitly to every service. Holds the
only state shared between concurrent tasks of one command: the credential
chain (read-only once resolved), one lazily created `BlobStore` per account
and the cooperative cancellation flag.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable

from core.config import AppSettings
from core.errors import AddressError
from core.interfaces.storage import AccountCatalog, BlobStore
from core.interfaces.transfer_backend import EventCallback, TransferBackend
from core.services.credential_chain import CredentialChain
from core.services.executor import TransferExecutor
from core.services.lister import Lister


@dataclass
class InvocationContext:
    settings: AppSettings
    credentials: CredentialChain
    backend: TransferBackend
    store_factory: Callable[[str], BlobStore]
    account_catalog: AccountCatalog | None = None
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    _stores: dict[str, BlobStore] = field(default_factory=dict, repr=False)

    def store_for(self, account: str) -> BlobStore:
        """The account's store, constructed on first remote touch."""

        if not account:
            raise AddressError("Storage account is required for remote access")
        store = self._stores.get(account)
        if store is None:
            store = self.store_factory(account)
            self._stores[account] = store
        return store

    def lister(self) -> Lister:
        return Lister(store_for=self.store_for, settings=self.settings, cancel=self.cancel)

    def executor(self, *, on_event: EventCallback | None = None) -> TransferExecutor:
        return TransferExecutor(
            backend=self.backend,
            store_for=self.store_for,
            settings=self.settings,
            credentials=self.credentials,
            cancel=self.cancel,
            on_event=on_event,
        )

    async def aclose(self) -> None:
        stores = list(self._stores.values())
        self._stores.clear()
        for store in stores:
            await store.close()
