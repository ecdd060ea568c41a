"""Wires production adapters into an `InvocationContext`."""

from __future__ import annotations

from adapters.account_catalog import ArmAccountCatalog
from adapters.azcopy import AzCopyBackend
from adapters.blob_storage import AzureBlobStore
from adapters.credential_probes import ChainTokenCredential, build_probes
from core.config import AppSettings
from core.context import InvocationContext
from core.interfaces.credentials import MANAGEMENT_SCOPE
from core.services.credential_chain import CredentialChain, parse_forced_kind


def build_context(settings: AppSettings) -> InvocationContext:
    forced_kind = parse_forced_kind(settings.credential_kind)
    chain = CredentialChain(build_probes(settings), forced_kind=forced_kind)
    token_credential = ChainTokenCredential(chain)

    def store_factory(account: str) -> AzureBlobStore:
        return AzureBlobStore(account, credential=token_credential)

    # Account discovery needs a management-plane token, resolved on first use only.
    management_chain = CredentialChain(build_probes(settings), forced_kind=forced_kind, scope=MANAGEMENT_SCOPE)

    return InvocationContext(
        settings=settings,
        credentials=chain,
        backend=AzCopyBackend(settings),
        store_factory=store_factory,
        account_catalog=ArmAccountCatalog(settings, management_chain),
    )
