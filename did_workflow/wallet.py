"""
Wallet Provider - Accounts, active network and registry reads

The workflow only borrows accounts from a wallet provider. ``LocalWalletProvider``
is the in-process provider used by the HTTP service and the tests: it holds
``eth_account`` local accounts, a switchable chain id and an in-memory copy of
the identity registry (owners and delegates).
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .exceptions import NetworkUnsupported
from .network import network_for_chain_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletAccount:
    """An account borrowed from the wallet for the duration of an operation"""
    address: str
    signer: Any  # signing capability handle, opaque to the workflow


class WalletProvider(Protocol):
    async def list_accounts(self) -> Sequence[Any]: ...

    async def get_address(self, signing_capability: Any) -> str: ...

    async def get_network(self) -> Dict[str, Any]: ...


@runtime_checkable
class RegistryReader(Protocol):
    """Read access to an ERC-1056 style identity registry"""

    async def identity_owner(self, registry: str, identity: str) -> str: ...

    async def delegates(self, registry: str, identity: str) -> List[str]: ...


class LocalWalletProvider:
    """
    In-process wallet over eth_account local accounts

    Features:
    - List accounts and their addresses
    - Report and switch the active chain
    - Serve identity owner / delegate lookups from an in-memory registry
    """

    def __init__(
        self,
        accounts: Optional[Sequence[LocalAccount]] = None,
        chain_id: int = 11155111,
    ):
        self._accounts: List[LocalAccount] = list(accounts or [])
        self.chain_id = chain_id
        # (registry, identity) -> owner / delegates
        self._owners: Dict[tuple, str] = {}
        self._delegates: Dict[tuple, List[str]] = {}

    @classmethod
    def from_private_keys(cls, private_keys: Sequence[str], chain_id: int = 11155111) -> "LocalWalletProvider":
        return cls([Account.from_key(key) for key in private_keys], chain_id=chain_id)

    # ==================== WALLET ====================

    async def list_accounts(self) -> List[LocalAccount]:
        return list(self._accounts)

    async def get_address(self, signing_capability: LocalAccount) -> str:
        return signing_capability.address

    async def get_network(self) -> Dict[str, Any]:
        try:
            name = network_for_chain_id(self.chain_id).network_name
        except NetworkUnsupported:
            name = "unknown"
        return {"name": name, "chainId": self.chain_id}

    def switch_chain(self, chain_id: int):
        logger.info("Wallet switched to chain id %s", chain_id)
        self.chain_id = chain_id

    def add_account(self, account: Optional[LocalAccount] = None) -> LocalAccount:
        account = account or Account.create()
        self._accounts.append(account)
        return account

    # ==================== REGISTRY ====================

    async def identity_owner(self, registry: str, identity: str) -> str:
        return self._owners.get(self._registry_key(registry, identity), identity)

    async def delegates(self, registry: str, identity: str) -> List[str]:
        return list(self._delegates.get(self._registry_key(registry, identity), []))

    def change_owner(self, registry: str, identity: str, new_owner: str):
        self._owners[self._registry_key(registry, identity)] = new_owner

    def add_delegate(self, registry: str, identity: str, delegate: str):
        self._delegates.setdefault(self._registry_key(registry, identity), []).append(delegate)

    @staticmethod
    def _registry_key(registry: str, identity: str) -> tuple:
        return registry.lower(), identity.lower()


async def load_accounts(provider: WalletProvider) -> List[WalletAccount]:
    """
    Fetch the provider's accounts with their addresses

    An empty list means "no accounts available", not an error.
    """
    capabilities = await provider.list_accounts() or []
    accounts = []
    for capability in capabilities:
        address = await provider.get_address(capability)
        accounts.append(WalletAccount(address=address, signer=capability))
    logger.info("Loaded %d wallet account(s)", len(accounts))
    return accounts
