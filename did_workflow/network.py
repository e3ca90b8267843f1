"""
Network Context - Supported chains and their typed-data domains

Supported networks form a closed table. Adding a network is a new enum
member, never a new branch on a network name string.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .config import WorkflowSettings, get_settings
from .exceptions import InvalidPayload, NetworkUnsupported

logger = logging.getLogger(__name__)


class SupportedNetwork(Enum):
    """Supported chains: (name, chain id, is primary network)"""
    MAINNET = ("mainnet", 1, True)
    SEPOLIA = ("sepolia", 11155111, False)

    def __init__(self, network_name: str, chain_id: int, primary: bool):
        self.network_name = network_name
        self.chain_id = chain_id
        self.primary = primary

    @property
    def did_segment(self) -> Optional[str]:
        """Network segment of a did:ethr string, omitted on the primary network"""
        return None if self.primary else self.network_name


@dataclass(frozen=True)
class TypedDataDomain:
    """EIP-712 domain scoping every signature to one chain"""
    name: str
    version: str
    chain_id: int

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "version": self.version, "chainId": self.chain_id}

    @classmethod
    def from_dict(cls, data: Any) -> "TypedDataDomain":
        if not isinstance(data, Mapping):
            raise InvalidPayload("Domain must be an object")
        name, version, chain_id = data.get("name"), data.get("version"), data.get("chainId")
        if not isinstance(name, str) or not isinstance(version, str):
            raise InvalidPayload("Domain name and version must be strings")
        if isinstance(chain_id, bool) or not isinstance(chain_id, int):
            raise InvalidPayload("Domain chainId must be an integer")
        return cls(name=name, version=version, chain_id=chain_id)


@dataclass(frozen=True)
class NetworkContext:
    """Active network of a connection. Immutable; re-fetched on every connection change."""
    network: SupportedNetwork
    chain_id: int

    def __post_init__(self):
        if self.chain_id != self.network.chain_id:
            raise NetworkUnsupported(
                f"Chain id {self.chain_id} does not belong to {self.network.network_name}"
            )

    @classmethod
    def of(cls, network: SupportedNetwork) -> "NetworkContext":
        return cls(network=network, chain_id=network.chain_id)

    @property
    def name(self) -> str:
        return self.network.network_name

    def domain(self, settings: Optional[WorkflowSettings] = None) -> TypedDataDomain:
        """Typed-data domain bound to this network's chain id"""
        settings = settings or get_settings()
        return TypedDataDomain(
            name=settings.DOMAIN_NAME,
            version=settings.DOMAIN_VERSION,
            chain_id=self.chain_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "chainId": self.chain_id}


def network_for_chain_id(chain_id: Any) -> SupportedNetwork:
    """Look up a supported network by chain id (int or hex/decimal string)."""
    try:
        if isinstance(chain_id, str):
            chain_id = int(chain_id, 0)
        elif isinstance(chain_id, bool) or not isinstance(chain_id, int):
            raise TypeError(chain_id)
    except (TypeError, ValueError):
        raise NetworkUnsupported(f"Invalid chain id: {chain_id!r}")

    for network in SupportedNetwork:
        if network.chain_id == chain_id:
            return network
    raise NetworkUnsupported(f"Unsupported chain id: {chain_id}")


def network_for_segment(segment: Optional[str]) -> SupportedNetwork:
    """
    Look up a supported network by its did:ethr segment

    Accepts the network name or the hex chain id (e.g. ``0xaa36a7``).
    No segment means the primary network.
    """
    if not segment:
        return next(network for network in SupportedNetwork if network.primary)
    for network in SupportedNetwork:
        if network.network_name == segment:
            return network
    if segment.lower().startswith("0x"):
        return network_for_chain_id(segment)
    raise NetworkUnsupported(f"Unsupported network segment: {segment}")


async def resolve_active_network(provider) -> NetworkContext:
    """
    Resolve which supported network the provider is connected to

    Args:
        provider: Wallet/session provider exposing ``get_network()``

    Returns:
        NetworkContext of the active chain

    Raises:
        NetworkUnsupported: chain id outside the supported table
    """
    info = await provider.get_network()
    chain_id = info.get("chainId") if isinstance(info, Mapping) else None
    network = network_for_chain_id(chain_id)
    logger.info("Active network: %s (chain id %s)", network.network_name, network.chain_id)
    return NetworkContext.of(network)
