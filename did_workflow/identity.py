"""
Identity Binder - did:ethr strings for (account, network) pairs

DID Format: did:ethr[:<network>]:<address>

The network segment is omitted on the primary network (mainnet).
"""

import re
from dataclasses import dataclass
from typing import Union

from eth_utils import is_hex_address

from .exceptions import DidNotResolvable, NetworkUnsupported
from .network import NetworkContext, SupportedNetwork, network_for_segment
from .wallet import WalletAccount

DID_METHOD = "ethr"

_DID_PATTERN = re.compile(r"^did:(?P<method>[a-z0-9]+):(?:(?P<segment>[A-Za-z0-9]+):)?(?P<address>[^:]+)$")


@dataclass(frozen=True)
class ParsedDid:
    """Components of a did:ethr string"""
    did: str
    network: SupportedNetwork
    address: str


def bind(account: Union[str, WalletAccount], network: NetworkContext) -> str:
    """
    Build the canonical DID for an account on a network

    Args:
        account: WalletAccount or bare chain address
        network: Active network context

    Returns:
        DID string, e.g. did:ethr:sepolia:0xABCD
    """
    if network is None:
        raise NetworkUnsupported("No active network")
    address = account if isinstance(account, str) else account.address
    segment = network.network.did_segment
    if segment is None:
        return f"did:{DID_METHOD}:{address}"
    return f"did:{DID_METHOD}:{segment}:{address}"


def parse_did(did: str) -> ParsedDid:
    """Split a did:ethr string; raises DidNotResolvable for anything else."""
    match = _DID_PATTERN.match(did) if isinstance(did, str) else None
    if not match or match.group("method") != DID_METHOD:
        raise DidNotResolvable(f"Not a did:{DID_METHOD} identifier: {did!r}")

    address = match.group("address")
    if not is_hex_address(address):
        raise DidNotResolvable(f"Invalid address in DID: {did}")

    try:
        network = network_for_segment(match.group("segment"))
    except NetworkUnsupported as e:
        raise DidNotResolvable(f"Unknown network in DID {did}: {e.message}")

    return ParsedDid(did=did, network=network, address=address)
