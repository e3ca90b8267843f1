"""
DID Resolver - did:ethr resolution bound to per-network registries

A ``ResolverBinding`` links one supported network to its registry address and
the provider handle used to read it. A ``DidResolver`` registers any number of
bindings at once, so a single instance answers lookups for every network it
was built with.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional

from .config import registry_table
from .did_document import DIDDocument, verification_method
from .exceptions import DidNotResolvable, UnknownNetwork
from .identity import bind, parse_did
from .network import NetworkContext, SupportedNetwork
from .wallet import RegistryReader

logger = logging.getLogger(__name__)

NULL_ADDRESS = "0x" + "0" * 40


@dataclass(frozen=True)
class ResolverBinding:
    """Network -> registry binding. Pure function of the network and provider handle."""
    network: NetworkContext
    registry_address: str
    provider: Any = None


class DidResolver:
    """
    Resolves did:ethr identifiers to DID Documents

    Resolution never mutates a binding, so it is safe to retry and to share
    between concurrent verifications.
    """

    def __init__(self, bindings: Iterable[ResolverBinding]):
        self._bindings = MappingProxyType({b.network.network: b for b in bindings})

    @property
    def networks(self) -> List[SupportedNetwork]:
        return list(self._bindings.keys())

    def binding_for(self, network: SupportedNetwork) -> Optional[ResolverBinding]:
        return self._bindings.get(network)

    async def resolve(self, did: str) -> DIDDocument:
        """
        Resolve DID to DID Document

        Raises:
            DidNotResolvable: malformed DID, network not registered in this
                resolver, registry read failure or deactivated identity
        """
        parsed = parse_did(did)
        binding = self._bindings.get(parsed.network)
        if binding is None:
            raise DidNotResolvable(
                f"No resolver registered for network {parsed.network.network_name}: {did}"
            )

        owner, delegates = parsed.address, []
        if isinstance(binding.provider, RegistryReader):
            try:
                owner = await binding.provider.identity_owner(binding.registry_address, parsed.address)
                delegates = await binding.provider.delegates(binding.registry_address, parsed.address)
            except Exception as e:
                logger.warning("Registry read failed for %s: %s", did, e)
                raise DidNotResolvable(f"Registry read failed for {did}: {e}") from e

        if owner.lower() == NULL_ADDRESS:
            raise DidNotResolvable(f"DID has been deactivated: {did}")

        chain_id = binding.network.chain_id
        methods = [verification_method(did, "controller", chain_id, owner)]
        for index, delegate in enumerate(delegates, start=1):
            methods.append(verification_method(did, f"delegate-{index}", chain_id, delegate))

        return DIDDocument(
            id=did,
            controller=bind(owner, binding.network),
            verification_method=methods,
            authentication=[methods[0]["id"]],
            assertion_method=[vm["id"] for vm in methods],
        )


class DidResolverFactory:
    """Builds resolver bindings from the static registry table"""

    def __init__(self, registries: Optional[Mapping[str, str]] = None):
        self.registries = registries if registries is not None else registry_table()

    def build_resolver(self, network: NetworkContext, provider: Any = None) -> ResolverBinding:
        """
        Build the binding for one network

        Raises:
            UnknownNetwork: network outside the registry table
        """
        registry = self.registries.get(network.name) if network is not None else None
        if registry is None:
            raise UnknownNetwork(f"No registry configured for network: {network and network.name}")
        return ResolverBinding(network=network, registry_address=registry, provider=provider)

    def resolver_for(self, network: NetworkContext, provider: Any = None) -> DidResolver:
        """Resolver answering for a single network"""
        return DidResolver([self.build_resolver(network, provider)])

    def build_multi_network_resolver(self, providers: Mapping[SupportedNetwork, Any]) -> DidResolver:
        """Resolver answering for every network in ``providers``"""
        return DidResolver(
            self.build_resolver(NetworkContext.of(network), provider)
            for network, provider in providers.items()
        )
