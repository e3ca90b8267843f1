"""
Network, identity binding and resolution tests
"""

import pytest
from eth_account import Account

from did_workflow.config import WorkflowSettings, registry_table
from did_workflow.exceptions import DidNotResolvable, InvalidPayload, NetworkUnsupported, UnknownNetwork
from did_workflow.identity import bind, parse_did
from did_workflow.network import (
    NetworkContext,
    SupportedNetwork,
    TypedDataDomain,
    network_for_chain_id,
    resolve_active_network,
)
from did_workflow.resolver import NULL_ADDRESS, DidResolver, DidResolverFactory
from did_workflow.wallet import LocalWalletProvider, WalletAccount, load_accounts

SEPOLIA = NetworkContext.of(SupportedNetwork.SEPOLIA)
MAINNET = NetworkContext.of(SupportedNetwork.MAINNET)

ALICE = Account.from_key("0x" + "11" * 32)
BOB = Account.from_key("0x" + "22" * 32)


class TestNetworkContext:
    """NetworkContext and typed-data domains"""

    def setup_method(self):
        self.settings = WorkflowSettings(_env_file=None)

    def test_chain_id_lookup(self):
        assert network_for_chain_id(1) is SupportedNetwork.MAINNET
        assert network_for_chain_id(11155111) is SupportedNetwork.SEPOLIA
        assert network_for_chain_id("0xaa36a7") is SupportedNetwork.SEPOLIA

    @pytest.mark.parametrize("chain_id", [5, 137, None, "mainnet", True])
    def test_unsupported_chain_id(self, chain_id):
        with pytest.raises(NetworkUnsupported):
            network_for_chain_id(chain_id)

    def test_context_rejects_foreign_chain_id(self):
        with pytest.raises(NetworkUnsupported):
            NetworkContext(network=SupportedNetwork.SEPOLIA, chain_id=1)

    def test_domain_is_bound_to_chain(self):
        domain = SEPOLIA.domain(self.settings)

        assert domain.chain_id == 11155111
        assert domain.to_dict() == {"name": "Verifiable Credential", "version": "1", "chainId": 11155111}
        assert TypedDataDomain.from_dict(domain.to_dict()) == domain

    @pytest.mark.parametrize("data", [None, [], {"name": "x", "version": "1"}, {"name": 1, "version": "1", "chainId": 1}])
    def test_domain_from_invalid_dict(self, data):
        with pytest.raises(InvalidPayload):
            TypedDataDomain.from_dict(data)

    @pytest.mark.asyncio
    async def test_resolve_active_network(self):
        wallet = LocalWalletProvider([ALICE], chain_id=11155111)

        network = await resolve_active_network(wallet)

        assert network == SEPOLIA
        assert network.name == "sepolia"

    @pytest.mark.asyncio
    async def test_resolve_unsupported_network_fails_closed(self):
        wallet = LocalWalletProvider([ALICE], chain_id=5)

        with pytest.raises(NetworkUnsupported):
            await resolve_active_network(wallet)

    @pytest.mark.asyncio
    async def test_empty_wallet_has_no_accounts(self):
        assert await load_accounts(LocalWalletProvider([])) == []


class TestIdentityBinder:
    """did:ethr binding"""

    def test_bind_test_network(self):
        assert bind("0xABCD", SEPOLIA) == "did:ethr:sepolia:0xABCD"

    def test_bind_primary_network_omits_segment(self):
        assert bind("0xABCD", MAINNET) == "did:ethr:0xABCD"

    def test_bind_is_deterministic_and_injective(self):
        account = WalletAccount(address=ALICE.address, signer=ALICE)

        assert bind(account, SEPOLIA) == bind(account, SEPOLIA)
        assert bind(account, SEPOLIA) != bind(account, MAINNET)
        assert bind(ALICE.address, SEPOLIA) != bind(BOB.address, SEPOLIA)

    def test_parse_did(self):
        parsed = parse_did(f"did:ethr:sepolia:{ALICE.address}")

        assert parsed.network is SupportedNetwork.SEPOLIA
        assert parsed.address == ALICE.address
        assert parse_did(f"did:ethr:{ALICE.address}").network is SupportedNetwork.MAINNET
        assert parse_did(f"did:ethr:0xaa36a7:{ALICE.address}").network is SupportedNetwork.SEPOLIA

    @pytest.mark.parametrize("did", [
        "did:key:z6Mkabc",
        "did:ethr:sepolia:0xABCD",
        "did:ethr:goerli:0x" + "1" * 40,
        "not a did",
        None,
    ])
    def test_parse_invalid_did(self, did):
        with pytest.raises(DidNotResolvable):
            parse_did(did)


class TestDidResolver:
    """Resolver bindings and DID resolution"""

    def setup_method(self):
        self.settings = WorkflowSettings(_env_file=None)
        self.factory = DidResolverFactory(registry_table(self.settings))
        self.wallet = LocalWalletProvider([ALICE, BOB])
        self.registry = registry_table(self.settings)["sepolia"]

    def test_binding_is_rebuildable(self):
        first = self.factory.build_resolver(SEPOLIA, self.wallet)
        second = self.factory.build_resolver(SEPOLIA, self.wallet)

        assert first == second
        assert first.registry_address == "0x03d5003bf0e79c5f5223588f347eba39afbc3818"

    def test_unknown_network(self):
        factory = DidResolverFactory({"mainnet": self.settings.MAINNET_REGISTRY})

        with pytest.raises(UnknownNetwork):
            factory.build_resolver(SEPOLIA)

    @pytest.mark.asyncio
    async def test_resolve_default_document(self):
        resolver = self.factory.resolver_for(SEPOLIA, self.wallet)
        did = bind(ALICE.address, SEPOLIA)

        document = await resolver.resolve(did)

        assert document.id == did
        assert document.verification_method[0]["id"] == f"{did}#controller"
        assert document.verification_method[0]["blockchainAccountId"] == f"eip155:11155111:{ALICE.address}"
        assert document.authentication == [f"{did}#controller"]
        assert document.signing_accounts() == [(f"{did}#controller", ALICE.address.lower())]

    @pytest.mark.asyncio
    async def test_resolve_without_registry_provider(self):
        resolver = self.factory.resolver_for(SEPOLIA)

        document = await resolver.resolve(bind(ALICE.address, SEPOLIA))

        assert document.controller == bind(ALICE.address, SEPOLIA)

    @pytest.mark.asyncio
    async def test_network_not_registered(self):
        resolver = self.factory.resolver_for(MAINNET, self.wallet)

        with pytest.raises(DidNotResolvable):
            await resolver.resolve(bind(ALICE.address, SEPOLIA))

    @pytest.mark.asyncio
    async def test_multi_network_resolver(self):
        resolver = self.factory.build_multi_network_resolver({
            SupportedNetwork.MAINNET: self.wallet,
            SupportedNetwork.SEPOLIA: self.wallet,
        })

        assert set(resolver.networks) == {SupportedNetwork.MAINNET, SupportedNetwork.SEPOLIA}
        assert (await resolver.resolve(bind(ALICE.address, MAINNET))).id == f"did:ethr:{ALICE.address}"
        assert (await resolver.resolve(bind(ALICE.address, SEPOLIA))).id == f"did:ethr:sepolia:{ALICE.address}"

    @pytest.mark.asyncio
    async def test_owner_change_and_delegates(self):
        self.wallet.change_owner(self.registry, ALICE.address, BOB.address)
        self.wallet.add_delegate(self.registry, ALICE.address, BOB.address)
        resolver = DidResolver([self.factory.build_resolver(SEPOLIA, self.wallet)])
        did = bind(ALICE.address, SEPOLIA)

        document = await resolver.resolve(did)

        assert document.controller == bind(BOB.address, SEPOLIA)
        assert [vm["id"] for vm in document.verification_method] == [f"{did}#controller", f"{did}#delegate-1"]
        assert document.assertion_method == [f"{did}#controller", f"{did}#delegate-1"]

    @pytest.mark.asyncio
    async def test_deactivated_identity(self):
        self.wallet.change_owner(self.registry, ALICE.address, NULL_ADDRESS)
        resolver = self.factory.resolver_for(SEPOLIA, self.wallet)

        with pytest.raises(DidNotResolvable):
            await resolver.resolve(bind(ALICE.address, SEPOLIA))

    @pytest.mark.asyncio
    async def test_registry_read_failure(self):
        class BrokenRegistry:
            async def identity_owner(self, registry, identity):
                raise ConnectionError("rpc down")

            async def delegates(self, registry, identity):
                return []

        resolver = self.factory.resolver_for(SEPOLIA, BrokenRegistry())

        with pytest.raises(DidNotResolvable):
            await resolver.resolve(bind(ALICE.address, SEPOLIA))
