"""
Workflow state machine tests
"""

import asyncio

import pytest
from eth_account import Account

from did_workflow.config import WorkflowSettings, registry_table
from did_workflow.exceptions import (
    InvalidPayload,
    MissingNetwork,
    NetworkUnsupported,
    NoAccountSelected,
    SigningFailed,
    StageLocked,
)
from did_workflow.network import SupportedNetwork
from did_workflow.signing import Eip712Signer
from did_workflow.verification import VerificationStatus
from did_workflow.wallet import LocalWalletProvider
from did_workflow.workflow import (
    SessionArtifacts,
    Stage,
    StageStatus,
    WorkflowSession,
    derive_stages,
)

NOW = 1700000000
CLAIMS = {"degree": "BachelorDegree"}

ALICE = Account.from_key("0x" + "11" * 32)
BOB = Account.from_key("0x" + "22" * 32)


class GatedSigner(Eip712Signer):
    """Eip712Signer that waits for ``release`` before signing"""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def sign(self, typed_data, signing_capability):
        self.entered.set()
        await self.release.wait()
        return await super().sign(typed_data, signing_capability)


def statuses(session):
    return [s.status for s in session.stages()]


class TestStageDerivation:
    """Stage statuses derived from artifacts"""

    def test_initial_stages(self):
        stages = derive_stages(SessionArtifacts())

        assert [s.stage for s in stages] == list(Stage)
        assert stages[0].status == StageStatus.READY
        assert all(s.status == StageStatus.LOCKED for s in stages[1:])

    def test_stage_to_dict(self):
        stage = derive_stages(SessionArtifacts())[2]

        assert stage.to_dict() == {"id": 3, "name": "resolve_did", "status": "locked"}


class TestWorkflowSession:
    """Session lifecycle"""

    def setup_method(self):
        self.settings = WorkflowSettings(_env_file=None)
        self.wallet = LocalWalletProvider([ALICE, BOB], chain_id=SupportedNetwork.SEPOLIA.chain_id)
        self.session = WorkflowSession(Eip712Signer(), settings=self.settings, clock=lambda: NOW)

    async def _walk_to(self, stage: Stage):
        """Run every stage before ``stage``"""
        steps = [
            lambda: self.session.connect(self.wallet),
            lambda: self._select(ALICE.address),
            lambda: self.session.resolve_did(),
            lambda: self.session.issue_credential(CLAIMS, not_before=1562950282),
            lambda: self.session.verify_credential(),
            lambda: self.session.issue_presentation(),
            lambda: self.session.verify_presentation(),
        ]
        for step in steps[:stage - 1]:
            await step()

    async def _select(self, address):
        return self.session.select_account(address)

    @pytest.mark.asyncio
    async def test_full_walkthrough(self):
        await self.session.connect(self.wallet)
        assert self.session.status_of(Stage.SELECT_ACCOUNT) == StageStatus.READY

        did = self.session.select_account(ALICE.address)
        assert did == f"did:ethr:sepolia:{ALICE.address}"

        document = await self.session.resolve_did()
        assert document.id == did

        token = await self.session.issue_credential(CLAIMS, not_before=1562950282)
        assert self.session.artifacts.credential == token

        result = await self.session.verify_credential()
        assert result.is_valid

        presentation = await self.session.issue_presentation(audience="https://verifier.example")
        assert self.session.artifacts.presentation == presentation

        result = await self.session.verify_presentation("https://verifier.example")
        assert result.is_valid
        assert self.session.is_terminal()
        assert set(statuses(self.session)) == {StageStatus.COMPLETED}

    @pytest.mark.asyncio
    async def test_summary(self):
        await self._walk_to(Stage.ISSUE_VC)

        summary = self.session.summary()

        assert summary["connected"] is True
        assert summary["network"] == {"name": "sepolia", "chainId": 11155111}
        assert summary["accounts"] == [ALICE.address, BOB.address]
        assert summary["did"] == f"did:ethr:sepolia:{ALICE.address}"
        assert summary["credential"] is None
        assert [s["status"] for s in summary["stages"]][:4] == ["completed", "completed", "completed", "ready"]

    def test_locked_stages(self):
        with pytest.raises(StageLocked):
            self.session.select_account(ALICE.address)

    @pytest.mark.asyncio
    async def test_locked_operations(self):
        await self.session.connect(self.wallet)

        with pytest.raises(StageLocked):
            await self.session.resolve_did()
        with pytest.raises(StageLocked):
            await self.session.issue_credential(CLAIMS)
        with pytest.raises(StageLocked):
            await self.session.verify_presentation()

    @pytest.mark.asyncio
    async def test_unknown_account(self):
        await self.session.connect(self.wallet)

        with pytest.raises(NoAccountSelected):
            self.session.select_account("0x" + "9" * 40)

    @pytest.mark.asyncio
    async def test_wallet_without_accounts(self):
        await self.session.connect(LocalWalletProvider([]))

        assert self.session.artifacts.connected
        assert self.session.artifacts.accounts == ()
        assert self.session.status_of(Stage.SELECT_ACCOUNT) == StageStatus.READY

    @pytest.mark.asyncio
    async def test_unsupported_network_fails_closed(self):
        self.wallet.switch_chain(5)

        with pytest.raises(NetworkUnsupported):
            await self.session.connect(self.wallet)
        assert not self.session.artifacts.connected
        assert statuses(self.session) == statuses(WorkflowSession(Eip712Signer(), settings=self.settings))

    @pytest.mark.asyncio
    async def test_disconnect_clears_everything(self):
        await self._walk_to(Stage.VERIFY_VP)

        self.session.disconnect()

        assert self.session.artifacts == SessionArtifacts()
        assert self.session.provider is None
        assert self.session.status_of(Stage.CONNECT) == StageStatus.READY
        assert self.session.status_of(Stage.SELECT_ACCOUNT) == StageStatus.LOCKED

    @pytest.mark.asyncio
    async def test_account_change_clears_downstream(self):
        await self._walk_to(Stage.VERIFY_VC)

        did = self.session.select_account(BOB.address)

        artifacts = self.session.artifacts
        assert did == f"did:ethr:sepolia:{BOB.address}"
        assert artifacts.did_document is None
        assert artifacts.credential is None
        assert self.session.status_of(Stage.RESOLVE_DID) == StageStatus.READY
        assert self.session.status_of(Stage.ISSUE_VC) == StageStatus.LOCKED

    @pytest.mark.asyncio
    async def test_reresolve_after_owner_change_clears_downstream(self):
        await self._walk_to(Stage.VERIFY_VP + 1)
        assert self.session.is_terminal()
        self.wallet.change_owner(registry_table(self.settings)["sepolia"], ALICE.address, BOB.address)

        document = await self.session.resolve_did()

        artifacts = self.session.artifacts
        assert document.controller == f"did:ethr:sepolia:{BOB.address}"
        assert artifacts.did_document == document
        assert artifacts.credential is None
        assert artifacts.credential_result is None
        assert artifacts.presentation is None
        assert artifacts.presentation_result is None
        assert not self.session.is_terminal()
        assert self.session.status_of(Stage.ISSUE_VC) == StageStatus.READY
        assert self.session.status_of(Stage.VERIFY_VC) == StageStatus.LOCKED

    @pytest.mark.asyncio
    async def test_reresolve_unchanged_document_keeps_downstream(self):
        await self._walk_to(Stage.VERIFY_VP + 1)
        credential = self.session.artifacts.credential

        await self.session.resolve_did()

        assert self.session.artifacts.credential == credential
        assert self.session.is_terminal()

    @pytest.mark.asyncio
    async def test_reissue_clears_downstream(self):
        await self._walk_to(Stage.VERIFY_VP)

        await self.session.issue_credential({"degree": "MasterDegree"})

        assert self.session.artifacts.credential_result is None
        assert self.session.artifacts.presentation is None
        assert self.session.status_of(Stage.VERIFY_VC) == StageStatus.READY
        assert self.session.status_of(Stage.ISSUE_VP) == StageStatus.LOCKED

    @pytest.mark.asyncio
    async def test_invalid_claims_leave_stage_ready(self):
        await self._walk_to(Stage.ISSUE_VC)

        with pytest.raises(InvalidPayload):
            await self.session.issue_credential({})
        assert self.session.status_of(Stage.ISSUE_VC) == StageStatus.READY

    @pytest.mark.asyncio
    async def test_signing_failure_leaves_stage_ready(self):
        session = WorkflowSession(Eip712Signer(approve=lambda typed_data: False), settings=self.settings)
        await session.connect(self.wallet)
        session.select_account(ALICE.address)
        await session.resolve_did()

        with pytest.raises(SigningFailed):
            await session.issue_credential(CLAIMS)
        assert session.artifacts.credential is None
        assert session.status_of(Stage.ISSUE_VC) == StageStatus.READY

    @pytest.mark.asyncio
    async def test_failed_verification_keeps_presentation_locked(self):
        await self._walk_to(Stage.VERIFY_VC)

        result = await self.session.verify_credential("https://unexpected.example")
        assert result.is_valid

        token = await self.session.issue_credential(CLAIMS, audience="https://verifier.example")
        assert token is not None
        result = await self.session.verify_credential()

        assert result.status == VerificationStatus.AUDIENCE_MISMATCH
        assert self.session.status_of(Stage.VERIFY_VC) == StageStatus.READY
        assert self.session.status_of(Stage.ISSUE_VP) == StageStatus.LOCKED

    @pytest.mark.asyncio
    async def test_refresh_network(self):
        await self._walk_to(Stage.VERIFY_VC)

        assert await self.session.refresh_network() is False

        self.wallet.switch_chain(SupportedNetwork.MAINNET.chain_id)
        assert await self.session.refresh_network() is True

        artifacts = self.session.artifacts
        assert artifacts.network.network is SupportedNetwork.MAINNET
        assert artifacts.did == f"did:ethr:{ALICE.address}"
        assert artifacts.did_document is None
        assert artifacts.credential is None
        assert self.session.status_of(Stage.RESOLVE_DID) == StageStatus.READY

    @pytest.mark.asyncio
    async def test_refresh_to_unsupported_network(self):
        await self._walk_to(Stage.ISSUE_VC)
        self.wallet.switch_chain(5)

        with pytest.raises(NetworkUnsupported):
            await self.session.refresh_network()
        assert self.session.artifacts == SessionArtifacts()

    @pytest.mark.asyncio
    async def test_refresh_without_wallet(self):
        with pytest.raises(MissingNetwork):
            await self.session.refresh_network()


class TestConcurrency:
    """Stale and superseded operations"""

    def setup_method(self):
        self.settings = WorkflowSettings(_env_file=None)
        self.wallet = LocalWalletProvider([ALICE, BOB], chain_id=SupportedNetwork.SEPOLIA.chain_id)

    async def _ready_to_issue(self, session):
        await session.connect(self.wallet)
        session.select_account(ALICE.address)
        await session.resolve_did()

    @pytest.mark.asyncio
    async def test_network_switch_mid_issuance(self):
        signer = GatedSigner()
        session = WorkflowSession(signer, settings=self.settings, clock=lambda: NOW)
        await self._ready_to_issue(session)

        issuing = asyncio.ensure_future(session.issue_credential(CLAIMS))
        await signer.entered.wait()
        self.wallet.switch_chain(SupportedNetwork.MAINNET.chain_id)
        assert await session.refresh_network() is True
        signer.release.set()

        assert await issuing is None
        assert session.artifacts.credential is None
        assert session.artifacts.network.network is SupportedNetwork.MAINNET
        assert session.artifacts.did == f"did:ethr:{ALICE.address}"

    @pytest.mark.asyncio
    async def test_account_switch_during_signing(self):
        holder = {}

        def approve(typed_data):
            holder["session"].select_account(BOB.address)
            return True

        session = WorkflowSession(Eip712Signer(approve=approve), settings=self.settings, clock=lambda: NOW)
        holder["session"] = session
        await self._ready_to_issue(session)

        assert await session.issue_credential(CLAIMS) is None
        assert session.artifacts.credential is None
        assert session.artifacts.account.address == BOB.address

    @pytest.mark.asyncio
    async def test_disconnect_mid_issuance(self):
        signer = GatedSigner()
        session = WorkflowSession(signer, settings=self.settings, clock=lambda: NOW)
        await self._ready_to_issue(session)

        issuing = asyncio.ensure_future(session.issue_credential(CLAIMS))
        await signer.entered.wait()
        session.disconnect()
        signer.release.set()

        assert await issuing is None
        assert session.artifacts == SessionArtifacts()

    @pytest.mark.asyncio
    async def test_second_issuance_supersedes_first(self):
        signer = GatedSigner()
        session = WorkflowSession(signer, settings=self.settings, clock=lambda: NOW)
        await self._ready_to_issue(session)

        first = asyncio.ensure_future(session.issue_credential(CLAIMS))
        await signer.entered.wait()
        signer.entered.clear()
        second = asyncio.ensure_future(session.issue_credential({"degree": "MasterDegree"}))
        await signer.entered.wait()
        signer.release.set()

        assert await first is None
        token = await second
        assert token is not None
        assert session.artifacts.credential == token
        assert session.codec.decode(token).payload["vc"]["credentialSubject"] == {"degree": "MasterDegree"}
