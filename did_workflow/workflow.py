"""
Workflow State Machine - Session-scoped credential lifecycle

Stages: Connect -> SelectAccount -> ResolveDid -> IssueVc -> VerifyVc ->
IssueVp -> VerifyVp

``WorkflowSession`` owns every artifact of one wallet connection. Stage status
is never stored: it is derived from the current artifacts after each change.

Concurrency rules:
- Each connection epoch has exactly one network/resolver binding. Account
  selection, network change, reconnect and disconnect start a new epoch,
  cancel in-flight operations and clear the artifacts downstream.
- Operations snapshot the artifacts they need when they start and commit
  only if nothing upstream changed meanwhile; late results are dropped.
- A second operation of the same kind cancels and supersedes the first.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum, IntEnum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from .config import WorkflowSettings, get_settings, registry_table
from .credential_issuer import CredentialIssuer
from .did_document import DIDDocument
from .exceptions import MissingNetwork, NetworkUnsupported, NoAccountSelected, StageLocked, StaleOperation
from .identity import bind
from .network import NetworkContext, resolve_active_network
from .presentation_issuer import PresentationIssuer
from .resolver import DidResolver, DidResolverFactory
from .signing import TypedDataSigner
from .token_codec import TokenCodec
from .verification import TokenKind, VerificationGateway, VerificationResult
from .wallet import WalletAccount, WalletProvider, load_accounts

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Stage(IntEnum):
    CONNECT = 1
    SELECT_ACCOUNT = 2
    RESOLVE_DID = 3
    ISSUE_VC = 4
    VERIFY_VC = 5
    ISSUE_VP = 6
    VERIFY_VP = 7


class StageStatus(Enum):
    LOCKED = "locked"
    READY = "ready"
    COMPLETED = "completed"


@dataclass(frozen=True)
class WorkflowStage:
    stage: Stage
    status: StageStatus

    def to_dict(self) -> Dict[str, Any]:
        return {"id": int(self.stage), "name": self.stage.name.lower(), "status": self.status.value}


@dataclass(frozen=True)
class SessionArtifacts:
    """Everything a session has produced so far. Replaced, never mutated."""
    network: Optional[NetworkContext] = None
    resolver: Optional[DidResolver] = None
    accounts: Tuple[WalletAccount, ...] = ()
    account: Optional[WalletAccount] = None
    did: Optional[str] = None
    did_document: Optional[DIDDocument] = None
    credential: Optional[str] = None
    credential_result: Optional[VerificationResult] = None
    presentation: Optional[str] = None
    presentation_result: Optional[VerificationResult] = None

    @property
    def connected(self) -> bool:
        return self.network is not None and self.resolver is not None


def _is_valid(result: Optional[VerificationResult]) -> bool:
    return result is not None and result.is_valid


_STAGE_ARTIFACT: Dict[Stage, Callable[[SessionArtifacts], bool]] = {
    Stage.CONNECT: lambda a: a.connected,
    Stage.SELECT_ACCOUNT: lambda a: a.account is not None and a.did is not None,
    Stage.RESOLVE_DID: lambda a: a.did_document is not None,
    Stage.ISSUE_VC: lambda a: a.credential is not None,
    Stage.VERIFY_VC: lambda a: _is_valid(a.credential_result),
    Stage.ISSUE_VP: lambda a: a.presentation is not None,
    Stage.VERIFY_VP: lambda a: _is_valid(a.presentation_result),
}


def derive_stages(artifacts: SessionArtifacts) -> List[WorkflowStage]:
    """
    Stage statuses as a pure function of the artifacts

    Stage n is READY iff stage n-1 is COMPLETED; COMPLETED iff its artifact
    exists (and is valid, for verification stages). Connect is never LOCKED.
    """
    stages = []
    previous_completed = True
    for stage in Stage:
        if not previous_completed:
            status = StageStatus.LOCKED
        elif _STAGE_ARTIFACT[stage](artifacts):
            status = StageStatus.COMPLETED
        else:
            status = StageStatus.READY
        stages.append(WorkflowStage(stage, status))
        previous_completed = status == StageStatus.COMPLETED
    return stages


class WorkflowSession:
    """
    Credential lifecycle for one wallet connection

    Features:
    - Connect / disconnect a wallet provider
    - Select an account and bind its DID
    - Resolve the DID, issue and verify a credential and a presentation
    - Derived stage view gating every operation
    """

    def __init__(
        self,
        signer: TypedDataSigner,
        settings: Optional[WorkflowSettings] = None,
        codec: Optional[TokenCodec] = None,
        clock: Optional[Callable[[], int]] = None,
        resolver_factory: Optional[DidResolverFactory] = None,
    ):
        self.settings = settings or get_settings()
        self.codec = codec or TokenCodec()
        self.resolver_factory = resolver_factory or DidResolverFactory(registry_table(self.settings))
        self.credential_issuer = CredentialIssuer(signer, self.codec, self.settings, clock)
        self.presentation_issuer = PresentationIssuer(signer, self.codec, self.settings, clock)
        self.gateway = VerificationGateway(self.codec, self.settings, clock)

        self.provider: Optional[WalletProvider] = None
        self.artifacts = SessionArtifacts()
        self.epoch = 0
        self._inflight: Dict[str, asyncio.Task] = {}

    # ==================== STAGES ====================

    def stages(self) -> List[WorkflowStage]:
        return derive_stages(self.artifacts)

    def status_of(self, stage: Stage) -> StageStatus:
        return self.stages()[stage - 1].status

    def is_terminal(self) -> bool:
        return all(s.status == StageStatus.COMPLETED for s in self.stages())

    def _require(self, stage: Stage):
        if self.status_of(stage) == StageStatus.LOCKED:
            raise StageLocked(f"Stage {stage.name.lower()} is locked")

    # ==================== CONNECTION ====================

    async def connect(self, provider: WalletProvider) -> Optional[SessionArtifacts]:
        """
        Connect a wallet provider

        Starts a new epoch: the active network, the account list and the
        resolver binding are fetched fresh. An unsupported network leaves the
        session disconnected (fail closed).
        """
        self._new_epoch(SessionArtifacts())
        self.provider = provider
        epoch = self.epoch

        async def run() -> SessionArtifacts:
            network = await resolve_active_network(provider)
            accounts = await load_accounts(provider)
            resolver = self.resolver_factory.resolver_for(network, provider)
            self._commit(epoch, network=network, resolver=resolver, accounts=tuple(accounts))
            logger.info("Connected on %s with %d account(s)", network.name, len(accounts))
            return self.artifacts

        return await self._run("connect", run())

    def disconnect(self):
        """Drop the provider and every artifact derived from it."""
        self._new_epoch(SessionArtifacts())
        self.provider = None
        logger.info("Disconnected")

    async def refresh_network(self) -> bool:
        """
        Re-read the provider's network after a chain switch

        Returns:
            True if the network changed and the session was rebuilt
        """
        if self.provider is None:
            raise MissingNetwork("No wallet connected")
        try:
            network = await resolve_active_network(self.provider)
        except NetworkUnsupported:
            self._new_epoch(SessionArtifacts())
            raise
        if network == self.artifacts.network:
            return False

        previous = self.artifacts.account
        logger.info("Network changed to %s, rebuilding session", network.name)
        await self.connect(self.provider)
        if previous is not None and self._find_account(previous.address):
            self.select_account(previous.address)
        return True

    def select_account(self, address: str) -> str:
        """
        Select one of the connected accounts and bind its DID

        Returns:
            The account's DID on the active network
        """
        self._require(Stage.SELECT_ACCOUNT)
        account = self._find_account(address)
        if account is None:
            raise NoAccountSelected(f"Account not available: {address}")

        current = self.artifacts
        did = bind(account, current.network)
        self._new_epoch(SessionArtifacts(
            network=current.network,
            resolver=current.resolver,
            accounts=current.accounts,
            account=account,
            did=did,
        ))
        logger.info("Selected account %s (%s)", account.address, did)
        return did

    def _find_account(self, address: str) -> Optional[WalletAccount]:
        for account in self.artifacts.accounts:
            if account.address.lower() == address.lower():
                return account
        return None

    # ==================== OPERATIONS ====================

    async def resolve_did(self) -> Optional[DIDDocument]:
        self._require(Stage.RESOLVE_DID)
        snapshot, epoch = self.artifacts, self.epoch

        async def run() -> DIDDocument:
            document = await snapshot.resolver.resolve(snapshot.did)
            changes: Dict[str, Any] = {"did_document": document}
            if document != snapshot.did_document:
                changes.update(
                    credential=None,
                    credential_result=None,
                    presentation=None,
                    presentation_result=None,
                )
            self._commit(epoch, **changes)
            return document

        return await self._run("resolve_did", run())

    async def issue_credential(self, claims: Dict[str, Any], **options: Any) -> Optional[str]:
        """
        Issue a credential from the selected account

        Returns:
            The token, or None when the result was superseded or went stale
        """
        self._require(Stage.ISSUE_VC)
        snapshot, epoch = self.artifacts, self.epoch
        payload = self.credential_issuer.build_payload(snapshot.account, snapshot.network, claims, **options)

        async def run() -> str:
            token = await self.credential_issuer.sign(snapshot.account, payload)
            self._commit(
                epoch,
                credential=token,
                credential_result=None,
                presentation=None,
                presentation_result=None,
            )
            return token

        return await self._run("issue_credential", run())

    async def verify_credential(self, audience: Optional[str] = None) -> Optional[VerificationResult]:
        self._require(Stage.VERIFY_VC)
        snapshot, epoch = self.artifacts, self.epoch
        audience = audience or self.settings.DEFAULT_AUDIENCE

        async def run() -> VerificationResult:
            result = await self.gateway.verify(
                snapshot.credential, snapshot.resolver, TokenKind.CREDENTIAL, audience
            )
            self._check_unchanged(snapshot, "credential")
            changes: Dict[str, Any] = {"credential_result": result}
            if not result.is_valid:
                changes.update(presentation=None, presentation_result=None)
            self._commit(epoch, **changes)
            return result

        return await self._run("verify_credential", run())

    async def issue_presentation(
        self,
        audience: Optional[str] = None,
        nonce: Optional[str] = None,
    ) -> Optional[str]:
        self._require(Stage.ISSUE_VP)
        snapshot, epoch = self.artifacts, self.epoch
        payload = self.presentation_issuer.build_payload(
            snapshot.account, snapshot.network, [snapshot.credential], audience, nonce
        )

        async def run() -> str:
            token = await self.presentation_issuer.sign(snapshot.account, payload)
            self._check_unchanged(snapshot, "credential")
            self._commit(epoch, presentation=token, presentation_result=None)
            return token

        return await self._run("issue_presentation", run())

    async def verify_presentation(self, audience: Optional[str] = None) -> Optional[VerificationResult]:
        self._require(Stage.VERIFY_VP)
        snapshot, epoch = self.artifacts, self.epoch
        audience = audience or self.settings.DEFAULT_AUDIENCE

        async def run() -> VerificationResult:
            result = await self.gateway.verify(
                snapshot.presentation, snapshot.resolver, TokenKind.PRESENTATION, audience
            )
            self._check_unchanged(snapshot, "presentation")
            self._commit(epoch, presentation_result=result)
            return result

        return await self._run("verify_presentation", run())

    # ==================== EPOCHS ====================

    def _new_epoch(self, artifacts: SessionArtifacts):
        """Atomically replace the artifacts and invalidate everything in flight."""
        self.epoch += 1
        inflight, self._inflight = self._inflight, {}
        for kind, task in inflight.items():
            if not task.done():
                logger.debug("Cancelling in-flight %s (epoch %d)", kind, self.epoch)
                task.cancel()
        self.artifacts = artifacts

    def _commit(self, epoch: int, **changes: Any):
        if epoch != self.epoch:
            raise StaleOperation(f"Epoch {epoch} superseded by {self.epoch}")
        self.artifacts = replace(self.artifacts, **changes)

    def _check_unchanged(self, snapshot: SessionArtifacts, name: str):
        if getattr(self.artifacts, name) != getattr(snapshot, name):
            raise StaleOperation(f"{name} changed while the operation was running")

    async def _run(self, kind: str, operation: Awaitable[T]) -> Optional[T]:
        previous = self._inflight.get(kind)
        if previous is not None and not previous.done():
            logger.info("Superseding in-flight %s", kind)
            previous.cancel()

        task = asyncio.ensure_future(operation)
        self._inflight[kind] = task
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled() and self._inflight.get(kind) is not task:
                logger.debug("Dropped superseded %s", kind)
                return None
            raise
        except StaleOperation as e:
            logger.debug("Dropped stale %s: %s", kind, e.message)
            return None
        finally:
            if self._inflight.get(kind) is task:
                del self._inflight[kind]

    def summary(self) -> Dict[str, Any]:
        """Displayable view of the session"""
        a = self.artifacts
        return {
            "connected": a.connected,
            "network": a.network.to_dict() if a.network else None,
            "accounts": [account.address for account in a.accounts],
            "account": a.account.address if a.account else None,
            "did": a.did,
            "didDocument": a.did_document.to_dict() if a.did_document else None,
            "credential": a.credential,
            "credentialVerification": a.credential_result.to_dict() if a.credential_result else None,
            "presentation": a.presentation,
            "presentationVerification": a.presentation_result.to_dict() if a.presentation_result else None,
            "stages": [s.to_dict() for s in self.stages()],
        }
