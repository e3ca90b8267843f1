"""
DID Credential Workflow
=======================

Credential lifecycle for did:ethr identities anchored to a wallet account:
bind a DID to the connected account and network, resolve it against the
network's identity registry, issue and verify EIP-712 signed Verifiable
Credentials and Presentations.

Components:
- NetworkContext: Supported chains and typed-data domains
- DidResolverFactory / DidResolver: Registry-bound DID resolution
- bind: did:ethr strings for (account, network)
- CredentialIssuer / PresentationIssuer: Signed VC and VP tokens
- VerificationGateway: VC / VP verification
- WorkflowSession: Staged, session-scoped orchestration

Standards:
- W3C DID Core 1.0: https://www.w3.org/TR/did-core/
- W3C Verifiable Credentials: https://www.w3.org/TR/vc-data-model/
- EIP-712 typed structured data: https://eips.ethereum.org/EIPS/eip-712
"""

from .config import WorkflowSettings, get_settings
from .credential_issuer import CredentialIssuer, CredentialPayload
from .did_document import DIDDocument
from .exceptions import DIDWorkflowError, ErrorKind
from .identity import bind, parse_did
from .network import NetworkContext, SupportedNetwork, TypedDataDomain, resolve_active_network
from .presentation_issuer import PresentationIssuer, PresentationPayload
from .resolver import DidResolver, DidResolverFactory, ResolverBinding
from .signing import Eip712Signer
from .token_codec import DecodedToken, TokenCodec
from .verification import TokenKind, VerificationGateway, VerificationResult, VerificationStatus
from .wallet import LocalWalletProvider, WalletAccount
from .workflow import Stage, StageStatus, WorkflowSession, WorkflowStage, derive_stages

__version__ = "1.0.0"
__all__ = [
    # Networks & identity
    "NetworkContext",
    "SupportedNetwork",
    "TypedDataDomain",
    "resolve_active_network",
    "bind",
    "parse_did",

    # Resolution
    "DIDDocument",
    "DidResolver",
    "DidResolverFactory",
    "ResolverBinding",

    # Credentials
    "CredentialIssuer",
    "CredentialPayload",
    "PresentationIssuer",
    "PresentationPayload",
    "VerificationGateway",
    "VerificationResult",
    "VerificationStatus",
    "TokenKind",

    # Collaborators
    "Eip712Signer",
    "TokenCodec",
    "DecodedToken",
    "LocalWalletProvider",
    "WalletAccount",

    # Workflow
    "WorkflowSession",
    "WorkflowStage",
    "Stage",
    "StageStatus",
    "derive_stages",

    # Config & errors
    "WorkflowSettings",
    "get_settings",
    "DIDWorkflowError",
    "ErrorKind",
]
