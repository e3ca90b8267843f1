"""
Verifiable Credentials Issuer
=============================

Issues Verifiable Credentials as compact tokens signed with EIP-712 typed data,
following the W3C Verifiable Credentials Data Model 1.1 JWT encoding.

The principal correctness property: a credential is never signed under a
typed-data domain whose chain id differs from the issuing network.

Reference: https://www.w3.org/TR/vc-data-model/
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from .config import WorkflowSettings, get_settings
from .exceptions import DomainMismatch, InvalidPayload, MissingNetwork, NoAccountSelected
from .identity import bind
from .network import NetworkContext, TypedDataDomain
from .signing import TypedDataSigner, sign_token
from .token_codec import TokenCodec
from .wallet import WalletAccount

logger = logging.getLogger(__name__)

VC_CONTEXT = "https://www.w3.org/2018/credentials/v1"
VC_TYPE = "VerifiableCredential"


def validate_claims(claims: Any) -> Dict[str, Any]:
    """Claims must be a non-empty JSON object with string keys."""
    if not isinstance(claims, Mapping) or not claims:
        raise InvalidPayload("Claims must be a non-empty mapping")
    if not all(isinstance(key, str) and key for key in claims):
        raise InvalidPayload("Claim names must be non-empty strings")
    try:
        encoded = json.dumps(claims, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise InvalidPayload(f"Claims are not JSON serializable: {e}")
    if json.loads(encoded) != claims:
        raise InvalidPayload("Claims must be plain JSON: string keys, lists, no tuples")
    return dict(claims)


def _is_timestamp(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


@dataclass
class CredentialPayload:
    """
    Claims about a subject, scoped to a typed-data domain

    Construction fails with ``DomainMismatch`` when the domain's chain id is
    not the network's, before anything is signed.
    """
    issuer_did: str
    subject_did: str
    not_before: int
    claims: Dict[str, Any]
    domain: TypedDataDomain
    network: NetworkContext
    expires_at: Optional[int] = None
    audience: Optional[str] = None
    credential_types: List[str] = field(default_factory=lambda: [VC_TYPE])

    def __post_init__(self):
        if self.domain.chain_id != self.network.chain_id:
            raise DomainMismatch(
                f"Domain chain id {self.domain.chain_id} does not match "
                f"{self.network.name} chain id {self.network.chain_id}"
            )
        if not isinstance(self.subject_did, str) or not self.subject_did.startswith("did:"):
            raise InvalidPayload(f"Subject must be a DID: {self.subject_did!r}")
        if not _is_timestamp(self.not_before):
            raise InvalidPayload("notBefore must be a non-negative integer timestamp")
        if self.expires_at is not None and (
            not _is_timestamp(self.expires_at) or self.expires_at <= self.not_before
        ):
            raise InvalidPayload("Expiration must be an integer timestamp after notBefore")
        if self.audience is not None and not isinstance(self.audience, str):
            raise InvalidPayload("Audience must be a string")
        if VC_TYPE not in self.credential_types:
            self.credential_types = [VC_TYPE] + list(self.credential_types)
        self.claims = validate_claims(self.claims)

    def to_jwt_claims(self) -> Dict[str, Any]:
        """Render as JWT claims (iss, sub, nbf, exp, aud, vc, domain)"""
        payload: Dict[str, Any] = {
            "iss": self.issuer_did,
            "sub": self.subject_did,
            "nbf": self.not_before,
        }
        if self.expires_at is not None:
            payload["exp"] = self.expires_at
        if self.audience is not None:
            payload["aud"] = self.audience
        payload["vc"] = {
            "@context": [VC_CONTEXT],
            "type": list(self.credential_types),
            "credentialSubject": dict(self.claims),
        }
        payload["domain"] = self.domain.to_dict()
        return payload


class CredentialIssuer:
    """
    Issues Verifiable Credentials for the selected account

    Features:
    - Bind the issuer DID to the active network
    - Scope the signature to the network's typed-data domain
    - Optional validity window and audience
    """

    def __init__(
        self,
        signer: TypedDataSigner,
        codec: Optional[TokenCodec] = None,
        settings: Optional[WorkflowSettings] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.signer = signer
        self.codec = codec or TokenCodec()
        self.settings = settings or get_settings()
        self.clock = clock or (lambda: int(time.time()))

    def build_payload(
        self,
        account: WalletAccount,
        network: Optional[NetworkContext],
        claims: Mapping[str, Any],
        subject_did: Optional[str] = None,
        not_before: Optional[int] = None,
        expires_at: Optional[int] = None,
        audience: Optional[str] = None,
        credential_types: Optional[List[str]] = None,
    ) -> CredentialPayload:
        """Validate inputs and build the payload; no external call is made."""
        if network is None or not network.chain_id:
            raise MissingNetwork("Credential issuance requires an active network")
        if account is None:
            raise NoAccountSelected("Credential issuance requires an account")

        issuer_did = bind(account, network)
        if not_before is None:
            not_before = self.clock()
        lifetime = self.settings.CREDENTIAL_LIFETIME_SECONDS
        if expires_at is None and lifetime and _is_timestamp(not_before):
            expires_at = not_before + lifetime

        return CredentialPayload(
            issuer_did=issuer_did,
            subject_did=subject_did or issuer_did,
            not_before=not_before,
            claims=claims,
            domain=network.domain(self.settings),
            network=network,
            expires_at=expires_at,
            audience=audience,
            credential_types=list(credential_types or [VC_TYPE]),
        )

    async def issue(
        self,
        account: WalletAccount,
        network: Optional[NetworkContext],
        claims: Mapping[str, Any],
        **options: Any,
    ) -> str:
        """
        Issue a signed Verifiable Credential

        Args:
            account: Issuing account (borrowed from the wallet)
            network: Network the account is bound to
            claims: credentialSubject claims
            **options: subject_did, not_before, expires_at, audience,
                credential_types

        Returns:
            Compact credential token

        Raises:
            MissingNetwork, InvalidPayload, DomainMismatch: before signing
            SigningFailed, UserRejected: from the signing service
        """
        payload = self.build_payload(account, network, claims, **options)
        return await self.sign(account, payload)

    async def sign(self, account: WalletAccount, payload: CredentialPayload) -> str:
        """Sign an already validated payload and encode the token"""
        token = await sign_token(
            self.signer, self.codec, account, payload.domain, payload.to_jwt_claims()
        )
        logger.info(
            "Issued credential %s -> %s on %s",
            payload.issuer_did, payload.subject_did, payload.network.name,
        )
        return token
