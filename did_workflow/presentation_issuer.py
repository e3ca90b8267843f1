"""
Verifiable Presentation Issuer

Wraps issued credential tokens into a presentation signed by the holder.

Domain policy: the presentation is signed under the domain of the network
the holder account is currently bound to. The domain is never inferred from
the wrapped credentials; a credential issued under a different chain id is
rejected instead.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import WorkflowSettings, get_settings
from .credential_issuer import VC_CONTEXT
from .exceptions import (
    DomainMismatch,
    EmptyPresentation,
    InvalidPayload,
    MissingNetwork,
    NoAccountSelected,
    TokenMalformed,
)
from .identity import bind
from .network import NetworkContext, TypedDataDomain
from .signing import TypedDataSigner, sign_token
from .token_codec import TokenCodec
from .wallet import WalletAccount

logger = logging.getLogger(__name__)

VP_TYPE = "VerifiablePresentation"


@dataclass
class PresentationPayload:
    """Ordered credential tokens presented by a holder under one domain"""
    holder_did: str
    credential_tokens: List[str]
    domain: TypedDataDomain
    issued_at: int
    expires_at: Optional[int] = None
    audience: Optional[str] = None
    nonce: Optional[str] = None

    def to_jwt_claims(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"iss": self.holder_did, "nbf": self.issued_at}
        if self.expires_at is not None:
            payload["exp"] = self.expires_at
        if self.audience is not None:
            payload["aud"] = self.audience
        if self.nonce is not None:
            payload["nonce"] = self.nonce
        payload["vp"] = {
            "@context": [VC_CONTEXT],
            "type": [VP_TYPE],
            "verifiableCredential": list(self.credential_tokens),
        }
        payload["domain"] = self.domain.to_dict()
        return payload


class PresentationIssuer:
    """Issues Verifiable Presentations for the selected account"""

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
        credential_tokens: Sequence[str],
        audience: Optional[str] = None,
        nonce: Optional[str] = None,
    ) -> PresentationPayload:
        """Validate inputs and build the payload; no external call is made."""
        tokens = list(credential_tokens or [])
        if not tokens:
            raise EmptyPresentation("A presentation needs at least one credential")
        if network is None or not network.chain_id:
            raise MissingNetwork("Presentation issuance requires an active network")
        if account is None:
            raise NoAccountSelected("Presentation issuance requires an account")

        domain = network.domain(self.settings)
        for index, token in enumerate(tokens):
            decoded = self.codec.decode(token)
            if "vc" not in decoded.payload:
                raise TokenMalformed(f"Token {index} is not a credential")
            try:
                credential_domain = TypedDataDomain.from_dict(decoded.payload.get("domain"))
            except InvalidPayload as e:
                raise TokenMalformed(f"Credential {index} has no valid domain: {e.message}")
            if credential_domain.chain_id != domain.chain_id:
                raise DomainMismatch(
                    f"Credential {index} was issued under chain id {credential_domain.chain_id}, "
                    f"presentation is bound to {network.name} ({domain.chain_id})"
                )

        issued_at = self.clock()
        lifetime = self.settings.PRESENTATION_LIFETIME_SECONDS
        return PresentationPayload(
            holder_did=bind(account, network),
            credential_tokens=tokens,
            domain=domain,
            issued_at=issued_at,
            expires_at=issued_at + lifetime if lifetime else None,
            audience=audience,
            nonce=nonce,
        )

    async def issue_presentation(
        self,
        account: WalletAccount,
        network: Optional[NetworkContext],
        credential_tokens: Sequence[str],
        audience: Optional[str] = None,
        nonce: Optional[str] = None,
    ) -> str:
        """
        Issue a signed Verifiable Presentation

        Raises:
            EmptyPresentation: no credential tokens (no signing call is made)
            TokenMalformed, DomainMismatch: a wrapped credential cannot be
                presented on the holder's network
            SigningFailed, UserRejected: from the signing service
        """
        payload = self.build_payload(account, network, credential_tokens, audience, nonce)
        return await self.sign(account, payload)

    async def sign(self, account: WalletAccount, payload: PresentationPayload) -> str:
        """Sign an already validated payload and encode the token"""
        token = await sign_token(
            self.signer, self.codec, account, payload.domain, payload.to_jwt_claims()
        )
        logger.info(
            "Issued presentation of %d credential(s) by %s",
            len(payload.credential_tokens), payload.holder_did,
        )
        return token
