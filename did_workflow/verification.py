"""
Verification Gateway
====================

Verifies credential and presentation tokens against a DID resolver.

Checks, in order:
1. Token structure (compact form, payload shape for the token kind)
2. Audience
3. Validity window (nbf / exp)
4. Issuer DID resolution
5. EIP-712 signature against the resolved verification methods
6. For presentations, every embedded credential with the same protocol

Verification is all-or-nothing and never raises for a bad token: every
failure is reported as an invalid ``VerificationResult``.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .config import WorkflowSettings, get_settings
from .credential_issuer import VC_TYPE
from .exceptions import DIDWorkflowError, DidNotResolvable, ErrorKind, InvalidPayload, TokenMalformed
from .identity import parse_did
from .network import TypedDataDomain
from .presentation_issuer import VP_TYPE
from .resolver import DidResolver
from .signing import build_typed_data, recover_signer
from .token_codec import DecodedToken, TokenCodec

logger = logging.getLogger(__name__)


class TokenKind(Enum):
    CREDENTIAL = "credential"
    PRESENTATION = "presentation"


class VerificationStatus(Enum):
    """Token verification status"""
    VALID = "valid"
    AUDIENCE_MISMATCH = "audience_mismatch"
    SIGNATURE_INVALID = "signature_invalid"
    DID_NOT_RESOLVABLE = "did_not_resolvable"
    TOKEN_MALFORMED = "token_malformed"
    EXPIRED_OR_NOT_YET_VALID = "expired_or_not_yet_valid"

    @property
    def reason(self) -> Optional[ErrorKind]:
        return _REASONS.get(self)


_REASONS = {
    VerificationStatus.AUDIENCE_MISMATCH: ErrorKind.AUDIENCE_MISMATCH,
    VerificationStatus.SIGNATURE_INVALID: ErrorKind.SIGNATURE_INVALID,
    VerificationStatus.DID_NOT_RESOLVABLE: ErrorKind.DID_NOT_RESOLVABLE,
    VerificationStatus.TOKEN_MALFORMED: ErrorKind.TOKEN_MALFORMED,
    VerificationStatus.EXPIRED_OR_NOT_YET_VALID: ErrorKind.EXPIRED_OR_NOT_YET_VALID,
}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class VerificationResult:
    """Result of token verification: Valid(claims) or Invalid(reason)"""
    status: VerificationStatus
    kind: TokenKind
    issuer: str = ""
    claims: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    matched_method: Optional[str] = None
    verified_at: str = field(default_factory=_utc_now_iso, compare=False)

    @property
    def is_valid(self) -> bool:
        return self.status == VerificationStatus.VALID

    @property
    def reason(self) -> Optional[ErrorKind]:
        return self.status.reason

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "kind": self.kind.value,
            "isValid": self.is_valid,
            "reason": self.reason.value if self.reason else None,
            "issuer": self.issuer,
            "claims": self.claims,
            "errors": self.errors,
            "matchedMethod": self.matched_method,
            "verifiedAt": self.verified_at,
        }


class _Rejected(Exception):
    def __init__(self, status: VerificationStatus, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


class VerificationGateway:
    """Verifies credential and presentation tokens"""

    def __init__(
        self,
        codec: Optional[TokenCodec] = None,
        settings: Optional[WorkflowSettings] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.codec = codec or TokenCodec()
        self.settings = settings or get_settings()
        self.clock = clock or (lambda: int(time.time()))

    async def verify(
        self,
        token: str,
        resolver: DidResolver,
        kind: TokenKind,
        audience: Optional[str] = None,
    ) -> VerificationResult:
        """
        Verify a credential or presentation token

        Args:
            token: Compact token
            resolver: Resolver used to look up the issuer DID
            kind: Expected token kind
            audience: Expected audience, required when the token names one

        Returns:
            VerificationResult with the decoded claims when valid
        """
        issuer = ""
        try:
            decoded = self.codec.decode(token)
            issuer = decoded.payload.get("iss", "") if isinstance(decoded.payload.get("iss"), str) else ""
            method = await self._verify_decoded(decoded, resolver, kind, audience)
        except TokenMalformed as e:
            result = VerificationResult(VerificationStatus.TOKEN_MALFORMED, kind, issuer, errors=[e.message])
        except DidNotResolvable as e:
            result = VerificationResult(VerificationStatus.DID_NOT_RESOLVABLE, kind, issuer, errors=[e.message])
        except _Rejected as e:
            result = VerificationResult(e.status, kind, issuer, errors=[e.message])
        else:
            result = VerificationResult(
                VerificationStatus.VALID, kind, issuer, claims=decoded.payload, matched_method=method
            )

        if result.is_valid:
            logger.info("Verified %s from %s via %s", kind.value, issuer, result.matched_method)
        else:
            logger.warning("Rejected %s from %s: %s %s", kind.value, issuer or "?", result.status.value, result.errors)
        return result

    # ==================== CHECKS ====================

    async def _verify_decoded(
        self,
        decoded: DecodedToken,
        resolver: DidResolver,
        kind: TokenKind,
        audience: Optional[str],
    ) -> str:
        payload = decoded.payload
        issuer = self._validate_structure(payload, kind)
        try:
            domain = TypedDataDomain.from_dict(payload.get("domain"))
        except InvalidPayload as e:
            raise TokenMalformed(f"Invalid domain: {e.message}")

        self._check_audience(payload, audience)
        self._check_validity_window(payload)

        try:
            document = await resolver.resolve(issuer)
        except DIDWorkflowError as e:
            raise DidNotResolvable(e.message)
        except Exception as e:
            raise DidNotResolvable(f"Resolver error for {issuer}: {e}") from e

        method = self._check_signature(decoded, domain, issuer, document.signing_accounts())

        if kind == TokenKind.PRESENTATION:
            for index, credential in enumerate(payload["vp"]["verifiableCredential"]):
                embedded = await self.verify(credential, resolver, TokenKind.CREDENTIAL, audience)
                if not embedded.is_valid:
                    raise _Rejected(
                        embedded.status,
                        f"Embedded credential {index} invalid: {'; '.join(embedded.errors)}",
                    )
                credential_chain_id = embedded.claims["domain"]["chainId"]
                if credential_chain_id != domain.chain_id:
                    raise _Rejected(
                        VerificationStatus.SIGNATURE_INVALID,
                        f"Embedded credential {index} was signed under chain id {credential_chain_id}, "
                        f"presentation under {domain.chain_id}",
                    )
        return method

    def _validate_structure(self, payload: Dict[str, Any], kind: TokenKind) -> str:
        issuer = payload.get("iss")
        if not isinstance(issuer, str) or not issuer.startswith("did:"):
            raise TokenMalformed("Missing or invalid issuer")

        if kind == TokenKind.CREDENTIAL:
            vc = payload.get("vc")
            if not isinstance(vc, Mapping):
                raise TokenMalformed("Credential token missing 'vc' claim")
            types = vc.get("type", [])
            types = [types] if isinstance(types, str) else types
            if not isinstance(types, list) or VC_TYPE not in types:
                raise TokenMalformed(f"Credential type must include '{VC_TYPE}'")
            if not isinstance(vc.get("credentialSubject"), Mapping):
                raise TokenMalformed("Credential missing credentialSubject")
        else:
            vp = payload.get("vp")
            if not isinstance(vp, Mapping):
                raise TokenMalformed("Presentation token missing 'vp' claim")
            types = vp.get("type", [])
            types = [types] if isinstance(types, str) else types
            if not isinstance(types, list) or VP_TYPE not in types:
                raise TokenMalformed(f"Presentation type must include '{VP_TYPE}'")
            credentials = vp.get("verifiableCredential")
            if not isinstance(credentials, list) or not credentials:
                raise TokenMalformed("Presentation must include at least one credential")
            if not all(isinstance(c, str) for c in credentials):
                raise TokenMalformed("Each embedded credential must be a token string")
        return issuer

    def _check_audience(self, payload: Dict[str, Any], audience: Optional[str]):
        token_audience = payload.get("aud")
        if token_audience is None:
            return
        audiences = token_audience if isinstance(token_audience, list) else [token_audience]
        if audience is None:
            raise _Rejected(VerificationStatus.AUDIENCE_MISMATCH, "Token names an audience but none is expected")
        if audience not in audiences:
            raise _Rejected(
                VerificationStatus.AUDIENCE_MISMATCH,
                f"Audience {audience!r} not in token audience {audiences!r}",
            )

    def _check_validity_window(self, payload: Dict[str, Any]):
        now = self.clock()
        skew = self.settings.CLOCK_SKEW_SECONDS
        for claim in ("nbf", "exp"):
            value = payload.get(claim)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                raise TokenMalformed(f"'{claim}' must be an integer timestamp")

        if payload.get("nbf") is not None and payload["nbf"] > now + skew:
            raise _Rejected(VerificationStatus.EXPIRED_OR_NOT_YET_VALID, f"Token not valid before {payload['nbf']}")
        if payload.get("exp") is not None and payload["exp"] <= now - skew:
            raise _Rejected(VerificationStatus.EXPIRED_OR_NOT_YET_VALID, f"Token expired at {payload['exp']}")

    def _check_signature(
        self,
        decoded: DecodedToken,
        domain: TypedDataDomain,
        issuer: str,
        accounts: List[Tuple[str, str]],
    ) -> str:
        issuer_network = parse_did(issuer).network
        if domain.chain_id != issuer_network.chain_id:
            raise _Rejected(
                VerificationStatus.SIGNATURE_INVALID,
                f"Domain chain id {domain.chain_id} does not match issuer network "
                f"{issuer_network.network_name} ({issuer_network.chain_id})",
            )

        typed_data = build_typed_data(domain, *decoded.signing_input)
        try:
            signer = recover_signer(typed_data, decoded.signature).lower()
        except Exception as e:
            raise _Rejected(VerificationStatus.SIGNATURE_INVALID, f"Signature cannot be recovered: {e}")

        for method_id, address in accounts:
            if address == signer:
                return method_id
        raise _Rejected(
            VerificationStatus.SIGNATURE_INVALID,
            f"Signer {signer} matches no verification method of {issuer}",
        )
