"""
Token Codec - Compact signed token representation

Token format: base64url(header).base64url(payload).base64url(signature)

The header is ``{"alg": "EIP712", "typ": "JWT"}``; the signature is the
65-byte EIP-712 signature over the typed-data message built from the first
two segments. ``decode`` accepts attacker-controlled strings: every
structural problem surfaces as ``TokenMalformed``.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from eth_utils import to_bytes, to_hex

from .exceptions import InvalidPayload, TokenMalformed

DEFAULT_HEADER = {"alg": "EIP712", "typ": "JWT"}
SIGNATURE_LENGTH = 65


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode((segment + padding).encode("ascii"))


def _encode_json(obj: Dict[str, Any]) -> str:
    try:
        text = json.dumps(obj, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise InvalidPayload(f"Token segment is not plain JSON: {e}")
    return b64url_encode(text.encode("utf-8"))


@dataclass(frozen=True)
class DecodedToken:
    """A token split into its parts"""
    header: Dict[str, Any]
    payload: Dict[str, Any]
    signature: str  # 0x-prefixed hex
    encoded_header: str
    encoded_payload: str

    @property
    def signing_input(self) -> Tuple[str, str]:
        return self.encoded_header, self.encoded_payload


class TokenCodec:
    """Encodes and decodes compact signed tokens"""

    def __init__(self, header: Optional[Dict[str, Any]] = None):
        self.header = dict(header or DEFAULT_HEADER)

    def signing_input(self, payload: Dict[str, Any], header: Optional[Dict[str, Any]] = None) -> Tuple[str, str]:
        """Encoded header and payload segments that the signature covers"""
        return _encode_json(header or self.header), _encode_json(payload)

    def encode(self, payload: Dict[str, Any], signature: str, header: Optional[Dict[str, Any]] = None) -> str:
        """
        Encode a signed payload

        Args:
            payload: Token claims
            signature: Hex encoded signature
            header: Token header (defaults to the EIP712 header)

        Returns:
            Compact token string
        """
        encoded_header, encoded_payload = self.signing_input(payload, header)
        try:
            signature_bytes = to_bytes(hexstr=signature)
        except (TypeError, ValueError) as e:
            raise TokenMalformed(f"Signature is not hex: {e}")
        return f"{encoded_header}.{encoded_payload}.{b64url_encode(signature_bytes)}"

    def decode(self, token: Any) -> DecodedToken:
        """
        Decode a compact token without verifying it

        Raises:
            TokenMalformed: wrong segment count, bad base64, bad JSON,
                non-object header/payload or wrong signature length
        """
        if not isinstance(token, str):
            raise TokenMalformed("Token must be a string")

        parts = token.split(".")
        if len(parts) != 3 or not all(parts):
            raise TokenMalformed("Token must have three non-empty segments")

        encoded_header, encoded_payload, encoded_signature = parts
        try:
            header = json.loads(b64url_decode(encoded_header).decode("utf-8"))
            payload = json.loads(b64url_decode(encoded_payload).decode("utf-8"))
            signature = b64url_decode(encoded_signature)
        except (binascii.Error, ValueError, UnicodeError, RecursionError) as e:
            # json.JSONDecodeError is a ValueError
            raise TokenMalformed(f"Token segment cannot be decoded: {e}")

        if not isinstance(header, dict) or not isinstance(payload, dict):
            raise TokenMalformed("Token header and payload must be JSON objects")
        if header.get("alg") != self.header["alg"]:
            raise TokenMalformed(f"Unsupported token algorithm: {header.get('alg')!r}")
        if len(signature) != SIGNATURE_LENGTH:
            raise TokenMalformed(f"Signature must be {SIGNATURE_LENGTH} bytes")

        return DecodedToken(
            header=header,
            payload=payload,
            signature=to_hex(signature),
            encoded_header=encoded_header,
            encoded_payload=encoded_payload,
        )
