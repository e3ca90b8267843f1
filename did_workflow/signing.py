"""
Typed-data signing (EIP-712)

Tokens are signed as EIP-712 typed data: the message holds the encoded
header and payload segments, and the domain pins the signature to one chain.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import to_bytes, to_hex

from .exceptions import SigningFailed, UserRejected
from .network import TypedDataDomain

logger = logging.getLogger(__name__)

PRIMARY_TYPE = "SignedToken"

TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
    ],
    PRIMARY_TYPE: [
        {"name": "header", "type": "string"},
        {"name": "payload", "type": "string"},
    ],
}


def build_typed_data(domain: TypedDataDomain, encoded_header: str, encoded_payload: str) -> Dict[str, Any]:
    """Typed-data message covering a token's header and payload segments"""
    return {
        "types": TYPES,
        "primaryType": PRIMARY_TYPE,
        "domain": domain.to_dict(),
        "message": {"header": encoded_header, "payload": encoded_payload},
    }


def recover_signer(typed_data: Dict[str, Any], signature: str) -> str:
    """
    Recover the address that signed a typed-data message

    Raises:
        ValueError: signature cannot be recovered
    """
    signable = encode_typed_data(full_message=typed_data)
    return Account.recover_message(signable, signature=to_bytes(hexstr=signature))


class TypedDataSigner(Protocol):
    async def sign(self, typed_data: Dict[str, Any], signing_capability: Any) -> str: ...


ApprovalHook = Callable[[Dict[str, Any]], Union[bool, Awaitable[bool]]]


class Eip712Signer:
    """
    Signs typed data with an eth_account signing capability

    Args:
        approve: Optional hook standing in for the wallet's confirmation
            prompt. Returning False rejects the request.
    """

    def __init__(self, approve: Optional[ApprovalHook] = None):
        self.approve = approve

    async def sign(self, typed_data: Dict[str, Any], signing_capability: Any) -> str:
        if self.approve is not None:
            approved = self.approve(typed_data)
            if inspect.isawaitable(approved):
                approved = await approved
            if not approved:
                raise UserRejected("Signature request rejected by the account holder")

        try:
            signable = encode_typed_data(full_message=typed_data)
            signed = signing_capability.sign_message(signable)
        except Exception as e:
            logger.warning("Typed-data signing failed: %s", e)
            raise SigningFailed(f"Typed-data signing failed: {e}") from e

        return to_hex(signed.signature)


async def sign_token(signer: TypedDataSigner, codec, account, domain: TypedDataDomain, claims: Dict[str, Any]) -> str:
    """
    Sign token claims under a domain and encode the compact token

    Args:
        signer: Signing collaborator
        codec: TokenCodec producing the signing input and the token
        account: WalletAccount whose signing capability is used
        domain: Typed-data domain the signature is scoped to
        claims: Token payload

    Returns:
        Compact signed token
    """
    encoded_header, encoded_payload = codec.signing_input(claims)
    typed_data = build_typed_data(domain, encoded_header, encoded_payload)
    try:
        signature = await signer.sign(typed_data, account.signer)
    except SigningFailed:
        raise
    except Exception as e:
        raise SigningFailed(f"Signing service error: {e}") from e
    return codec.encode(claims, signature)
