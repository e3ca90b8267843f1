"""
DID Document - W3C DID Core 1.0 document for did:ethr identities

Reference: https://www.w3.org/TR/did-core/
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

RECOVERY_METHOD_TYPE = "EcdsaSecp256k1RecoveryMethod2020"


def verification_method(did: str, fragment: str, chain_id: int, address: str) -> Dict[str, Any]:
    """Recovery-based verification method for a chain account"""
    return {
        "id": f"{did}#{fragment}",
        "type": RECOVERY_METHOD_TYPE,
        "controller": did,
        "blockchainAccountId": f"eip155:{chain_id}:{address}",
    }


@dataclass
class DIDDocument:
    """
    W3C DID Document

    Reference: https://www.w3.org/TR/did-core/#core-properties
    """
    id: str  # The DID
    controller: Optional[str] = None
    verification_method: List[Dict] = field(default_factory=list)
    authentication: List[str] = field(default_factory=list)
    assertion_method: List[str] = field(default_factory=list)
    service: List[Dict] = field(default_factory=list)
    deactivated: bool = False

    def __post_init__(self):
        if not self.controller:
            self.controller = self.id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to W3C DID Document JSON format"""
        doc = {
            "@context": [
                "https://www.w3.org/ns/did/v1",
                "https://w3id.org/security/suites/secp256k1recovery-2020/v2",
            ],
            "id": self.id,
            "controller": self.controller,
            "verificationMethod": self.verification_method,
            "authentication": self.authentication,
            "assertionMethod": self.assertion_method,
        }
        if self.service:
            doc["service"] = self.service
        if self.deactivated:
            doc["deactivated"] = self.deactivated
        return doc

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DIDDocument":
        return cls(
            id=data["id"],
            controller=data.get("controller"),
            verification_method=data.get("verificationMethod", []),
            authentication=data.get("authentication", []),
            assertion_method=data.get("assertionMethod", []),
            service=data.get("service", []),
            deactivated=data.get("deactivated", False),
        )

    def signing_accounts(self) -> List[Tuple[str, str]]:
        """(verification method id, lowercase address) for every chain-account method"""
        accounts = []
        for vm in self.verification_method:
            account_id = vm.get("blockchainAccountId", "")
            address = account_id.rsplit(":", 1)[-1] if account_id else vm.get("ethereumAddress", "")
            if address:
                accounts.append((vm.get("id", ""), address.lower()))
        return accounts
