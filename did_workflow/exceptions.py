"""Credential workflow exceptions.

Every error raised by the workflow carries an ``ErrorKind`` so callers (the
HTTP service, the session) can branch on the kind instead of the class.
Construction errors are raised before any external call is made; remote
errors wrap whatever the signing or resolution collaborator raised.
"""

from enum import Enum


class ErrorKind(Enum):
    """Error taxonomy of the credential workflow"""
    NETWORK_UNSUPPORTED = "NetworkUnsupported"
    UNKNOWN_NETWORK = "UnknownNetwork"
    MISSING_NETWORK = "MissingNetwork"
    SIGNING_FAILED = "SigningFailed"
    USER_REJECTED = "UserRejected"
    INVALID_PAYLOAD = "InvalidPayload"
    EMPTY_PRESENTATION = "EmptyPresentation"
    TOKEN_MALFORMED = "TokenMalformed"
    DID_NOT_RESOLVABLE = "DidNotResolvable"
    SIGNATURE_INVALID = "SignatureInvalid"
    AUDIENCE_MISMATCH = "AudienceMismatch"
    EXPIRED_OR_NOT_YET_VALID = "ExpiredOrNotYetValid"
    STALE_OPERATION = "StaleOperation"
    STAGE_LOCKED = "StageLocked"
    NO_ACCOUNT_SELECTED = "NoAccountSelected"


class DIDWorkflowError(Exception):
    """Base class for all workflow errors."""

    kind = ErrorKind.INVALID_PAYLOAD

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value


class NetworkUnsupported(DIDWorkflowError):
    """Raised when the provider reports a chain id outside the supported table."""

    kind = ErrorKind.NETWORK_UNSUPPORTED


class UnknownNetwork(DIDWorkflowError):
    """Raised when a resolver is requested for a network with no registry."""

    kind = ErrorKind.UNKNOWN_NETWORK


class MissingNetwork(DIDWorkflowError):
    """Raised when issuance is attempted without an active network."""

    kind = ErrorKind.MISSING_NETWORK


class SigningFailed(DIDWorkflowError):
    """Raised when the signing collaborator fails."""

    kind = ErrorKind.SIGNING_FAILED


class UserRejected(SigningFailed):
    """Raised when the account holder declines the signature request."""

    kind = ErrorKind.USER_REJECTED


class InvalidPayload(DIDWorkflowError):
    """Raised when claims or payload fields violate the credential schema."""

    kind = ErrorKind.INVALID_PAYLOAD


class DomainMismatch(InvalidPayload):
    """Raised when a typed-data domain is bound to a different chain than the network.

    A credential signed against the wrong chain's domain is a distinct,
    unlinkable signature, so this is rejected at construction time.
    """

    pass


class EmptyPresentation(DIDWorkflowError):
    """Raised when a presentation is requested for zero credentials."""

    kind = ErrorKind.EMPTY_PRESENTATION


class TokenMalformed(DIDWorkflowError):
    """Raised when a token string is not a structurally valid compact token."""

    kind = ErrorKind.TOKEN_MALFORMED


class DidNotResolvable(DIDWorkflowError):
    """Raised when a DID cannot be resolved to an active DID document."""

    kind = ErrorKind.DID_NOT_RESOLVABLE


class StaleOperation(DIDWorkflowError):
    """Raised when an operation finishes after its account or network was replaced.

    Never shown to the user: the session drops the result.
    """

    kind = ErrorKind.STALE_OPERATION


class StageLocked(DIDWorkflowError):
    """Raised when an operation is attempted before its preceding stage completed."""

    kind = ErrorKind.STAGE_LOCKED


class NoAccountSelected(DIDWorkflowError):
    """Raised when an account-bound operation runs without a selected account."""

    kind = ErrorKind.NO_ACCOUNT_SELECTED
