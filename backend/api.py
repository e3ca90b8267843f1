"""
Credential Workflow API

HTTP surface over one in-process ``WorkflowSession`` connected to a
development wallet built from ``DID_WORKFLOW_DEV_PRIVATE_KEYS``.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from did_workflow import (
    DidResolverFactory,
    Eip712Signer,
    LocalWalletProvider,
    SupportedNetwork,
    TokenKind,
    WorkflowSession,
    get_settings,
)
from did_workflow.config import configure_logging, registry_table
from did_workflow.exceptions import DIDWorkflowError, ErrorKind

settings = get_settings()
configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger("did_workflow.api")

wallet: Optional[LocalWalletProvider] = None
session: Optional[WorkflowSession] = None

ERROR_STATUS = {
    ErrorKind.NETWORK_UNSUPPORTED: 400,
    ErrorKind.UNKNOWN_NETWORK: 400,
    ErrorKind.MISSING_NETWORK: 409,
    ErrorKind.SIGNING_FAILED: 502,
    ErrorKind.USER_REJECTED: 403,
    ErrorKind.INVALID_PAYLOAD: 422,
    ErrorKind.EMPTY_PRESENTATION: 422,
    ErrorKind.TOKEN_MALFORMED: 400,
    ErrorKind.DID_NOT_RESOLVABLE: 404,
    ErrorKind.STAGE_LOCKED: 409,
    ErrorKind.NO_ACCOUNT_SELECTED: 404,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    global wallet, session
    wallet = LocalWalletProvider.from_private_keys(settings.DEV_PRIVATE_KEYS, chain_id=settings.DEV_CHAIN_ID)
    session = WorkflowSession(Eip712Signer(), settings=settings)
    logger.info("Credential workflow API started (dev chain id %s)", settings.DEV_CHAIN_ID)
    yield
    session.disconnect()
    logger.info("Shutting down...")


app = FastAPI(title="DID Credential Workflow API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DIDWorkflowError)
async def workflow_error_handler(request: Request, exc: DIDWorkflowError):
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.kind, 400),
        content={"error": exc.kind.value, "detail": exc.message},
    )


# ============================================================
# REQUEST MODELS
# ============================================================

class ChainRequest(BaseModel):
    chain_id: int = Field(alias="chainId")


class AccountRequest(BaseModel):
    address: str


class CredentialRequest(BaseModel):
    claims: Dict[str, Any]
    subject_did: Optional[str] = Field(default=None, alias="subjectDid")
    not_before: Optional[int] = Field(default=None, alias="notBefore")
    expires_at: Optional[int] = Field(default=None, alias="expiresAt")
    audience: Optional[str] = None


class PresentationRequest(BaseModel):
    audience: Optional[str] = None
    nonce: Optional[str] = None


class VerifyRequest(BaseModel):
    audience: Optional[str] = None


class TokenRequest(BaseModel):
    token: str
    kind: TokenKind = TokenKind.CREDENTIAL
    audience: Optional[str] = None


def _superseded() -> Dict[str, Any]:
    return {"superseded": True, "stages": [s.to_dict() for s in session.stages()]}


# ============================================================
# NETWORKS
# ============================================================

@app.get("/health")
async def health():
    return {"ok": True, "connected": bool(session and session.artifacts.connected)}


@app.get("/api/networks")
async def list_networks():
    """Supported networks with their registries and DID segments"""
    registries = registry_table(settings)
    return [
        {
            "name": network.network_name,
            "chainId": network.chain_id,
            "registry": registries[network.network_name],
            "didSegment": network.did_segment,
        }
        for network in SupportedNetwork
    ]


# ============================================================
# SESSION
# ============================================================

@app.get("/api/session")
async def get_session():
    return session.summary()


@app.get("/api/session/stages")
async def get_stages():
    return [s.to_dict() for s in session.stages()]


@app.post("/api/session/connect")
async def connect():
    """Connect the dev wallet and bind the resolver to its network"""
    artifacts = await session.connect(wallet)
    if artifacts is None:
        return _superseded()
    return session.summary()


@app.post("/api/session/disconnect")
async def disconnect():
    session.disconnect()
    return session.summary()


@app.post("/api/session/network")
async def switch_network(request: ChainRequest):
    """Switch the dev wallet's chain and rebuild the session for it"""
    wallet.switch_chain(request.chain_id)
    if session.provider is None:
        return session.summary()
    changed = await session.refresh_network()
    return {"changed": changed, **session.summary()}


@app.get("/api/session/accounts")
async def list_accounts():
    return {"accounts": [account.address for account in session.artifacts.accounts]}


@app.post("/api/session/account")
async def select_account(request: AccountRequest):
    did = session.select_account(request.address)
    return {"address": request.address, "did": did}


@app.post("/api/session/did/resolve")
async def resolve_did():
    """Resolve the selected account's DID"""
    document = await session.resolve_did()
    if document is None:
        return _superseded()
    return {"did": document.id, "document": document.to_dict()}


# ============================================================
# CREDENTIALS & PRESENTATIONS
# ============================================================

@app.post("/api/session/credential")
async def issue_credential(request: CredentialRequest):
    """Issue a Verifiable Credential from the selected account"""
    token = await session.issue_credential(
        request.claims,
        subject_did=request.subject_did,
        not_before=request.not_before,
        expires_at=request.expires_at,
        audience=request.audience,
    )
    if token is None:
        return _superseded()
    return {"credential": token}


@app.post("/api/session/credential/verify")
async def verify_credential(request: Optional[VerifyRequest] = None):
    result = await session.verify_credential(request.audience if request else None)
    if result is None:
        return _superseded()
    return result.to_dict()


@app.post("/api/session/presentation")
async def issue_presentation(request: Optional[PresentationRequest] = None):
    """Wrap the session's credential into a Verifiable Presentation"""
    request = request or PresentationRequest()
    token = await session.issue_presentation(request.audience, request.nonce)
    if token is None:
        return _superseded()
    return {"presentation": token}


@app.post("/api/session/presentation/verify")
async def verify_presentation(request: Optional[VerifyRequest] = None):
    result = await session.verify_presentation(request.audience if request else None)
    if result is None:
        return _superseded()
    return result.to_dict()


@app.post("/api/verify")
async def verify_token(request: TokenRequest):
    """
    Verify any credential or presentation token

    Uses a resolver registered for every supported network, so tokens issued
    on any of them can be checked without reconnecting.
    """
    if not request.token:
        raise HTTPException(status_code=400, detail="Token is required")
    resolver = DidResolverFactory(registry_table(settings)).build_multi_network_resolver(
        {network: wallet for network in SupportedNetwork}
    )
    result = await session.gateway.verify(request.token, resolver, request.kind, request.audience)
    return result.to_dict()


if __name__ == "__main__":
    uvicorn.run("backend.api:app", host="0.0.0.0", port=8000)
