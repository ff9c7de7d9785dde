"""Share-code API.

Owner routes require a verified identity. The /shared routes are public and
authenticated only by the share code itself, so every failure there counts
towards the caller's redemption lockout.
"""
import logging
import math
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from custody.dependencies import get_client_address, get_share_code_service
from custody.domain.models import AccessAction, CategoryTag, ShareCode, VaultDocument, utcnow
from custody.domain.sharing.service import ShareCodeService
from custody.errors import (
    CustodyError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    RateLimitedError,
    ShareCodeInactiveError,
    ValidationError,
    raise_custody_error,
)
from custody.middleware.identity import VerifiedIdentity, get_verified_identity

router = APIRouter()
logger = logging.getLogger(__name__)


class ShareCodeCreate(BaseModel):
    code_name: str = Field(..., max_length=200)
    categories: List[CategoryTag]
    code: Optional[str] = Field(None, max_length=64)
    description: Optional[str] = Field(None, max_length=1000)


class RedeemRequest(BaseModel):
    code: str = Field(..., max_length=128)


class DocumentAccessRequest(BaseModel):
    code: str = Field(..., max_length=128)
    document_id: str
    action: AccessAction = AccessAction.VIEW


def _code_view(code: ShareCode) -> Dict[str, Any]:
    return code.model_dump(mode="json", exclude={"code_hash"})


def _document_view(doc: VaultDocument) -> Dict[str, Any]:
    return {"document_id": doc.document_id, "name": doc.name, "category": doc.category.value}


def _raise_for(e: CustodyError) -> None:
    """Map domain errors to HTTP errors."""
    if isinstance(e, RateLimitedError):
        retry_after = 0
        if e.locked_until is not None:
            retry_after = max(1, math.ceil((e.locked_until - utcnow()).total_seconds()))
        raise HTTPException(
            status_code=429,
            detail={"error": {"code": "RATE_LIMITED", "message": e.message}},
            headers={"Retry-After": str(retry_after)},
        )
    if isinstance(e, ShareCodeInactiveError):
        raise_custody_error("SHARE_CODE_INACTIVE", 403, e.message, {"state": e.state})
    if isinstance(e, ForbiddenError):
        raise_custody_error("ACCESS_DENIED", 403, e.message)
    if isinstance(e, NotFoundError):
        raise_custody_error("NOT_FOUND", 404, "Share code not found.")
    if isinstance(e, InvalidTransitionError):
        raise_custody_error("INVALID_TRANSITION", 409, e.message)
    if isinstance(e, ValidationError):
        raise_custody_error("VALIDATION_FAILED", 400, e.message)
    raise e


@router.post("/share-codes", status_code=201)
async def issue_share_code(
    body: ShareCodeCreate,
    identity: VerifiedIdentity = Depends(get_verified_identity),
    service: ShareCodeService = Depends(get_share_code_service),
):
    try:
        issued = await run_in_threadpool(
            service.issue_code,
            identity.user_id,
            body.code_name,
            body.categories,
            body.code,
            body.description,
        )
    except CustodyError as e:
        _raise_for(e)

    return {"share_code": _code_view(issued.share_code), "full_code": issued.full_code}


@router.get("/share-codes")
async def list_share_codes(
    identity: VerifiedIdentity = Depends(get_verified_identity),
    service: ShareCodeService = Depends(get_share_code_service),
):
    codes = await run_in_threadpool(service.list_codes, identity.user_id)
    return {"share_codes": [_code_view(c) for c in codes]}


@router.post("/share-codes/{share_code_id}/revoke")
async def revoke_share_code(
    share_code_id: str,
    identity: VerifiedIdentity = Depends(get_verified_identity),
    service: ShareCodeService = Depends(get_share_code_service),
):
    try:
        code = await run_in_threadpool(service.revoke_code, share_code_id, identity.user_id)
    except CustodyError as e:
        _raise_for(e)

    return {"share_code": _code_view(code)}


@router.get("/share-codes/{share_code_id}/access-events")
async def list_access_events(
    share_code_id: str,
    limit: int = 100,
    identity: VerifiedIdentity = Depends(get_verified_identity),
    service: ShareCodeService = Depends(get_share_code_service),
):
    try:
        events = await run_in_threadpool(
            service.list_access_events, share_code_id, identity.user_id, min(max(limit, 1), 500)
        )
    except CustodyError as e:
        _raise_for(e)

    return {"events": [e.model_dump(mode="json") for e in events]}


@router.post("/shared/redeem")
async def redeem_share_code(
    body: RedeemRequest,
    request: Request,
    service: ShareCodeService = Depends(get_share_code_service),
):
    client_address = get_client_address(request)
    try:
        grant = await service.redeem_code(body.code, client_address)
    except CustodyError as e:
        _raise_for(e)

    documents = await run_in_threadpool(service.list_shared_documents, grant)
    return {
        "share_code_id": grant.share_code_id,
        "code_name": grant.code_name,
        "categories": [c.value for c in grant.categories],
        "expires_at": grant.expires_at.isoformat(),
        "documents": [_document_view(d) for d in documents],
    }


@router.post("/shared/access")
async def access_shared_document(
    body: DocumentAccessRequest,
    request: Request,
    user_agent: Optional[str] = Header(None),
    service: ShareCodeService = Depends(get_share_code_service),
):
    client_address = get_client_address(request)
    try:
        doc, event = await service.access_document(
            body.code,
            body.document_id,
            body.action,
            client_address,
            user_agent=user_agent or "unknown",
        )
    except CustodyError as e:
        _raise_for(e)

    return {
        "document": _document_view(doc),
        "action": event.action.value,
        "accessed_at": event.occurred_at.isoformat(),
    }
