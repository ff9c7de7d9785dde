"""Credential Vault API.

Store is limited to the case owner, reveal to the assigned handler. A missing
case and a refused caller produce the same 403 body, so the routes cannot be
used to probe which case ids exist.
"""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from custody.dependencies import get_vault
from custody.domain.secrets.vault import CredentialVault
from custody.errors import (
    DecryptionFailedError,
    ForbiddenError,
    GENERIC_ACCESS_DENIED_MESSAGE,
    NotFoundError,
    ValidationError,
    raise_custody_error,
)
from custody.middleware.identity import VerifiedIdentity, get_verified_identity

router = APIRouter()
logger = logging.getLogger(__name__)


class CredentialSubmission(BaseModel):
    username: str
    password: str


@router.post("/cases/{case_id}/credentials", status_code=201)
def store_credentials(
    case_id: str,
    body: CredentialSubmission,
    identity: VerifiedIdentity = Depends(get_verified_identity),
    vault: CredentialVault = Depends(get_vault),
):
    try:
        record = vault.store_credentials(case_id, body.username, body.password, submitted_by=identity.user_id)
    except (NotFoundError, ForbiddenError):
        raise_custody_error("ACCESS_DENIED", 403, GENERIC_ACCESS_DENIED_MESSAGE)
    except ValidationError as e:
        raise_custody_error("VALIDATION_FAILED", 400, e.message)

    return {"case_id": record.case_id, "stored": True, "created_at": record.created_at.isoformat()}


@router.post("/cases/{case_id}/credentials/reveal")
def reveal_credentials(
    case_id: str,
    identity: VerifiedIdentity = Depends(get_verified_identity),
    vault: CredentialVault = Depends(get_vault),
):
    try:
        creds = vault.retrieve_credentials(case_id, requester_id=identity.user_id)
    except (NotFoundError, ForbiddenError):
        raise_custody_error("ACCESS_DENIED", 403, GENERIC_ACCESS_DENIED_MESSAGE)
    except DecryptionFailedError as e:
        raise_custody_error("CREDENTIALS_UNAVAILABLE", 500, e.message)

    return {
        "case_id": creds.case_id,
        "username": creds.username,
        "password": creds.password,
        "accessed_at": creds.accessed_at.isoformat(),
    }
