"""Caller identity.

The only identity the core accepts is the `sub` of a bearer token verified
by the identity provider adapter. There is no header or query parameter that
can assert a user id.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Depends, Header

from custody.dependencies import get_jwt_validator
from custody.domain.auth import IdentityError, JwtValidator
from custody.errors import raise_custody_error


@dataclass(frozen=True)
class VerifiedIdentity:
    user_id: str
    claims: Dict[str, Any]


def get_verified_identity(
    authorization: Optional[str] = Header(None),
    validator: JwtValidator = Depends(get_jwt_validator),
) -> VerifiedIdentity:
    if not authorization or not authorization.startswith("Bearer "):
        raise_custody_error("UNAUTHENTICATED", 401, "Missing bearer token")

    token = authorization[len("Bearer "):].strip()
    try:
        claims = validator.validate_token(token)
    except IdentityError as e:
        code = "UNAUTHENTICATED" if e.status_code == 401 else "IDENTITY_UNAVAILABLE"
        raise_custody_error(code, e.status_code, e.message)

    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise_custody_error("UNAUTHENTICATED", 401, "Token has no subject")
    return VerifiedIdentity(user_id=subject, claims=claims)
