"""Custody error taxonomy and HTTP error helpers."""
from datetime import datetime
from typing import Optional, Dict, Any

from fastapi import HTTPException

GENERIC_CREDENTIALS_MESSAGE = "Unable to retrieve credentials, please contact support"
GENERIC_ACCESS_DENIED_MESSAGE = "Access denied."


class CustodyError(Exception):
    """Base exception for custody operations."""

    def __init__(self, message: str = "Custody operation failed."):
        super().__init__(message)
        self.message = message


class ConfigError(CustodyError):
    """Master key material missing or malformed. Never substituted with a default."""

    def __init__(self, message: str = "Credential master key is not configured."):
        super().__init__(message)


class ValidationError(CustodyError):
    """Malformed input, rejected before any cryptographic work."""

    def __init__(self, message: str = "Invalid input."):
        super().__init__(message)


class NotFoundError(CustodyError):
    """Referenced case, credential record or share code does not exist."""

    def __init__(self, resource_type: str = "record", resource_id: str = ""):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type} not found: {resource_id}" if resource_id else f"{resource_type} not found."
        super().__init__(message)


class ForbiddenError(CustodyError):
    """Authenticated caller is not allowed to perform the operation."""

    def __init__(self, message: str = GENERIC_ACCESS_DENIED_MESSAGE, principal_id: Optional[str] = None):
        super().__init__(message)
        self.principal_id = principal_id


class ShareCodeInactiveError(ForbiddenError):
    """Share code is expired or revoked and can no longer be redeemed."""

    def __init__(self, state: str):
        self.state = state
        super().__init__(f"Share code has {'expired' if state == 'expired' else 'been revoked'}.")


class CryptoError(CustodyError):
    """Authentication tag mismatch or malformed ciphertext."""

    def __init__(self, message: str = "Decryption failed."):
        super().__init__(message)


class DecryptionFailedError(CustodyError):
    """Caller-facing wrapper for CryptoError. Carries no cipher detail."""

    def __init__(self):
        super().__init__(GENERIC_CREDENTIALS_MESSAGE)


class InvalidTransitionError(ValidationError):
    """Share code lifecycle transition that is not allowed."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move share code from {current} to {target}.")


class RateLimitedError(CustodyError):
    """Too many failed redemption attempts from one client address."""

    def __init__(self, locked_until: Optional[datetime] = None):
        self.locked_until = locked_until
        super().__init__("Too many failed attempts. Please try again later.")


def raise_custody_error(
    code: str,
    status_code: int,
    message: str,
    details: Optional[Dict[str, Any]] = None
) -> None:
    """Raise a standardized HTTPException.

    Args:
        code: Error code (ACCESS_DENIED, VALIDATION_FAILED, etc.)
        status_code: HTTP Status Code (400, 403, etc.)
        message: Human readable message
        details: Optional extra details
    """
    error_body: Dict[str, Any] = {
        "code": code,
        "message": message
    }
    if details:
        error_body["details"] = details

    raise HTTPException(status_code=status_code, detail={"error": error_body})
