"""Share code derivation, composition and parsing.

A full share code is ``{prefix}-{raw_code}``. The prefix is a one-way
function of the owner's user id, so codes chosen by different owners never
collide and a redeemed code can be checked against the owner it claims.
"""
import hashlib
import hmac
import re
import secrets
from dataclasses import dataclass
from typing import Optional

# 33 symbols; no 0, O or I.
PREFIX_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ123456789"
PREFIX_LENGTH = 6

# Generated codes also drop 1 so they read unambiguously when dictated.
RAW_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
RAW_CODE_LENGTH = 12
RAW_CODE_MIN_LENGTH = 8
MIN_SEGMENT_LENGTH = 4

_ALNUM_RE = re.compile(r"^[A-Za-z0-9]+$")


@dataclass(frozen=True)
class ParsedCode:
    prefix: str
    raw_code: str


def derive_prefix(owner_user_id: str) -> str:
    digest = hashlib.sha256(owner_user_id.encode("utf-8")).digest()
    return "".join(PREFIX_ALPHABET[b % len(PREFIX_ALPHABET)] for b in digest[:PREFIX_LENGTH])


def compose_code(raw_code: str, owner_user_id: str) -> str:
    return f"{derive_prefix(owner_user_id)}-{raw_code}"


def parse_code(full_code: str) -> Optional[ParsedCode]:
    """Split on the last hyphen. Returns None for anything not in prefixed format."""
    if not isinstance(full_code, str):
        return None
    parts = full_code.strip().rsplit("-", 1)
    if len(parts) < 2:
        return None
    prefix, raw_code = parts
    if len(prefix) < MIN_SEGMENT_LENGTH or len(raw_code) < MIN_SEGMENT_LENGTH:
        return None
    return ParsedCode(prefix=prefix, raw_code=raw_code)


def validate_ownership(full_code: str, claimed_owner_user_id: str) -> bool:
    parsed = parse_code(full_code)
    if parsed is None:
        return False
    return hmac.compare_digest(
        parsed.prefix.encode("utf-8"),
        derive_prefix(claimed_owner_user_id).encode("utf-8"),
    )


def generate_raw_code(length: int = RAW_CODE_LENGTH) -> str:
    return "".join(secrets.choice(RAW_CODE_ALPHABET) for _ in range(length))


def validate_raw_code(raw_code: str, min_length: int = RAW_CODE_MIN_LENGTH) -> Optional[str]:
    """Return an error message, or None if the code is acceptable."""
    if len(raw_code) < min_length:
        return f"Code must be at least {min_length} characters long."
    if not _ALNUM_RE.match(raw_code):
        return "Code must contain only letters and numbers."
    return None


def hash_code(raw_code: str, owner_user_id: str) -> str:
    """Owner-salted digest stored in place of the raw code."""
    return hashlib.sha256(f"{raw_code.strip()}:{owner_user_id}".encode("utf-8")).hexdigest()


def hash_legacy_code(raw_code: str) -> str:
    """Digest format of codes issued before owner prefixes existed."""
    return hashlib.sha256(raw_code.strip().encode("utf-8")).hexdigest()
