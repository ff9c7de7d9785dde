"""Credential master key resolution.

The vault has exactly one key source: the configured master secret. There is
no development default and no fallback; a missing secret is a ConfigError.
"""
import binascii
import logging
import re
import threading
from typing import Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from custody.errors import ConfigError

logger = logging.getLogger(__name__)

KEY_SIZE = 32  # 256 bits for AES-256
PBKDF2_ITERATIONS = 100_000
KEY_DERIVATION_SALT = b"custody-filing-credential-vault-v1"

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")

_MASTER_KEY: Optional[bytes] = None
_MASTER_KEY_LOCK = threading.Lock()


def resolve_master_key(raw: Optional[str]) -> bytes:
    """Turn configured key material into a 32-byte AES key.

    If raw is exactly 64 hex chars, it's decoded directly.
    Otherwise, it's stretched with PBKDF2-HMAC-SHA256 and a fixed salt.
    """
    if raw is None or not raw.strip():
        raise ConfigError("CREDENTIAL_MASTER_KEY must be set; the credential vault has no default key.")

    if _HEX_KEY_RE.match(raw):
        return binascii.unhexlify(raw)

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=KEY_DERIVATION_SALT,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(raw.encode("utf-8"))


def get_master_key() -> bytes:
    """Process-wide master key, resolved once from settings and then read-only."""
    global _MASTER_KEY
    if _MASTER_KEY is None:
        with _MASTER_KEY_LOCK:
            if _MASTER_KEY is None:
                from custody.settings import settings
                secret = settings.credential_master_key
                _MASTER_KEY = resolve_master_key(secret.get_secret_value() if secret else None)
                logger.info("Credential master key resolved.")
    return _MASTER_KEY


def reset_master_key() -> None:
    """Forget the cached key (tests and controlled restarts only)."""
    global _MASTER_KEY
    with _MASTER_KEY_LOCK:
        _MASTER_KEY = None
