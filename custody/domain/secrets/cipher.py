"""Authenticated cipher for short credential strings.

Blob layout (base64-encoded as a single string):

    salt (64) || iv (16) || tag (16) || ciphertext (variable)

The salt is random per call and stored with the blob, but it is not mixed
into the key yet: every record is encrypted under the same master key. It is
carried so per-record key diversification can be added without changing the
stored format.
"""
import base64
import binascii
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from custody.errors import CryptoError, ValidationError
from .key_material import KEY_SIZE

SALT_SIZE = 64
IV_SIZE = 16
TAG_SIZE = 16
MIN_BLOB_SIZE = SALT_SIZE + IV_SIZE + TAG_SIZE


@dataclass(frozen=True)
class EncryptedSecret:
    """Parsed form of a stored credential blob."""
    salt: bytes
    iv: bytes
    tag: bytes
    ciphertext: bytes

    def to_bytes(self) -> bytes:
        return self.salt + self.iv + self.tag + self.ciphertext

    def to_blob(self) -> str:
        return base64.b64encode(self.to_bytes()).decode("ascii")

    @staticmethod
    def from_blob(blob: str) -> "EncryptedSecret":
        """Split a stored blob. Anything malformed is a CryptoError (fail closed)."""
        if not isinstance(blob, str) or not blob:
            raise CryptoError("Malformed encrypted secret: empty blob")
        try:
            raw = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError):
            raise CryptoError("Malformed encrypted secret: invalid base64")

        if len(raw) < MIN_BLOB_SIZE:
            raise CryptoError(f"Malformed encrypted secret: {len(raw)} bytes, need at least {MIN_BLOB_SIZE}")

        iv_end = SALT_SIZE + IV_SIZE
        tag_end = iv_end + TAG_SIZE
        return EncryptedSecret(
            salt=raw[:SALT_SIZE],
            iv=raw[SALT_SIZE:iv_end],
            tag=raw[iv_end:tag_end],
            ciphertext=raw[tag_end:],
        )


class CredentialCipher:
    """AES-256-GCM with a 16-byte IV and 16-byte tag."""

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
        self._aesgcm = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        if not isinstance(plaintext, str) or not plaintext:
            raise ValidationError("Credential value must be a non-empty string.")

        salt = os.urandom(SALT_SIZE)
        iv = os.urandom(IV_SIZE)
        # AESGCM returns ciphertext with the tag appended
        ct_and_tag = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)

        return EncryptedSecret(
            salt=salt,
            iv=iv,
            tag=ct_and_tag[-TAG_SIZE:],
            ciphertext=ct_and_tag[:-TAG_SIZE],
        ).to_blob()

    def decrypt(self, blob: str) -> str:
        secret = EncryptedSecret.from_blob(blob)
        try:
            plaintext = self._aesgcm.decrypt(secret.iv, secret.ciphertext + secret.tag, None)
        except InvalidTag:
            raise CryptoError("Authentication tag mismatch")
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise CryptoError("Decrypted payload is not valid UTF-8")
