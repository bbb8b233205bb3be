"""
Encryption for webhook secrets at rest.
Uses Fernet symmetric encryption (AES-128-CBC + HMAC-SHA256) keyed by
SECRET_ENCRYPTION_KEY. There is no plaintext fallback: a missing or malformed
key fails at construction, an undecryptable token raises.
"""
import hashlib
import logging
import re

from cryptography.fernet import Fernet, InvalidToken

from hookgate.errors import SecretValidationError

logger = logging.getLogger(__name__)

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
MIN_HEX_SECRET_LENGTH = 64  # 256 bits


class SecretDecryptionError(Exception):
    """Stored ciphertext could not be decrypted with the configured key."""


class SecretCipher:
    """Encrypts and decrypts secret material with a process-wide Fernet key."""

    def __init__(self, key: str):
        if not key:
            raise ValueError("SECRET_ENCRYPTION_KEY is not configured")
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise ValueError(f"SECRET_ENCRYPTION_KEY is not a valid Fernet key: {e}") from e

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            logger.error("Secret decryption failed - wrong SECRET_ENCRYPTION_KEY or corrupt token")
            raise SecretDecryptionError("Unable to decrypt webhook secret") from e


def generate_encryption_key() -> str:
    """New Fernet key for SECRET_ENCRYPTION_KEY."""
    return Fernet.generate_key().decode("ascii")


def validate_secret_key(secret: object, min_length: int = 32) -> str:
    """
    Enforce the secret policy. Returns the secret unchanged when acceptable.
    Hex-only secrets must carry at least 256 bits.
    """
    if not isinstance(secret, str) or not secret.strip():
        raise SecretValidationError("Secret key must be a non-empty string")
    if len(secret) < min_length:
        raise SecretValidationError(
            f"Secret key must be at least {min_length} characters long"
        )
    if _HEX_RE.match(secret) and len(secret) < MIN_HEX_SECRET_LENGTH:
        raise SecretValidationError(
            f"Hex secret keys must be at least {MIN_HEX_SECRET_LENGTH} characters (256 bits)"
        )
    return secret


def fingerprint_secret(secret: str) -> str:
    """Short non-reversible fingerprint for logs and audit output."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()[:12]
