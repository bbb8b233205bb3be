"""
Webhook signature verification - HMAC over the exact raw body.

Header priority: x-paysafe-signature, x-netbanx-signature, x-signature, signature.
Accepted formats: <hex>, <HEX>, sha256=<hex>, SHA256=<hex>.
Fails closed: no header or no active secret means unverified, unless unsigned
pass-through is explicitly enabled outside production.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, Optional

from hookgate.services.secret_cache import SecretCache
from hookgate.utils.alerting import AlertType, send_alert
from hookgate.utils.encryption import SecretDecryptionError
from hookgate.utils.logging import redact

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = (
    "x-paysafe-signature",
    "x-netbanx-signature",
    "x-signature",
    "signature",
)

_DIGESTS = {
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}

REASON_OK = "ok"
REASON_MISSING_SIGNATURE = "missing_signature"
REASON_UNKNOWN_SECRET = "unknown_endpoint_secret"
REASON_MISMATCH = "signature_mismatch"
REASON_SECRET_UNREADABLE = "secret_unreadable"
REASON_UNSIGNED_ALLOWED = "unsigned_allowed"


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    reason: str
    header: Optional[str] = None
    key_version: Optional[int] = None


def find_signature_header(headers: Mapping[str, str]) -> tuple[Optional[str], Optional[str]]:
    """First present signature header in priority order, as (name, value)."""
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in SIGNATURE_HEADERS:
        value = lowered.get(name)
        if value is not None and value.strip():
            return name, value
    return None, None


def normalize_signature(value: str) -> str:
    """Trim, strip a '<algo>=' prefix case-insensitively, lowercase the hex."""
    sig = value.strip()
    if "=" in sig:
        prefix, _, rest = sig.partition("=")
        if prefix.strip().lower() in _DIGESTS:
            sig = rest.strip()
    return sig.lower()


def compute_signature(key: str, body: bytes, algorithm: str = "sha256") -> str:
    digest = _DIGESTS.get(algorithm, hashlib.sha256)
    return hmac.new(key.encode("utf-8"), body, digest).hexdigest()


def signatures_match(key: str, body: bytes, signature: str, algorithm: str = "sha256") -> bool:
    expected = compute_signature(key, body, algorithm)
    provided = normalize_signature(signature).encode("utf-8", errors="replace")
    return hmac.compare_digest(expected.encode("ascii"), provided)


class SignatureVerifier:
    def __init__(
        self,
        cache: SecretCache,
        allow_unsigned: bool = False,
        alert: Callable[..., Awaitable[object]] = send_alert,
    ):
        self._cache = cache
        self.allow_unsigned = allow_unsigned
        self._alert = alert

    async def verify(
        self,
        endpoint: str,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> VerificationResult:
        """
        Verify the request signature for an endpoint.
        TransientStorageError from secret resolution propagates to the caller.
        """
        header_name, signature = find_signature_header(headers)

        if header_name is None:
            if self.allow_unsigned:
                logger.warning(
                    "Accepting unsigned webhook for %s - ALLOW_UNSIGNED_WEBHOOKS is enabled",
                    endpoint, extra={"endpoint": endpoint},
                )
                return VerificationResult(True, REASON_UNSIGNED_ALLOWED)
            logger.warning(
                "Webhook rejected: no signature header for %s", endpoint,
                extra={"endpoint": endpoint},
            )
            return VerificationResult(False, REASON_MISSING_SIGNATURE)

        try:
            secret = await self._cache.resolve(endpoint)
        except SecretDecryptionError:
            logger.error("Webhook rejected: secret for %s cannot be decrypted", endpoint)
            try:
                await self._alert(
                    AlertType.SECRET_DECRYPTION_FAILED,
                    f"Stored secret for {endpoint} cannot be decrypted - check SECRET_ENCRYPTION_KEY",
                    severity="critical",
                    cooldown_scope=endpoint,
                )
            except Exception as e:
                logger.warning("Alert dispatch failed: %s", str(e))
            return VerificationResult(False, REASON_SECRET_UNREADABLE, header_name)

        if secret is None:
            logger.warning(
                "Webhook rejected: no active secret for %s", endpoint,
                extra={"endpoint": endpoint},
            )
            return VerificationResult(False, REASON_UNKNOWN_SECRET, header_name)

        if signatures_match(secret.key, raw_body, signature, secret.algorithm):
            logger.debug(
                "Signature verified: endpoint=%s header=%s version=%d",
                endpoint, header_name, secret.version,
            )
            return VerificationResult(True, REASON_OK, header_name, secret.version)

        logger.warning(
            "Invalid webhook signature: endpoint=%s header=%s signature=%s version=%d",
            endpoint, header_name, redact(signature.strip()), secret.version,
            extra={"endpoint": endpoint, "signature_preview": redact(signature.strip())},
        )
        return VerificationResult(False, REASON_MISMATCH, header_name, secret.version)
