"""
Error taxonomy for webhook ingestion.

- ValidationError: bad input, rejected immediately, never retried
- AuthenticationError: signature failure (HTTP 401)
- RateLimitError: caller over its window (HTTP 429 + Retry-After)
- TransientStorageError: storage unavailable, retried with backoff
- PermanentProcessingError: payload can never succeed, recorded as failed
"""
import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class HookgateError(Exception):
    """Base class for all service errors."""


class ValidationError(HookgateError):
    pass


class SecretValidationError(ValidationError):
    pass


class SecretAlreadyExistsError(ValidationError):
    def __init__(self, endpoint: str):
        super().__init__(f"A webhook secret already exists for endpoint '{endpoint}'")
        self.endpoint = endpoint


class UnknownEndpointError(ValidationError):
    def __init__(self, endpoint: str):
        super().__init__(f"Unknown webhook endpoint '{endpoint}'")
        self.endpoint = endpoint


class SecretNotFoundError(HookgateError):
    def __init__(self, endpoint: str):
        super().__init__(f"No webhook secret registered for endpoint '{endpoint}'")
        self.endpoint = endpoint


class AuthenticationError(HookgateError):
    def __init__(self, reason: str):
        super().__init__(f"Signature verification failed: {reason}")
        self.reason = reason


class RateLimitError(HookgateError):
    def __init__(
        self,
        retry_after_seconds: int,
        limit: Optional[int] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        super().__init__(f"Rate limit exceeded, retry after {retry_after_seconds}s")
        self.retry_after_seconds = retry_after_seconds
        self.limit = limit
        self.headers = headers or {"Retry-After": str(retry_after_seconds)}


class TransientStorageError(HookgateError):
    pass


class PermanentProcessingError(HookgateError):
    pass


@contextmanager
def storage_errors(component: str, operation: str):
    """Map driver/ORM failures inside the block to TransientStorageError."""
    try:
        yield
    except (SQLAlchemyError, OSError) as e:
        logger.error("%s %s failed: %s", component, operation, str(e))
        raise TransientStorageError(f"{component} storage unavailable during {operation}") from e
