"""
Secret vault - durable, encrypted, versioned webhook signing secrets.

One record per endpoint. Rotation bumps key_version in a single UPDATE so
readers see either the old row or the new one, never a mix. Deletion is
logical. Every committed write notifies change listeners (the secret cache
registers its invalidate here).
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from hookgate.errors import (
    SecretAlreadyExistsError,
    SecretNotFoundError,
    SecretValidationError,
    storage_errors,
)
from hookgate.models.webhook_secret import WebhookSecret
from hookgate.schemas.webhook_payloads import WebhookEndpoint
from hookgate.utils.encryption import SecretCipher, fingerprint_secret, validate_secret_key

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("sha256", "sha512")

ChangeListener = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class DecryptedSecret:
    endpoint: str
    key: str = field(repr=False)
    algorithm: str
    version: int


def _normalize_algorithm(algorithm: Optional[str]) -> str:
    algo = (algorithm or "sha256").strip().lower()
    if algo not in SUPPORTED_ALGORITHMS:
        raise SecretValidationError(
            f"Unsupported algorithm '{algorithm}'. Supported: {', '.join(SUPPORTED_ALGORITHMS)}"
        )
    return algo


class SecretVault:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        cipher: SecretCipher,
        min_secret_length: int = 32,
    ):
        self._session_factory = session_factory
        self._cipher = cipher
        self.min_secret_length = min_secret_length
        self._listeners: list[ChangeListener] = []

    def add_change_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    async def _notify(self, endpoint: str) -> None:
        for listener in self._listeners:
            try:
                await listener(endpoint)
            except Exception as e:
                logger.error("Secret change listener failed for %s: %s", endpoint, str(e))

    # === WRITES ===

    async def register(
        self,
        endpoint: str,
        name: str,
        raw_secret: str,
        description: Optional[str] = None,
        algorithm: str = "sha256",
        company_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> WebhookSecret:
        """
        Create the secret for an endpoint.
        A logically deleted record is revived with the next key version.
        """
        endpoint = WebhookEndpoint.parse(endpoint).value
        validate_secret_key(raw_secret, self.min_secret_length)
        algo = _normalize_algorithm(algorithm)
        encrypted = self._cipher.encrypt(raw_secret)

        with storage_errors("Secret vault", "register"):
            try:
                async with self._session_factory() as db:
                    result = await db.execute(
                        select(WebhookSecret).where(WebhookSecret.endpoint == endpoint)
                    )
                    record = result.scalar_one_or_none()
                    if record is not None and record.deleted_at is None:
                        raise SecretAlreadyExistsError(endpoint)

                    now = datetime.now(timezone.utc)
                    if record is None:
                        record = WebhookSecret(
                            endpoint=endpoint,
                            name=name,
                            description=description,
                            encrypted_key=encrypted,
                            algorithm=algo,
                            key_version=1,
                            is_active=True,
                            company_id=company_id,
                            usage_count=0,
                            created_by=created_by,
                        )
                        db.add(record)
                    else:
                        record.name = name
                        record.description = description
                        record.encrypted_key = encrypted
                        record.algorithm = algo
                        record.key_version = record.key_version + 1
                        record.is_active = True
                        record.company_id = company_id
                        record.created_by = created_by
                        record.deleted_at = None
                        record.updated_at = now
                    await db.commit()
            except IntegrityError as e:
                raise SecretAlreadyExistsError(endpoint) from e

        logger.info(
            "Webhook secret registered: endpoint=%s version=%d fingerprint=%s",
            endpoint, record.key_version, fingerprint_secret(raw_secret),
        )
        await self._notify(endpoint)
        return record

    async def rotate(
        self,
        endpoint: str,
        raw_secret: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        algorithm: Optional[str] = None,
    ) -> WebhookSecret:
        """Replace the key material and bump key_version atomically."""
        endpoint = WebhookEndpoint.parse(endpoint).value
        validate_secret_key(raw_secret, self.min_secret_length)

        values = {
            "encrypted_key": self._cipher.encrypt(raw_secret),
            "key_version": WebhookSecret.key_version + 1,
            "is_active": True,
            "updated_at": datetime.now(timezone.utc),
        }
        if algorithm is not None:
            values["algorithm"] = _normalize_algorithm(algorithm)
        if name is not None:
            values["name"] = name
        if description is not None:
            values["description"] = description

        with storage_errors("Secret vault", "rotate"):
            async with self._session_factory() as db:
                result = await db.execute(
                    update(WebhookSecret)
                    .where(
                        WebhookSecret.endpoint == endpoint,
                        WebhookSecret.deleted_at.is_(None),
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    await db.rollback()
                    raise SecretNotFoundError(endpoint)
                record = (
                    await db.execute(
                        select(WebhookSecret).where(WebhookSecret.endpoint == endpoint)
                    )
                ).scalar_one()
                await db.commit()

        logger.info(
            "Webhook secret rotated: endpoint=%s version=%d fingerprint=%s",
            endpoint, record.key_version, fingerprint_secret(raw_secret),
        )
        await self._notify(endpoint)
        return record

    async def update_metadata(
        self,
        endpoint: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> WebhookSecret:
        endpoint = WebhookEndpoint.parse(endpoint).value
        with storage_errors("Secret vault", "update"):
            async with self._session_factory() as db:
                record = await self._get_live(db, endpoint)
                if name is not None:
                    record.name = name
                if description is not None:
                    record.description = description
                if is_active is not None:
                    record.is_active = is_active
                record.updated_at = datetime.now(timezone.utc)
                await db.commit()

        logger.info(
            "Webhook secret updated: endpoint=%s active=%s", endpoint, record.is_active,
        )
        await self._notify(endpoint)
        return record

    async def deactivate(self, endpoint: str) -> WebhookSecret:
        return await self.update_metadata(endpoint, is_active=False)

    async def activate(self, endpoint: str) -> WebhookSecret:
        return await self.update_metadata(endpoint, is_active=True)

    async def delete(self, endpoint: str) -> WebhookSecret:
        """Logical delete - the row stays for audit, out of the active set."""
        endpoint = WebhookEndpoint.parse(endpoint).value
        with storage_errors("Secret vault", "delete"):
            async with self._session_factory() as db:
                record = await self._get_live(db, endpoint)
                now = datetime.now(timezone.utc)
                record.is_active = False
                record.deleted_at = now
                record.updated_at = now
                await db.commit()

        logger.info("Webhook secret deleted: endpoint=%s", endpoint)
        await self._notify(endpoint)
        return record

    async def touch(self, endpoint: str) -> None:
        """Record a use of the secret. Best effort: failures are logged, never raised."""
        try:
            async with self._session_factory() as db:
                await db.execute(
                    update(WebhookSecret)
                    .where(
                        WebhookSecret.endpoint == endpoint,
                        WebhookSecret.deleted_at.is_(None),
                    )
                    .values(
                        usage_count=WebhookSecret.usage_count + 1,
                        last_used_at=datetime.now(timezone.utc),
                    )
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
        except Exception as e:
            logger.warning("Secret usage update failed for %s: %s", endpoint, str(e))

    # === READS ===

    async def get(self, endpoint: str, include_inactive: bool = False) -> Optional[WebhookSecret]:
        """Active record for the endpoint (or any non-deleted one with include_inactive)."""
        query = select(WebhookSecret).where(
            WebhookSecret.endpoint == endpoint,
            WebhookSecret.deleted_at.is_(None),
        )
        if not include_inactive:
            query = query.where(WebhookSecret.is_active.is_(True))
        with storage_errors("Secret vault", "get"):
            async with self._session_factory() as db:
                result = await db.execute(query)
                return result.scalar_one_or_none()

    async def list_records(self, include_deleted: bool = False) -> list[WebhookSecret]:
        query = select(WebhookSecret).order_by(WebhookSecret.endpoint)
        if not include_deleted:
            query = query.where(WebhookSecret.deleted_at.is_(None))
        with storage_errors("Secret vault", "list"):
            async with self._session_factory() as db:
                result = await db.execute(query)
                return list(result.scalars().all())

    async def load_active(self) -> list[WebhookSecret]:
        """All active secrets in one query (cache warm-up)."""
        with storage_errors("Secret vault", "load_active"):
            async with self._session_factory() as db:
                result = await db.execute(
                    select(WebhookSecret).where(
                        WebhookSecret.is_active.is_(True),
                        WebhookSecret.deleted_at.is_(None),
                    )
                )
                return list(result.scalars().all())

    def decrypt(self, record: WebhookSecret) -> DecryptedSecret:
        return DecryptedSecret(
            endpoint=record.endpoint,
            key=self._cipher.decrypt(record.encrypted_key),
            algorithm=record.algorithm,
            version=record.key_version,
        )

    async def _get_live(self, db, endpoint: str) -> WebhookSecret:
        result = await db.execute(
            select(WebhookSecret).where(
                WebhookSecret.endpoint == endpoint,
                WebhookSecret.deleted_at.is_(None),
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise SecretNotFoundError(endpoint)
        return record
