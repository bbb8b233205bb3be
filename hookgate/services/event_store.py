"""
Event store - durable record of processed webhooks, keyed by
(endpoint, idempotency_key).

A success record is immutable: redeliveries are acknowledged as already
processed. A failed record is updated in place by later attempts and may
still become a success.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookgate.errors import TransientStorageError, storage_errors
from hookgate.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"


@dataclass
class EventDraft:
    endpoint: str
    idempotency_key: str
    event_type: str
    payload: Optional[dict] = None
    payload_kind: str = "unknown"
    known_event_type: bool = False
    key_source: str = "source"
    payload_hash: Optional[str] = None
    event_id: uuid.UUID = field(default_factory=uuid.uuid4)
    job_id: Optional[uuid.UUID] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    correlation_id: Optional[str] = None
    received_at: Optional[datetime] = None


@dataclass(frozen=True)
class SaveResult:
    event_id: uuid.UUID
    created: bool
    already_processed: bool = False


class EventStore:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def _find(
        self, db: AsyncSession, endpoint: Optional[str], idempotency_key: str,
    ) -> Optional[WebhookEvent]:
        query = select(WebhookEvent).where(WebhookEvent.idempotency_key == idempotency_key)
        if endpoint is not None:
            query = query.where(WebhookEvent.endpoint == endpoint)
        result = await db.execute(query.order_by(WebhookEvent.received_at).limit(1))
        return result.scalar_one_or_none()

    async def get(self, event_id) -> Optional[WebhookEvent]:
        if isinstance(event_id, str):
            event_id = uuid.UUID(event_id)
        with storage_errors("Event store", "get"):
            async with self._session_factory() as db:
                return await db.get(WebhookEvent, event_id)

    async def get_by_idempotency_key(
        self, idempotency_key: str, endpoint: Optional[str] = None,
    ) -> Optional[WebhookEvent]:
        with storage_errors("Event store", "lookup"):
            async with self._session_factory() as db:
                return await self._find(db, endpoint, idempotency_key)

    async def save_success(self, draft: EventDraft, attempts: int = 1) -> SaveResult:
        """Insert the success record, or promote an earlier failed record in place."""
        with storage_errors("Event store", "save_success"):
            try:
                async with self._session_factory() as db:
                    existing = await self._find(db, draft.endpoint, draft.idempotency_key)
                    if existing is not None and existing.outcome == OUTCOME_SUCCESS:
                        return SaveResult(existing.id, created=False, already_processed=True)

                    now = datetime.now(timezone.utc)
                    if existing is not None:
                        self._apply(existing, draft)
                        existing.outcome = OUTCOME_SUCCESS
                        existing.error_message = None
                        existing.attempts = attempts
                        existing.processed_at = now
                        result = SaveResult(existing.id, created=False)
                    else:
                        event = self._build(draft, OUTCOME_SUCCESS, attempts, now)
                        db.add(event)
                        result = SaveResult(event.id, created=True)
                    await db.commit()
                    return result
            except IntegrityError:
                return await self._resolve_conflict(draft, "save_success")

    async def save_failure(self, draft: EventDraft, error: str, attempts: int) -> SaveResult:
        """Record a terminal failure. Never overwrites a success."""
        with storage_errors("Event store", "save_failure"):
            try:
                async with self._session_factory() as db:
                    existing = await self._find(db, draft.endpoint, draft.idempotency_key)
                    if existing is not None and existing.outcome == OUTCOME_SUCCESS:
                        return SaveResult(existing.id, created=False, already_processed=True)

                    now = datetime.now(timezone.utc)
                    if existing is not None:
                        existing.error_message = error
                        existing.attempts = attempts
                        existing.processed_at = now
                        result = SaveResult(existing.id, created=False)
                    else:
                        event = self._build(draft, OUTCOME_FAILED, attempts, now)
                        event.error_message = error
                        db.add(event)
                        result = SaveResult(event.id, created=True)
                    await db.commit()
                    return result
            except IntegrityError:
                return await self._resolve_conflict(draft, "save_failure")

    async def _resolve_conflict(self, draft: EventDraft, operation: str) -> SaveResult:
        """Another writer inserted the same key first - re-read its outcome."""
        existing = await self.get_by_idempotency_key(draft.idempotency_key, draft.endpoint)
        if existing is not None and existing.outcome == OUTCOME_SUCCESS:
            logger.info(
                "Concurrent %s resolved as already processed: %s",
                operation, draft.idempotency_key,
                extra={"endpoint": draft.endpoint, "idempotency_key": draft.idempotency_key},
            )
            return SaveResult(existing.id, created=False, already_processed=True)
        raise TransientStorageError(
            f"Concurrent write conflict for {draft.endpoint}:{draft.idempotency_key}"
        )

    @staticmethod
    def _apply(event: WebhookEvent, draft: EventDraft) -> None:
        event.event_type = draft.event_type
        event.payload = draft.payload
        event.payload_kind = draft.payload_kind
        event.known_event_type = draft.known_event_type
        event.key_source = draft.key_source
        event.payload_hash = draft.payload_hash
        event.job_id = draft.job_id
        event.correlation_id = draft.correlation_id or event.correlation_id

    @staticmethod
    def _build(draft: EventDraft, outcome: str, attempts: int, now: datetime) -> WebhookEvent:
        return WebhookEvent(
            id=draft.event_id,
            received_at=draft.received_at or now,
            processed_at=now,
            endpoint=draft.endpoint,
            event_type=draft.event_type,
            payload=draft.payload,
            payload_kind=draft.payload_kind,
            known_event_type=draft.known_event_type,
            outcome=outcome,
            idempotency_key=draft.idempotency_key,
            key_source=draft.key_source,
            payload_hash=draft.payload_hash,
            attempts=attempts,
            job_id=draft.job_id,
            ip_address=draft.ip_address,
            user_agent=draft.user_agent,
            correlation_id=draft.correlation_id,
        )

    # === QUERIES ===

    async def list_events(
        self,
        endpoint: Optional[str] = None,
        outcome: Optional[str] = None,
        limit: int = 50,
    ) -> list[WebhookEvent]:
        query = select(WebhookEvent)
        if endpoint is not None:
            query = query.where(WebhookEvent.endpoint == endpoint)
        if outcome is not None:
            query = query.where(WebhookEvent.outcome == outcome)
        query = query.order_by(WebhookEvent.received_at.desc()).limit(limit)
        with storage_errors("Event store", "list"):
            async with self._session_factory() as db:
                result = await db.execute(query)
                return list(result.scalars().all())

    async def counts(self, endpoint: Optional[str] = None) -> dict:
        """Totals per outcome, plus how many carried an unrecognized event type."""
        query = select(
            WebhookEvent.outcome,
            WebhookEvent.known_event_type,
            func.count(WebhookEvent.id),
        ).group_by(WebhookEvent.outcome, WebhookEvent.known_event_type)
        if endpoint is not None:
            query = query.where(WebhookEvent.endpoint == endpoint)
        with storage_errors("Event store", "counts"):
            async with self._session_factory() as db:
                rows = (await db.execute(query)).all()

        counts = {"total": 0, OUTCOME_SUCCESS: 0, OUTCOME_FAILED: 0, "unknown_event_types": 0}
        for outcome, known, n in rows:
            counts["total"] += n
            counts[outcome] = counts.get(outcome, 0) + n
            if not known:
                counts["unknown_event_types"] += n
        return counts
