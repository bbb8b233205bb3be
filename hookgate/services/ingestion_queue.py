"""
Ingestion queue - durable, database-backed job queue for accepted webhooks.

enqueue() returns only after the job row is committed, so an acknowledged
webhook survives a crash. Workers claim jobs with a lease; a job leaves the
claimable set only once its terminal outcome is committed. A Redis LPUSH on
enqueue wakes idle workers (BRPOP), with a timed poll as the safety net.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from hookgate.errors import storage_errors
from hookgate.models.webhook_job import (
    CLAIMABLE_STATUSES,
    JOB_ACTIVE,
    JOB_COMPLETED,
    JOB_DELAYED,
    JOB_FAILED,
    JOB_WAITING,
    TERMINAL_STATUSES,
    WebhookJob,
)

logger = logging.getLogger(__name__)

QUEUE_NOTIFY_KEY = "hookgate:webhook_jobs:notify"


@dataclass(frozen=True)
class QueueStats:
    waiting: int = 0
    active: int = 0
    delayed: int = 0
    completed: int = 0
    failed: int = 0
    paused: bool = False


def _as_uuid(value) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


class IngestionQueue:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        max_attempts: int = 5,
        backoff_base_ms: int = 500,
        backoff_max_ms: int = 60000,
        lease_seconds: int = 30,
        redis_getter=None,
    ):
        self._session_factory = session_factory
        self.max_attempts = max_attempts
        self.backoff_base_ms = backoff_base_ms
        self.backoff_max_ms = backoff_max_ms
        self.lease_seconds = lease_seconds
        self._redis_getter = redis_getter
        self._paused = False

    # === PRODUCER ===

    async def enqueue(self, endpoint: str, raw_body: bytes, metadata: Optional[dict] = None) -> uuid.UUID:
        """Durably store the raw webhook. Returns the job id once committed."""
        meta = dict(metadata or {})
        job = WebhookJob(
            id=uuid.uuid4(),
            endpoint=endpoint,
            webhook_id=_as_uuid(meta.get("webhook_id")) or uuid.uuid4(),
            raw_body=raw_body,
            request_meta={
                "event_type_header": meta.get("event_type_header"),
                "user_agent": meta.get("user_agent"),
                "signature_header": meta.get("signature_header"),
                "verification_reason": meta.get("verification_reason"),
            },
            client_ip=meta.get("client_ip"),
            signature_verified=bool(meta.get("signature_verified", False)),
            status=JOB_WAITING,
            attempts=0,
            max_attempts=self.max_attempts,
            available_at=datetime.now(timezone.utc),
            correlation_id=meta.get("correlation_id"),
        )
        with storage_errors("Ingestion queue", "enqueue"):
            async with self._session_factory() as db:
                db.add(job)
                await db.commit()

        logger.info(
            "Webhook queued: endpoint=%s job=%s webhook=%s",
            endpoint, str(job.id)[:8], str(job.webhook_id)[:8],
            extra={"endpoint": endpoint, "job_id": str(job.id), "webhook_id": str(job.webhook_id)},
        )
        await self._notify()
        return job.id

    async def _notify(self) -> None:
        if self._redis_getter is None:
            return
        try:
            redis = await self._redis_getter()
            await redis.lpush(QUEUE_NOTIFY_KEY, "1")
        except Exception as e:
            logger.debug("Queue notify failed (workers will poll): %s", str(e))

    # === CONSUMER ===

    async def claim(self, worker_id: str, job_id=None) -> Optional[WebhookJob]:
        """
        Lease the next due job (or a specific one) to this worker.
        Returns None when nothing is claimable or another worker won the race.
        """
        if self._paused:
            return None

        now = datetime.now(timezone.utc)
        query = (
            select(WebhookJob.id)
            .where(
                WebhookJob.status.in_(CLAIMABLE_STATUSES),
                WebhookJob.available_at <= now,
            )
            .order_by(WebhookJob.available_at, WebhookJob.created_at)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        if job_id is not None:
            query = query.where(WebhookJob.id == _as_uuid(job_id))

        with storage_errors("Ingestion queue", "claim"):
            async with self._session_factory() as db:
                candidate = (await db.execute(query)).scalar_one_or_none()
                if candidate is None:
                    return None

                result = await db.execute(
                    update(WebhookJob)
                    .where(
                        WebhookJob.id == candidate,
                        WebhookJob.status.in_(CLAIMABLE_STATUSES),
                    )
                    .values(
                        status=JOB_ACTIVE,
                        attempts=WebhookJob.attempts + 1,
                        lease_expires_at=now + timedelta(seconds=self.lease_seconds),
                        locked_by=worker_id,
                        started_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    await db.rollback()
                    return None

                job = (
                    await db.execute(select(WebhookJob).where(WebhookJob.id == candidate))
                ).scalar_one()
                await db.commit()
                return job

    async def _finish(self, job: WebhookJob, values: dict, operation: str) -> bool:
        """Apply a transition only while this worker still holds the lease."""
        with storage_errors("Ingestion queue", operation):
            async with self._session_factory() as db:
                result = await db.execute(
                    update(WebhookJob)
                    .where(
                        WebhookJob.id == job.id,
                        WebhookJob.status == JOB_ACTIVE,
                        WebhookJob.locked_by == job.locked_by,
                    )
                    .values(lease_expires_at=None, **values)
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
        if result.rowcount != 1:
            logger.warning(
                "Queue %s skipped: job %s no longer leased by %s",
                operation, str(job.id)[:8], job.locked_by,
                extra={"job_id": str(job.id)},
            )
            return False
        return True

    async def complete(self, job: WebhookJob, result: Optional[dict] = None) -> bool:
        return await self._finish(
            job,
            {"status": JOB_COMPLETED, "completed_at": datetime.now(timezone.utc), "result": result},
            "complete",
        )

    async def schedule_retry(self, job: WebhookJob, error: str, delay_ms: int) -> bool:
        available_at = datetime.now(timezone.utc) + timedelta(milliseconds=delay_ms)
        return await self._finish(
            job,
            {"status": JOB_DELAYED, "available_at": available_at, "last_error": error, "locked_by": None},
            "schedule_retry",
        )

    async def fail(self, job: WebhookJob, error: str, result: Optional[dict] = None) -> bool:
        return await self._finish(
            job,
            {
                "status": JOB_FAILED,
                "completed_at": datetime.now(timezone.utc),
                "last_error": error,
                "result": result,
            },
            "fail",
        )

    def backoff_ms(self, attempt: int) -> int:
        """Delay before retry number `attempt` (1-based): base * 2^(attempt-1), capped."""
        return min(self.backoff_base_ms * (2 ** max(attempt - 1, 0)), self.backoff_max_ms)

    async def reclaim_expired_leases(self) -> int:
        """Return jobs whose worker vanished mid-lease to the waiting set."""
        now = datetime.now(timezone.utc)
        with storage_errors("Ingestion queue", "reclaim"):
            async with self._session_factory() as db:
                result = await db.execute(
                    update(WebhookJob)
                    .where(
                        WebhookJob.status == JOB_ACTIVE,
                        WebhookJob.lease_expires_at < now,
                    )
                    .values(status=JOB_WAITING, lease_expires_at=None, locked_by=None)
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
        if result.rowcount:
            logger.warning("Reclaimed %d jobs with expired leases", result.rowcount)
        return result.rowcount or 0

    async def wait_for_work(self, timeout: float) -> None:
        """Block until an enqueue notification arrives or the timeout passes."""
        if self._redis_getter is not None:
            try:
                redis = await self._redis_getter()
                result = await redis.brpop(QUEUE_NOTIFY_KEY, timeout=max(1, int(timeout)))
                if result:
                    # Drain any additional notifications to avoid stacking
                    while await redis.rpop(QUEUE_NOTIFY_KEY):
                        pass
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug("Redis BRPOP unavailable, falling back to sleep: %s", str(e))
        await asyncio.sleep(timeout)

    # === ADMIN ===

    async def get(self, job_id) -> Optional[WebhookJob]:
        with storage_errors("Ingestion queue", "get"):
            async with self._session_factory() as db:
                return await db.get(WebhookJob, _as_uuid(job_id))

    async def stats(self) -> QueueStats:
        with storage_errors("Ingestion queue", "stats"):
            async with self._session_factory() as db:
                rows = (
                    await db.execute(
                        select(WebhookJob.status, func.count(WebhookJob.id)).group_by(WebhookJob.status)
                    )
                ).all()
        counts = {status: n for status, n in rows}
        return QueueStats(
            waiting=counts.get(JOB_WAITING, 0),
            active=counts.get(JOB_ACTIVE, 0),
            delayed=counts.get(JOB_DELAYED, 0),
            completed=counts.get(JOB_COMPLETED, 0),
            failed=counts.get(JOB_FAILED, 0),
            paused=self._paused,
        )

    @property
    def is_paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        self._paused = True
        logger.info("Ingestion queue paused - workers will not claim new jobs")

    def resume(self) -> None:
        self._paused = False
        logger.info("Ingestion queue resumed")

    async def clean(self, older_than_seconds: int) -> int:
        """Delete completed/failed jobs finished before the retention cutoff."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
        with storage_errors("Ingestion queue", "clean"):
            async with self._session_factory() as db:
                result = await db.execute(
                    delete(WebhookJob)
                    .where(
                        WebhookJob.status.in_(TERMINAL_STATUSES),
                        WebhookJob.completed_at < cutoff,
                    )
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
        logger.info("Queue clean removed %d finished jobs", result.rowcount or 0)
        return result.rowcount or 0
