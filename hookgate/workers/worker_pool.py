"""
Worker pool - N asyncio workers draining the ingestion queue.

Each worker loops claim -> process -> apply outcome. A job failure never ends
the loop. Idle workers wait on the queue's Redis wake-up (BRPOP) with a timed
poll as fallback. A lease reaper returns jobs abandoned by dead workers, and a
heartbeat is written to Redis for health checks.
"""
import asyncio
import logging
import os
import socket
from collections import Counter
from datetime import datetime, timezone
from typing import Optional

from hookgate.models.webhook_job import WebhookJob
from hookgate.services.ingestion_queue import IngestionQueue
from hookgate.utils.logging import correlation_scope
from hookgate.utils.scheduler import PeriodicTask
from hookgate.workers.event_processor import EventProcessor, OutcomeStatus, ProcessingOutcome

logger = logging.getLogger(__name__)

HEARTBEAT_KEY = "hookgate:worker_health:webhook_workers"
HEARTBEAT_INTERVAL_SECONDS = 30


class WorkerPool:
    def __init__(
        self,
        queue: IngestionQueue,
        processor: EventProcessor,
        concurrency: int = 5,
        poll_interval_seconds: float = 5.0,
        reap_interval_seconds: Optional[float] = None,
        redis_getter=None,
    ):
        self._queue = queue
        self._processor = processor
        self.concurrency = concurrency
        self.poll_interval_seconds = poll_interval_seconds
        self._redis_getter = redis_getter
        self._tasks: list[asyncio.Task] = []
        self._worker_prefix = f"{socket.gethostname()}-{os.getpid()}"
        self.outcomes: Counter = Counter()
        self._reaper = PeriodicTask(
            "lease_reaper",
            queue.reclaim_expired_leases,
            reap_interval_seconds or max(queue.lease_seconds / 2, 1),
        )
        self._heartbeat = PeriodicTask(
            "worker_heartbeat", self._write_heartbeat, HEARTBEAT_INTERVAL_SECONDS, run_immediately=True,
        )

    @property
    def is_running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def start(self) -> None:
        if self.is_running:
            return
        for i in range(self.concurrency):
            worker_id = f"{self._worker_prefix}-{i}"
            self._tasks.append(asyncio.create_task(self._run_worker(worker_id), name=worker_id))
        self._reaper.start()
        self._heartbeat.start()
        logger.info("Worker pool started (%d workers)", self.concurrency)

    async def stop(self, timeout: float = 10.0) -> None:
        """Cancel workers and wait for in-flight jobs to unwind."""
        await self._reaper.stop()
        await self._heartbeat.stop()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Worker pool stopped (%d workers)", len(tasks))

    async def _run_worker(self, worker_id: str) -> None:
        logger.debug("Worker %s started", worker_id)
        while True:
            try:
                outcome = await self.run_next(worker_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Worker cycle error: %s", str(e), extra={"worker_id": worker_id})
                outcome = None

            if outcome is None:
                await self._queue.wait_for_work(self.poll_interval_seconds)

    async def run_next(self, worker_id: str) -> Optional[ProcessingOutcome]:
        """Claim and process one due job. None when nothing was claimable."""
        job = await self._queue.claim(worker_id)
        if job is None:
            return None
        return await self._handle(job)

    async def run_job(self, job_id, worker_id: str = "inline") -> Optional[ProcessingOutcome]:
        """Process one specific job in the caller's task (inline mode)."""
        job = await self._queue.claim(worker_id, job_id=job_id)
        if job is None:
            return None
        return await self._handle(job)

    async def drain(self, worker_id: str = "drain", max_jobs: int = 1000) -> list[ProcessingOutcome]:
        """Process due jobs until none are claimable."""
        outcomes = []
        for _ in range(max_jobs):
            outcome = await self.run_next(worker_id)
            if outcome is None:
                break
            outcomes.append(outcome)
        return outcomes

    async def _handle(self, job: WebhookJob) -> ProcessingOutcome:
        with correlation_scope(job.correlation_id):
            outcome = await self._processor.process(job)
            await self._apply(job, outcome)
        self.outcomes[outcome.status] += 1
        return outcome

    async def _apply(self, job: WebhookJob, outcome: ProcessingOutcome) -> None:
        """Commit the job's next state. On storage failure the lease expires and the job is redelivered."""
        try:
            if outcome.status == OutcomeStatus.RETRY:
                await self._queue.schedule_retry(job, outcome.error or "", outcome.retry_delay_ms or 0)
            elif outcome.status == OutcomeStatus.FAILED:
                await self._queue.fail(job, outcome.error or "", outcome.as_result())
            else:
                await self._queue.complete(job, outcome.as_result())
        except Exception as e:
            logger.error(
                "Could not record outcome %s for job %s: %s",
                outcome.status.value, str(job.id)[:8], str(e),
                extra={"job_id": str(job.id), "endpoint": job.endpoint},
            )

    async def _write_heartbeat(self) -> None:
        if self._redis_getter is None:
            return
        try:
            redis = await self._redis_getter()
            await redis.set(HEARTBEAT_KEY, datetime.now(timezone.utc).isoformat(), ex=120)
        except Exception as e:
            logger.debug("Heartbeat write failed: %s", str(e))
