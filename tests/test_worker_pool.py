"""
Tests for hookgate/workers/worker_pool.py - claim/process/apply loop.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from hookgate.models.webhook_job import JOB_COMPLETED, JOB_DELAYED, JOB_FAILED, JOB_WAITING
from hookgate.utils.logging import get_correlation_id
from hookgate.workers.event_processor import EventProcessor, OutcomeStatus, ProcessingOutcome
from hookgate.workers.worker_pool import HEARTBEAT_KEY, WorkerPool


def _body(event_id: str) -> bytes:
    return json.dumps({"id": event_id, "eventType": "PAYMENT_PENDING"}).encode()


@pytest.fixture
def pool(queue, event_store, vault, mock_alert):
    processor = EventProcessor(event_store, vault, queue.backoff_ms, alert=mock_alert)
    return WorkerPool(queue, processor, concurrency=2, poll_interval_seconds=0.05)


class TestRunNext:
    async def test_completed_job_marked_complete(self, pool, queue):
        job_id = await queue.enqueue("netbanx", _body("evt_1"), {})
        outcome = await pool.run_next("worker-1")

        assert outcome.status == OutcomeStatus.COMPLETED
        assert (await queue.get(job_id)).status == JOB_COMPLETED
        assert pool.outcomes[OutcomeStatus.COMPLETED] == 1

    async def test_nothing_to_do(self, pool):
        assert await pool.run_next("worker-1") is None

    async def test_permanent_failure_marks_job_failed(self, pool, queue):
        job_id = await queue.enqueue("netbanx", b"not json", {})
        outcome = await pool.run_next("worker-1")
        assert outcome.status == OutcomeStatus.FAILED
        stored = await queue.get(job_id)
        assert stored.status == JOB_FAILED
        assert stored.result["status"] == "failed"

    async def test_retry_outcome_delays_job(self, queue):
        processor = MagicMock()
        processor.process = AsyncMock(
            return_value=ProcessingOutcome(OutcomeStatus.RETRY, error="blip", retry_delay_ms=60000, attempts=1)
        )
        pool = WorkerPool(queue, processor, concurrency=1)
        job_id = await queue.enqueue("netbanx", _body("evt_1"), {})

        await pool.run_next("worker-1")
        stored = await queue.get(job_id)
        assert stored.status == JOB_DELAYED
        assert stored.last_error == "blip"

    async def test_correlation_id_restored_while_processing(self, queue):
        seen = []

        async def _process(job):
            seen.append(get_correlation_id())
            return ProcessingOutcome(OutcomeStatus.COMPLETED)

        processor = MagicMock()
        processor.process = AsyncMock(side_effect=_process)
        pool = WorkerPool(queue, processor, concurrency=1)
        await queue.enqueue("netbanx", _body("evt_1"), {"correlation_id": "cid-from-request"})

        await pool.run_next("worker-1")
        assert seen == ["cid-from-request"]
        assert get_correlation_id() != "cid-from-request"

    async def test_outcome_storage_failure_contained(self, pool, queue):
        """If the final transition cannot be written the job stays leased for the reaper."""
        await queue.enqueue("netbanx", _body("evt_1"), {})
        queue.complete = AsyncMock(side_effect=RuntimeError("db down"))
        outcome = await pool.run_next("worker-1")
        assert outcome.status == OutcomeStatus.COMPLETED


class TestInlineAndDrain:
    async def test_run_job_processes_that_job(self, pool, queue):
        await queue.enqueue("netbanx", _body("evt_1"), {})
        second = await queue.enqueue("netbanx", _body("evt_2"), {})

        outcome = await pool.run_job(second)
        assert outcome.status == OutcomeStatus.COMPLETED
        assert (await queue.get(second)).status == JOB_COMPLETED
        assert (await queue.stats()).waiting == 1

    async def test_drain(self, pool, queue):
        for i in range(3):
            await queue.enqueue("netbanx", _body(f"evt_{i}"), {})
        await queue.enqueue("netbanx", _body("evt_0"), {})

        outcomes = await pool.drain()
        statuses = [o.status for o in outcomes]
        assert statuses.count(OutcomeStatus.COMPLETED) == 3
        assert statuses.count(OutcomeStatus.DUPLICATE) == 1


class TestLifecycle:
    async def test_background_workers_drain_queue(self, pool, queue):
        job_ids = [await queue.enqueue("netbanx", _body(f"evt_{i}"), {}) for i in range(4)]
        await pool.start()
        assert pool.is_running is True
        try:
            for _ in range(100):
                statuses = [(await queue.get(j)).status for j in job_ids]
                if all(s == JOB_COMPLETED for s in statuses):
                    break
                await asyncio.sleep(0.05)
        finally:
            await pool.stop()

        assert all(s == JOB_COMPLETED for s in statuses)
        assert pool.is_running is False

    async def test_worker_survives_processing_errors(self, queue):
        processor = MagicMock()
        processor.process = AsyncMock(side_effect=[RuntimeError("boom"), ProcessingOutcome(OutcomeStatus.COMPLETED)])
        pool = WorkerPool(queue, processor, concurrency=1, poll_interval_seconds=0.01)
        await queue.enqueue("netbanx", _body("evt_1"), {})
        await queue.enqueue("netbanx", _body("evt_2"), {})

        await pool.start()
        try:
            for _ in range(100):
                if processor.process.await_count >= 2:
                    break
                await asyncio.sleep(0.02)
        finally:
            await pool.stop()
        assert processor.process.await_count == 2

    async def test_paused_queue_leaves_jobs_waiting(self, pool, queue):
        job_id = await queue.enqueue("netbanx", _body("evt_1"), {})
        queue.pause()
        await pool.start()
        await asyncio.sleep(0.1)
        await pool.stop()
        assert (await queue.get(job_id)).status == JOB_WAITING

    async def test_stop_without_start(self, pool):
        await pool.stop()

    async def test_heartbeat_written(self, queue):
        redis = MagicMock()
        redis.set = AsyncMock()
        pool = WorkerPool(queue, MagicMock(), redis_getter=AsyncMock(return_value=redis))
        await pool._write_heartbeat()
        assert redis.set.await_args.args[0] == HEARTBEAT_KEY
