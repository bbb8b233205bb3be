"""
Tests for hookgate/services/ingestion_queue.py - durable leased job queue.
"""
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from hookgate.errors import TransientStorageError
from hookgate.models.webhook_job import JOB_ACTIVE, JOB_COMPLETED, JOB_DELAYED, JOB_FAILED, JOB_WAITING
from hookgate.services.ingestion_queue import QUEUE_NOTIFY_KEY, IngestionQueue

BODY = b'{"id":"evt_1","eventType":"PAYMENT_COMPLETED"}'


async def _enqueue(queue, endpoint: str = "netbanx", body: bytes = BODY, **meta):
    meta.setdefault("client_ip", "10.0.0.1")
    return await queue.enqueue(endpoint, body, meta)


class TestEnqueue:
    async def test_job_durable_before_return(self, queue):
        webhook_id = uuid.uuid4()
        job_id = await _enqueue(queue, webhook_id=webhook_id, correlation_id="cid-1", event_type_header="PAYMENT_FAILED")
        job = await queue.get(job_id)

        assert job.status == JOB_WAITING
        assert job.raw_body == BODY
        assert job.webhook_id == webhook_id
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.correlation_id == "cid-1"
        assert job.meta["event_type_header"] == "PAYMENT_FAILED"

    async def test_enqueue_notifies_workers(self, session_factory):
        redis = MagicMock()
        redis.lpush = AsyncMock()
        queue = IngestionQueue(session_factory, redis_getter=AsyncMock(return_value=redis))
        await _enqueue(queue)
        redis.lpush.assert_awaited_once_with(QUEUE_NOTIFY_KEY, "1")

    async def test_notify_failure_is_harmless(self, session_factory):
        queue = IngestionQueue(session_factory, redis_getter=AsyncMock(side_effect=ConnectionError("down")))
        job_id = await _enqueue(queue)
        assert (await queue.get(job_id)) is not None

    async def test_storage_failure_is_transient(self):
        def broken_factory():
            raise OSError("database unreachable")

        queue = IngestionQueue(broken_factory)
        with pytest.raises(TransientStorageError):
            await _enqueue(queue)


class TestClaim:
    async def test_claim_leases_job(self, queue):
        job_id = await _enqueue(queue)
        job = await queue.claim("worker-1")

        assert job.id == job_id
        assert job.status == JOB_ACTIVE
        assert job.attempts == 1
        assert job.locked_by == "worker-1"
        assert job.lease_expires_at is not None

    async def test_claimed_job_not_claimed_twice(self, queue):
        await _enqueue(queue)
        assert await queue.claim("worker-1") is not None
        assert await queue.claim("worker-2") is None

    async def test_claim_empty_queue(self, queue):
        assert await queue.claim("worker-1") is None

    async def test_claim_specific_job(self, queue):
        await _enqueue(queue)
        second = await _enqueue(queue)
        job = await queue.claim("inline", job_id=second)
        assert job.id == second

    async def test_claim_fifo(self, queue):
        first = await _enqueue(queue)
        await _enqueue(queue)
        assert (await queue.claim("worker-1")).id == first

    async def test_paused_queue_claims_nothing(self, queue):
        await _enqueue(queue)
        queue.pause()
        assert queue.is_paused is True
        assert await queue.claim("worker-1") is None
        queue.resume()
        assert await queue.claim("worker-1") is not None


class TestTransitions:
    async def test_complete(self, queue):
        await _enqueue(queue)
        job = await queue.claim("worker-1")
        assert await queue.complete(job, {"status": "completed"}) is True

        stored = await queue.get(job.id)
        assert stored.status == JOB_COMPLETED
        assert stored.result == {"status": "completed"}
        assert stored.completed_at is not None
        assert await queue.claim("worker-1") is None

    async def test_retry_makes_job_claimable_again(self, queue):
        await _enqueue(queue)
        job = await queue.claim("worker-1")
        await queue.schedule_retry(job, "db blip", delay_ms=0)

        stored = await queue.get(job.id)
        assert stored.status == JOB_DELAYED
        assert stored.last_error == "db blip"

        again = await queue.claim("worker-2")
        assert again.id == job.id
        assert again.attempts == 2

    async def test_delayed_job_not_due(self, queue):
        await _enqueue(queue)
        job = await queue.claim("worker-1")
        await queue.schedule_retry(job, "db blip", delay_ms=60000)
        assert await queue.claim("worker-2") is None

    async def test_fail(self, queue):
        await _enqueue(queue)
        job = await queue.claim("worker-1")
        await queue.fail(job, "permanent", {"status": "failed"})
        stored = await queue.get(job.id)
        assert stored.status == JOB_FAILED
        assert stored.last_error == "permanent"

    async def test_transition_requires_lease(self, queue):
        """A worker whose lease was taken over cannot finish the job."""
        await _enqueue(queue)
        job = await queue.claim("worker-1")
        job.locked_by = "someone-else"
        assert await queue.complete(job) is False
        assert (await queue.get(job.id)).status == JOB_ACTIVE


class TestBackoff:
    def test_exponential_and_capped(self, queue):
        delays = [queue.backoff_ms(n) for n in range(1, 6)]
        assert delays == [100, 200, 400, 800, 1000]

    def test_strictly_increasing_below_cap(self, session_factory):
        queue = IngestionQueue(session_factory, backoff_base_ms=500, backoff_max_ms=60000)
        delays = [queue.backoff_ms(n) for n in range(1, 5)]
        assert delays == sorted(set(delays))


class TestMaintenance:
    async def test_expired_lease_reclaimed(self, session_factory):
        queue = IngestionQueue(session_factory, lease_seconds=0)
        await _enqueue(queue)
        job = await queue.claim("worker-dead")

        assert await queue.reclaim_expired_leases() == 1
        stored = await queue.get(job.id)
        assert stored.status == JOB_WAITING
        assert stored.locked_by is None
        assert (await queue.claim("worker-2")).attempts == 2

    async def test_live_lease_not_reclaimed(self, queue):
        await _enqueue(queue)
        await queue.claim("worker-1")
        assert await queue.reclaim_expired_leases() == 0

    async def test_stats(self, queue):
        await _enqueue(queue)
        await _enqueue(queue)
        job = await queue.claim("worker-1")
        await queue.complete(job)

        stats = await queue.stats()
        assert stats.waiting == 1
        assert stats.completed == 1
        assert stats.paused is False

    async def test_clean_removes_finished_only(self, queue):
        await _enqueue(queue)
        await _enqueue(queue)
        job = await queue.claim("worker-1")
        await queue.complete(job)

        assert await queue.clean(older_than_seconds=0) == 1
        stats = await queue.stats()
        assert stats.completed == 0
        assert stats.waiting == 1

    async def test_clean_respects_retention(self, queue):
        await _enqueue(queue)
        job = await queue.claim("worker-1")
        await queue.complete(job)
        assert await queue.clean(older_than_seconds=3600) == 0

    async def test_wait_for_work_without_redis_sleeps(self, queue):
        await queue.wait_for_work(0.01)
