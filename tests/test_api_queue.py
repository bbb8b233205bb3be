"""
Tests for hookgate/api/queue.py - queue stats and pause/resume/clean.
"""
import json

import pytest

from hookgate.services.session_auth import CAP_MANAGE_SECRETS, CAP_WEBHOOKS_ADMIN


@pytest.fixture
async def queue_admin(build_client):
    client, services = await build_client(queue_process_inline=False)
    token = services.session_auth.issue_token("ops-1", permissions=[CAP_WEBHOOKS_ADMIN])
    return client, services, {"Authorization": f"Bearer {token}"}


async def _enqueue(services, event_id: str = "evt_1"):
    body = json.dumps({"id": event_id, "eventType": "PAYMENT_PENDING"}).encode()
    return await services.queue.enqueue("netbanx", body, {})


class TestQueueStatus:
    async def test_stats(self, queue_admin):
        client, services, headers = queue_admin
        await _enqueue(services)
        resp = await client.get("/api/webhooks/queue", headers=headers)

        assert resp.status_code == 200
        data = resp.json()
        assert data["queue"]["waiting"] == 1
        assert data["workers"]["concurrency"] == 2
        assert data["workers"]["running"] is False

    async def test_requires_capability(self, queue_admin):
        client, services, _ = queue_admin
        token = services.session_auth.issue_token("u", permissions=[CAP_MANAGE_SECRETS])
        resp = await client.get("/api/webhooks/queue", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 403


class TestQueueActions:
    async def test_pause_and_resume(self, queue_admin):
        client, services, headers = queue_admin
        await _enqueue(services)

        resp = await client.post("/api/webhooks/queue", json={"action": "pause"}, headers=headers)
        assert resp.json()["queue"]["paused"] is True
        assert await services.workers.drain() == []

        resp = await client.post("/api/webhooks/queue", json={"action": "resume"}, headers=headers)
        assert resp.json()["queue"]["paused"] is False
        assert len(await services.workers.drain()) == 1

    async def test_clean(self, queue_admin):
        client, services, headers = queue_admin
        await _enqueue(services, "evt_1")
        await _enqueue(services, "evt_2")
        await services.workers.drain()

        resp = await client.post(
            "/api/webhooks/queue", json={"action": "clean", "older_than_hours": 0}, headers=headers,
        )
        assert resp.json()["removed"] == 2
        assert resp.json()["queue"]["completed"] == 0

    async def test_clean_default_retention_keeps_recent(self, queue_admin):
        client, services, headers = queue_admin
        await _enqueue(services)
        await services.workers.drain()
        resp = await client.post("/api/webhooks/queue", json={"action": "clean"}, headers=headers)
        assert resp.json()["removed"] == 0

    async def test_unknown_action_422(self, queue_admin):
        client, _, headers = queue_admin
        resp = await client.post("/api/webhooks/queue", json={"action": "explode"}, headers=headers)
        assert resp.status_code == 422
