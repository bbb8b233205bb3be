"""
Tests for hookgate/services/event_store.py - idempotent event records.
"""
import uuid
from unittest.mock import AsyncMock, patch

import pytest

from hookgate.errors import TransientStorageError
from hookgate.services.event_store import OUTCOME_FAILED, OUTCOME_SUCCESS, EventDraft


def _make_draft(key: str = "evt_1", endpoint: str = "netbanx", **overrides) -> EventDraft:
    values = {
        "endpoint": endpoint,
        "idempotency_key": key,
        "event_type": "PAYMENT_COMPLETED",
        "payload": {"id": key, "eventType": "PAYMENT_COMPLETED"},
        "payload_kind": "payment",
        "known_event_type": True,
    }
    values.update(overrides)
    return EventDraft(**values)


class TestSaveSuccess:
    async def test_first_save_creates(self, event_store):
        draft = _make_draft()
        result = await event_store.save_success(draft)
        assert result.created is True
        assert result.already_processed is False
        assert result.event_id == draft.event_id

        stored = await event_store.get(result.event_id)
        assert stored.outcome == OUTCOME_SUCCESS
        assert stored.payload["id"] == "evt_1"
        assert stored.processed_at is not None

    async def test_second_save_is_already_processed(self, event_store):
        """A success record is never duplicated or overwritten."""
        first = await event_store.save_success(_make_draft())
        second = await event_store.save_success(_make_draft(event_type="PAYMENT_FAILED"))
        assert second.already_processed is True
        assert second.event_id == first.event_id
        assert (await event_store.get(first.event_id)).event_type == "PAYMENT_COMPLETED"

    async def test_same_key_on_other_endpoint_is_distinct(self, event_store):
        await event_store.save_success(_make_draft())
        result = await event_store.save_success(_make_draft(endpoint="direct-debit"))
        assert result.created is True

    async def test_failed_record_promoted_to_success(self, event_store):
        failed = await event_store.save_failure(_make_draft(), "db blip", attempts=1)
        result = await event_store.save_success(_make_draft(), attempts=2)

        assert result.event_id == failed.event_id
        assert result.created is False
        stored = await event_store.get(failed.event_id)
        assert stored.outcome == OUTCOME_SUCCESS
        assert stored.error_message is None
        assert stored.attempts == 2


class TestSaveFailure:
    async def test_failure_recorded(self, event_store):
        result = await event_store.save_failure(_make_draft(), "bad payload", attempts=3)
        stored = await event_store.get(result.event_id)
        assert stored.outcome == OUTCOME_FAILED
        assert stored.error_message == "bad payload"
        assert stored.attempts == 3

    async def test_failure_never_overwrites_success(self, event_store):
        ok = await event_store.save_success(_make_draft())
        result = await event_store.save_failure(_make_draft(), "late failure", attempts=5)
        assert result.already_processed is True
        stored = await event_store.get(ok.event_id)
        assert stored.outcome == OUTCOME_SUCCESS
        assert stored.error_message is None

    async def test_repeated_failure_updates_in_place(self, event_store):
        first = await event_store.save_failure(_make_draft(), "first", attempts=1)
        second = await event_store.save_failure(_make_draft(), "second", attempts=2)
        assert second.event_id == first.event_id
        assert (await event_store.get(first.event_id)).error_message == "second"


class TestConflicts:
    async def test_conflict_with_success_resolves_as_duplicate(self, event_store):
        existing = await event_store.save_success(_make_draft())
        winner = await event_store.get(existing.event_id)
        # Simulate losing the insert race: the pre-check sees nothing
        with patch.object(event_store, "_find", AsyncMock(return_value=None)):
            with patch.object(event_store, "get_by_idempotency_key", AsyncMock(return_value=winner)):
                result = await event_store.save_success(_make_draft())
        assert result.already_processed is True
        assert result.event_id == existing.event_id

    async def test_conflict_with_failure_is_transient(self, event_store):
        await event_store.save_failure(_make_draft(), "boom", attempts=1)
        with patch.object(event_store, "_find", AsyncMock(return_value=None)):
            with pytest.raises(TransientStorageError):
                await event_store.save_success(_make_draft())


class TestQueries:
    async def test_lookup_by_key(self, event_store):
        await event_store.save_success(_make_draft("evt_a"))
        assert (await event_store.get_by_idempotency_key("evt_a", "netbanx")) is not None
        assert (await event_store.get_by_idempotency_key("evt_a", "direct-debit")) is None
        assert (await event_store.get_by_idempotency_key("missing")) is None

    async def test_get_accepts_string_id(self, event_store):
        result = await event_store.save_success(_make_draft())
        assert (await event_store.get(str(result.event_id))) is not None
        assert (await event_store.get(uuid.uuid4())) is None

    async def test_counts(self, event_store):
        await event_store.save_success(_make_draft("a"))
        await event_store.save_success(_make_draft("b", event_type="NEW_THING", known_event_type=False))
        await event_store.save_failure(_make_draft("c"), "bad", attempts=1)
        await event_store.save_success(_make_draft("d", endpoint="direct-debit"))

        counts = await event_store.counts("netbanx")
        assert counts == {"total": 3, "success": 2, "failed": 1, "unknown_event_types": 1}
        assert (await event_store.counts())["total"] == 4

    async def test_list_events_filters(self, event_store):
        await event_store.save_success(_make_draft("a"))
        await event_store.save_failure(_make_draft("b"), "bad", attempts=1)
        failed = await event_store.list_events(endpoint="netbanx", outcome=OUTCOME_FAILED)
        assert [e.idempotency_key for e in failed] == ["b"]
