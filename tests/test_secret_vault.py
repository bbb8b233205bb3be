"""
Tests for hookgate/services/secret_vault.py - encrypted, versioned secrets.
"""
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from hookgate.errors import (
    SecretAlreadyExistsError,
    SecretNotFoundError,
    SecretValidationError,
    UnknownEndpointError,
)
from hookgate.models.webhook_secret import WebhookSecret
from tests.conftest import ROTATED_SECRET, WEBHOOK_SECRET


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------

class TestRegister:
    async def test_register_stores_ciphertext_only(self, vault, session_factory):
        """The raw secret never reaches the database."""
        record = await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET)
        assert record.key_version == 1
        assert record.is_active is True

        async with session_factory() as db:
            row = (
                await db.execute(select(WebhookSecret).where(WebhookSecret.endpoint == "netbanx"))
            ).scalar_one()
        assert WEBHOOK_SECRET not in row.encrypted_key
        assert vault.decrypt(row).key == WEBHOOK_SECRET

    async def test_register_twice_rejected(self, vault):
        await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET)
        with pytest.raises(SecretAlreadyExistsError):
            await vault.register("netbanx", "Netbanx again", ROTATED_SECRET)

    async def test_short_secret_rejected(self, vault):
        with pytest.raises(SecretValidationError):
            await vault.register("netbanx", "Netbanx", "too-short")

    async def test_unknown_endpoint_rejected(self, vault):
        with pytest.raises(UnknownEndpointError):
            await vault.register("stripe", "Stripe", WEBHOOK_SECRET)

    async def test_unsupported_algorithm_rejected(self, vault):
        with pytest.raises(SecretValidationError, match="Unsupported algorithm"):
            await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET, algorithm="md5")

    async def test_algorithm_normalized(self, vault):
        record = await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET, algorithm="SHA512")
        assert record.algorithm == "sha512"

    async def test_register_after_delete_revives_with_next_version(self, vault):
        """A logically deleted endpoint can be registered again; versions keep climbing."""
        await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET)
        await vault.delete("netbanx")
        record = await vault.register("netbanx", "Netbanx v2", ROTATED_SECRET)
        assert record.key_version == 2
        assert record.deleted_at is None
        assert record.is_active is True
        assert vault.decrypt(record).key == ROTATED_SECRET

    async def test_register_notifies_listeners(self, vault):
        listener = AsyncMock()
        vault.add_change_listener(listener)
        await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET)
        listener.assert_awaited_once_with("netbanx")


# ---------------------------------------------------------------------------
# Rotate / update / delete
# ---------------------------------------------------------------------------

class TestRotate:
    async def test_rotate_bumps_version(self, vault):
        await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET)
        record = await vault.rotate("netbanx", ROTATED_SECRET)
        assert record.key_version == 2
        assert vault.decrypt(record).key == ROTATED_SECRET

    async def test_rotate_twice(self, vault):
        await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET)
        await vault.rotate("netbanx", ROTATED_SECRET)
        record = await vault.rotate("netbanx", WEBHOOK_SECRET)
        assert record.key_version == 3

    async def test_rotate_missing_endpoint(self, vault):
        with pytest.raises(SecretNotFoundError):
            await vault.rotate("netbanx", ROTATED_SECRET)

    async def test_rotate_reactivates(self, vault):
        await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET)
        await vault.deactivate("netbanx")
        record = await vault.rotate("netbanx", ROTATED_SECRET)
        assert record.is_active is True

    async def test_rotate_validates_new_secret(self, vault):
        await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET)
        with pytest.raises(SecretValidationError):
            await vault.rotate("netbanx", "short")
        record = await vault.get("netbanx")
        assert record.key_version == 1

    async def test_rotate_notifies_listeners(self, vault):
        await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET)
        listener = AsyncMock()
        vault.add_change_listener(listener)
        await vault.rotate("netbanx", ROTATED_SECRET)
        listener.assert_awaited_once_with("netbanx")

    async def test_failing_listener_does_not_break_rotation(self, vault):
        await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET)
        vault.add_change_listener(AsyncMock(side_effect=RuntimeError("boom")))
        record = await vault.rotate("netbanx", ROTATED_SECRET)
        assert record.key_version == 2


class TestUpdateAndDelete:
    async def test_deactivate_hides_from_active_reads(self, vault):
        await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET)
        await vault.deactivate("netbanx")
        assert await vault.get("netbanx") is None
        assert (await vault.get("netbanx", include_inactive=True)).is_active is False

    async def test_activate(self, vault):
        await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET)
        await vault.deactivate("netbanx")
        await vault.activate("netbanx")
        assert await vault.get("netbanx") is not None

    async def test_update_metadata(self, vault):
        await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET)
        record = await vault.update_metadata("netbanx", name="Cards", description="Card events")
        assert record.name == "Cards"
        assert record.description == "Card events"
        assert record.key_version == 1

    async def test_update_missing(self, vault):
        with pytest.raises(SecretNotFoundError):
            await vault.update_metadata("direct-debit", name="x")

    async def test_delete_is_logical(self, vault):
        """Deleted rows stay for audit but leave the active set and the default listing."""
        await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET)
        await vault.register("direct-debit", "DD", ROTATED_SECRET)
        await vault.delete("netbanx")

        assert await vault.get("netbanx", include_inactive=True) is None
        assert [r.endpoint for r in await vault.list_records()] == ["direct-debit"]
        all_records = await vault.list_records(include_deleted=True)
        assert {r.endpoint for r in all_records} == {"netbanx", "direct-debit"}
        assert [r.endpoint for r in await vault.load_active()] == ["direct-debit"]

    async def test_delete_twice(self, vault):
        await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET)
        await vault.delete("netbanx")
        with pytest.raises(SecretNotFoundError):
            await vault.delete("netbanx")


class TestTouch:
    async def test_touch_counts_usage(self, vault):
        await vault.register("netbanx", "Netbanx", WEBHOOK_SECRET)
        await vault.touch("netbanx")
        await vault.touch("netbanx")
        record = await vault.get("netbanx")
        assert record.usage_count == 2
        assert record.last_used_at is not None

    async def test_touch_never_raises(self, cipher):
        """Usage tracking is best effort."""
        from hookgate.services.secret_vault import SecretVault

        def broken_factory():
            raise OSError("database unreachable")

        vault = SecretVault(broken_factory, cipher)
        await vault.touch("netbanx")
