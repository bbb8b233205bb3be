"""Webhook ingestion schema - secrets, events, jobs.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Webhook secrets (encrypted, versioned, logically deleted)
    op.create_table(
        "webhook_secrets",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("endpoint", sa.String(50), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("encrypted_key", sa.Text, nullable=False),
        sa.Column("algorithm", sa.String(20), nullable=False, server_default="sha256"),
        sa.Column("key_version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("company_id", sa.String(64)),
        sa.Column("last_used_at", sa.DateTime(timezone=True)),
        sa.Column("usage_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("created_by", sa.String(255)),
        sa.Column("deleted_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_webhook_secrets_active", "webhook_secrets", ["is_active", "deleted_at"])

    # Processed webhook events, one per (endpoint, idempotency_key)
    op.create_table(
        "webhook_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("endpoint", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("payload", postgresql.JSONB),
        sa.Column("payload_kind", sa.String(50), nullable=False, server_default="unknown"),
        sa.Column("known_event_type", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("error_message", sa.Text),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        sa.Column("key_source", sa.String(20), nullable=False, server_default="source"),
        sa.Column("payload_hash", sa.String(64)),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="1"),
        sa.Column("job_id", postgresql.UUID(as_uuid=True)),
        sa.Column("ip_address", sa.String(64)),
        sa.Column("user_agent", sa.String(512)),
        sa.Column("correlation_id", sa.String(64)),
        sa.UniqueConstraint("endpoint", "idempotency_key", name="uq_webhook_events_endpoint_key"),
    )
    op.create_index("ix_webhook_events_endpoint", "webhook_events", ["endpoint"])
    op.create_index("ix_webhook_events_outcome", "webhook_events", ["endpoint", "outcome"])
    op.create_index("ix_webhook_events_correlation_id", "webhook_events", ["correlation_id"])

    # Durable ingestion queue
    op.create_table(
        "webhook_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("endpoint", sa.String(50), nullable=False),
        sa.Column("webhook_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("raw_body", sa.LargeBinary, nullable=False),
        sa.Column("request_meta", postgresql.JSONB),
        sa.Column("client_ip", sa.String(64)),
        sa.Column("signature_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(20), nullable=False, server_default="waiting"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="5"),
        sa.Column("available_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True)),
        sa.Column("locked_by", sa.String(100)),
        sa.Column("last_error", sa.Text),
        sa.Column("result", postgresql.JSONB),
        sa.Column("correlation_id", sa.String(64)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_webhook_jobs_claim", "webhook_jobs", ["status", "available_at"])
    op.create_index("ix_webhook_jobs_lease", "webhook_jobs", ["status", "lease_expires_at"])


def downgrade() -> None:
    op.drop_index("ix_webhook_jobs_lease", table_name="webhook_jobs")
    op.drop_index("ix_webhook_jobs_claim", table_name="webhook_jobs")
    op.drop_table("webhook_jobs")
    op.drop_index("ix_webhook_events_correlation_id", table_name="webhook_events")
    op.drop_index("ix_webhook_events_outcome", table_name="webhook_events")
    op.drop_index("ix_webhook_events_endpoint", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_index("ix_webhook_secrets_active", table_name="webhook_secrets")
    op.drop_table("webhook_secrets")
