"""
Webhook event store - one row per (endpoint, idempotency_key).
A success row is immutable; a failed row is updated in place by later attempts.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, DateTime, Text, Integer, Boolean, UniqueConstraint, Index,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from hookgate.database import Base


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    received_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    endpoint = Column(String(50), nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    payload = Column(JSONB, nullable=True)
    payload_kind = Column(String(50), nullable=False, default="unknown")
    known_event_type = Column(Boolean, nullable=False, default=False)
    outcome = Column(String(20), nullable=False)  # success | failed
    error_message = Column(Text, nullable=True)
    idempotency_key = Column(String(255), nullable=False)
    key_source = Column(String(20), nullable=False, default="source")  # source | payload_hash
    payload_hash = Column(String(64), nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    job_id = Column(UUID(as_uuid=True), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    correlation_id = Column(String(64), nullable=True, index=True)

    __table_args__ = (
        UniqueConstraint("endpoint", "idempotency_key", name="uq_webhook_events_endpoint_key"),
        Index("ix_webhook_events_outcome", "endpoint", "outcome"),
    )

    def __repr__(self) -> str:
        return f"<WebhookEvent {self.endpoint}:{self.idempotency_key} ({self.outcome})>"
