"""
WebhookJob model - durable ingestion queue.
A job is claimable while waiting (or delayed and due); a worker claim sets a
lease. The row stays in place after its terminal outcome until cleaned.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Boolean, Text, DateTime, LargeBinary, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from hookgate.database import Base

JOB_WAITING = "waiting"
JOB_ACTIVE = "active"
JOB_DELAYED = "delayed"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

CLAIMABLE_STATUSES = (JOB_WAITING, JOB_DELAYED)
TERMINAL_STATUSES = (JOB_COMPLETED, JOB_FAILED)


class WebhookJob(Base):
    __tablename__ = "webhook_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    endpoint: Mapped[str] = mapped_column(String(50), nullable=False)

    # Event id handed back to the provider at ingestion
    webhook_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    # Exact bytes as received - signatures and idempotency hashes depend on them
    raw_body: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    request_meta: Mapped[Optional[dict]] = mapped_column(JSONB)
    client_ip: Mapped[Optional[str]] = mapped_column(String(64))
    signature_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=JOB_WAITING, nullable=False
    )  # waiting, active, delayed, completed, failed
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=5, nullable=False)

    available_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    locked_by: Mapped[Optional[str]] = mapped_column(String(100))

    last_error: Mapped[Optional[str]] = mapped_column(Text)
    result: Mapped[Optional[dict]] = mapped_column(JSONB)
    correlation_id: Mapped[Optional[str]] = mapped_column(String(64))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_webhook_jobs_claim", "status", "available_at"),
        Index("ix_webhook_jobs_lease", "status", "lease_expires_at"),
    )

    @property
    def meta(self) -> dict:
        return self.request_meta or {}

    def __repr__(self) -> str:
        return f"<WebhookJob {self.endpoint} ({self.status}, attempt {self.attempts})>"
