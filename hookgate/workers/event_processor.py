"""
Event processor - turns one leased queue job into a typed outcome.

parse -> dedup on (endpoint, idempotency_key) -> persist -> touch secret usage.

Outcomes:
- completed: new (or previously failed) event stored as success
- duplicate: a success record already exists; nothing reprocessed
- retry: transient failure, retry after the returned backoff
- failed: permanent failure or retries exhausted; failure record written
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from hookgate.errors import PermanentProcessingError, TransientStorageError
from hookgate.models.webhook_job import WebhookJob
from hookgate.schemas.webhook_payloads import (
    DEFAULT_EVENT_TYPES,
    CRITICAL_EVENT_TYPES,
    ParsedWebhook,
    WebhookEndpoint,
    compute_payload_hash,
    decode_json_object,
    derive_idempotency_key,
    parse_webhook_payload,
)
from hookgate.services.event_store import OUTCOME_SUCCESS, EventDraft, EventStore
from hookgate.services.secret_vault import SecretVault
from hookgate.utils.alerting import AlertType, send_alert

logger = logging.getLogger(__name__)

RAW_PREVIEW_CHARS = 10000


class OutcomeStatus(str, Enum):
    COMPLETED = "completed"
    DUPLICATE = "duplicate"
    RETRY = "retry"
    FAILED = "failed"


@dataclass(frozen=True)
class ProcessingOutcome:
    status: OutcomeStatus
    event_id: Optional[uuid.UUID] = None
    event_type: Optional[str] = None
    error: Optional[str] = None
    retry_delay_ms: Optional[int] = None
    attempts: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status != OutcomeStatus.RETRY

    def as_result(self) -> dict:
        return {
            "status": self.status.value,
            "event_id": str(self.event_id) if self.event_id else None,
            "event_type": self.event_type,
            "error": self.error,
            "attempts": self.attempts,
        }


class EventProcessor:
    def __init__(
        self,
        event_store: EventStore,
        vault: SecretVault,
        backoff_ms: Callable[[int], int],
        alert: Callable[..., Awaitable[object]] = send_alert,
    ):
        self._store = event_store
        self._vault = vault
        self._backoff_ms = backoff_ms
        self._alert = alert

    async def process(self, job: WebhookJob) -> ProcessingOutcome:
        log_extra = {
            "endpoint": job.endpoint,
            "job_id": str(job.id),
            "webhook_id": str(job.webhook_id),
        }
        draft: Optional[EventDraft] = None

        if job.attempts > job.max_attempts:
            return await self._fail(
                job, self._fallback_draft(job),
                f"Abandoned after {job.attempts - 1} attempts (lease expired)",
                exhausted=True,
            )

        try:
            parsed = parse_webhook_payload(
                job.endpoint, job.raw_body, job.meta.get("event_type_header"),
            )
            draft = self._draft(job, parsed)
            log_extra["idempotency_key"] = parsed.idempotency_key
            if not parsed.known_event_type:
                logger.warning(
                    "Unrecognized event type %s on %s - storing as unknown",
                    parsed.event_type, job.endpoint, extra=log_extra,
                )

            existing = await self._store.get_by_idempotency_key(parsed.idempotency_key, job.endpoint)
            if existing is not None and existing.outcome == OUTCOME_SUCCESS:
                logger.info(
                    "Duplicate webhook %s on %s - already processed",
                    parsed.idempotency_key, job.endpoint, extra=log_extra,
                )
                return ProcessingOutcome(
                    OutcomeStatus.DUPLICATE, existing.id, parsed.event_type, attempts=job.attempts,
                )

            saved = await self._store.save_success(draft, attempts=job.attempts)
            if saved.already_processed:
                return ProcessingOutcome(
                    OutcomeStatus.DUPLICATE, saved.event_id, parsed.event_type, attempts=job.attempts,
                )

            await self._vault.touch(job.endpoint)
            logger.info(
                "Webhook processed: endpoint=%s type=%s event=%s",
                job.endpoint, parsed.event_type, str(saved.event_id)[:8], extra=log_extra,
            )
            return ProcessingOutcome(
                OutcomeStatus.COMPLETED, saved.event_id, parsed.event_type, attempts=job.attempts,
            )

        except PermanentProcessingError as e:
            logger.warning("Webhook rejected permanently: %s", str(e), extra=log_extra)
            return await self._fail(job, draft or self._fallback_draft(job), str(e))
        except TransientStorageError as e:
            return await self._retry_or_fail(job, draft, str(e), log_extra)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Unexpected error processing job %s", str(job.id)[:8], extra=log_extra)
            return await self._retry_or_fail(job, draft, f"{type(e).__name__}: {e}", log_extra)

    async def _retry_or_fail(
        self, job: WebhookJob, draft: Optional[EventDraft], error: str, log_extra: dict,
    ) -> ProcessingOutcome:
        if job.attempts < job.max_attempts:
            delay = self._backoff_ms(job.attempts)
            logger.warning(
                "Webhook retry %d/%d in %dms: %s",
                job.attempts, job.max_attempts, delay, error, extra=log_extra,
            )
            return ProcessingOutcome(
                OutcomeStatus.RETRY,
                event_type=draft.event_type if draft else None,
                error=error,
                retry_delay_ms=delay,
                attempts=job.attempts,
            )
        return await self._fail(
            job, draft or self._fallback_draft(job),
            f"Retries exhausted after {job.attempts} attempts: {error}",
            exhausted=True,
        )

    async def _fail(
        self, job: WebhookJob, draft: EventDraft, error: str, exhausted: bool = False,
    ) -> ProcessingOutcome:
        event_id = None
        try:
            saved = await self._store.save_failure(draft, error, attempts=job.attempts)
            event_id = saved.event_id
        except Exception as e:
            # The job row itself keeps status=failed and last_error
            logger.error(
                "Could not write failure record for job %s: %s", str(job.id)[:8], str(e),
                extra={"job_id": str(job.id), "endpoint": job.endpoint},
            )

        if exhausted or draft.event_type in CRITICAL_EVENT_TYPES:
            alert_type = (
                AlertType.WEBHOOK_RETRIES_EXHAUSTED if exhausted else AlertType.CRITICAL_EVENT_FAILED
            )
            try:
                await self._alert(
                    alert_type,
                    f"Webhook {draft.event_type} on {job.endpoint} failed: {error}",
                    correlation_id=job.correlation_id,
                    extra={"job_id": str(job.id), "webhook_id": str(job.webhook_id)},
                    cooldown_scope=job.endpoint,
                )
            except Exception as e:
                logger.warning("Alert dispatch failed: %s", str(e))

        return ProcessingOutcome(
            OutcomeStatus.FAILED, event_id, draft.event_type, error=error, attempts=job.attempts,
        )

    @staticmethod
    def _draft(job: WebhookJob, parsed: ParsedWebhook) -> EventDraft:
        return EventDraft(
            endpoint=job.endpoint,
            idempotency_key=parsed.idempotency_key,
            event_type=parsed.event_type,
            payload=parsed.data,
            payload_kind=parsed.kind,
            known_event_type=parsed.known_event_type,
            key_source=parsed.key_source,
            payload_hash=parsed.payload_hash,
            event_id=job.webhook_id,
            job_id=job.id,
            ip_address=job.client_ip,
            user_agent=job.meta.get("user_agent"),
            correlation_id=job.correlation_id,
            received_at=job.created_at,
        )

    @staticmethod
    def _fallback_draft(job: WebhookJob) -> EventDraft:
        """
        Draft for a body that never parsed. An object body keeps its own id and
        eventType; anything else is keyed by its hash with the raw text kept for triage.
        """
        payload_hash = compute_payload_hash(job.raw_body)
        try:
            event_type = DEFAULT_EVENT_TYPES[WebhookEndpoint(job.endpoint)]
        except ValueError:
            event_type = "UNKNOWN"
        event_type = job.meta.get("event_type_header") or event_type

        try:
            data = decode_json_object(job.raw_body)
        except PermanentProcessingError:
            payload = {"_raw": job.raw_body.decode("utf-8", errors="replace")[:RAW_PREVIEW_CHARS]}
            idempotency_key, key_source = f"sha256:{payload_hash}", "payload_hash"
        else:
            payload = data
            idempotency_key, key_source = derive_idempotency_key(data, payload_hash)
            body_type = data.get("eventType")
            if isinstance(body_type, str) and body_type.strip():
                event_type = body_type.strip()

        return EventDraft(
            endpoint=job.endpoint,
            idempotency_key=idempotency_key,
            event_type=event_type,
            payload=payload,
            payload_kind="invalid",
            known_event_type=False,
            key_source=key_source,
            payload_hash=payload_hash,
            event_id=job.webhook_id,
            job_id=job.id,
            ip_address=job.client_ip,
            user_agent=job.meta.get("user_agent"),
            correlation_id=job.correlation_id,
            received_at=job.created_at,
        )
