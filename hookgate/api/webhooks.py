"""
Webhook ingestion endpoints - one route per provider endpoint.

Security layers (in order):
1. Rate limiting (per client, per endpoint)
2. Signature verification (per-endpoint secret, fail closed)
3. JSON shape check (object root)
4. Durable enqueue, then 200 - processing happens asynchronously
"""
import asyncio
import logging
import uuid
from dataclasses import asdict
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from hookgate.api.deps import get_services
from hookgate.errors import (
    AuthenticationError,
    PermanentProcessingError,
    RateLimitError,
    TransientStorageError,
    UnknownEndpointError,
)
from hookgate.schemas.api_responses import WebhookAcceptedResponse
from hookgate.schemas.webhook_payloads import (
    DEFAULT_EVENT_TYPES,
    ENDPOINT_DESCRIPTIONS,
    EVENT_TYPE_HEADERS,
    KNOWN_EVENT_TYPES,
    WebhookEndpoint,
    decode_json_object,
    event_type_from_headers,
)
from hookgate.services.container import ServiceContainer
from hookgate.services.rate_limiter import client_id_from_request
from hookgate.services.signature_verifier import SIGNATURE_HEADERS
from hookgate.utils.logging import get_correlation_id
from hookgate.utils.metrics import Timer

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_FORMATS = ["sha256={hash}", "SHA256={hash}", "{hash}", "{HASH}"]


def _resolve_endpoint(endpoint: str) -> WebhookEndpoint:
    try:
        return WebhookEndpoint.parse(endpoint)
    except UnknownEndpointError:
        raise HTTPException(status_code=404, detail="Unknown webhook endpoint")


async def _admit(services: ServiceContainer, endpoint: WebhookEndpoint, client_id: str, body: bytes, headers: dict):
    """
    Rate limit, then verify. Returns (limit_result, verification_result).
    Raises RateLimitError or AuthenticationError when the request is refused.
    """
    limit = await services.rate_limiter.check_limit(client_id, endpoint.value, services.rate_limit)
    if not limit.allowed:
        raise RateLimitError(limit.retry_after_seconds or 1, limit.limit, limit.headers())
    verification = await services.verifier.verify(endpoint.value, body, headers)
    if not verification.verified:
        raise AuthenticationError(verification.reason)
    return limit, verification


@router.get("")
async def list_webhook_endpoints(request: Request):
    """Overview of every ingestion endpoint and the accepted signature formats."""
    base_url = str(request.base_url).rstrip("/")
    return {
        "status": "active",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "endpoints": [
            {
                "path": f"/webhooks/{ep.value}",
                "url": f"{base_url}/webhooks/{ep.value}",
                "description": ENDPOINT_DESCRIPTIONS[ep],
                "methods": ["POST", "GET"],
            }
            for ep in WebhookEndpoint
        ],
        "security": {
            "algorithm": "HMAC-SHA256",
            "signatureHeaders": list(SIGNATURE_HEADERS),
            "signatureFormats": SIGNATURE_FORMATS,
            "eventTypeHeaders": list(EVENT_TYPE_HEADERS),
        },
    }


@router.post("/{endpoint}", response_model=WebhookAcceptedResponse)
async def receive_webhook(
    endpoint: str,
    request: Request,
    response: Response,
    services: ServiceContainer = Depends(get_services),
):
    """Authenticate and durably queue one provider webhook."""
    ep = _resolve_endpoint(endpoint)
    timer = Timer()
    body = await request.body()
    headers = dict(request.headers)
    client_id = client_id_from_request(request)
    log_extra = {"endpoint": ep.value, "client_ip": client_id}

    try:
        limit, verification = await asyncio.wait_for(
            _admit(services, ep, client_id, body, headers),
            timeout=services.settings.verification_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.error("Webhook verification timed out for %s", ep.value, extra=log_extra)
        raise HTTPException(status_code=500, detail="Internal server error")
    except TransientStorageError as e:
        logger.error("Secret storage unavailable verifying %s: %s", ep.value, str(e), extra=log_extra)
        raise HTTPException(status_code=500, detail="Internal server error")
    except RateLimitError as e:
        raise HTTPException(status_code=429, detail="Rate limit exceeded", headers=e.headers)
    except AuthenticationError as e:
        logger.warning(
            "Invalid webhook signature: endpoint=%s ip=%s reason=%s",
            ep.value, client_id, e.reason, extra=log_extra,
        )
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        decode_json_object(body)
    except PermanentProcessingError as e:
        raise HTTPException(status_code=400, detail=str(e))

    webhook_id = uuid.uuid4()
    try:
        job_id = await services.queue.enqueue(
            ep.value,
            body,
            {
                "webhook_id": webhook_id,
                "client_ip": client_id,
                "signature_verified": verification.verified,
                "signature_header": verification.header,
                "verification_reason": verification.reason,
                "event_type_header": event_type_from_headers(headers),
                "user_agent": headers.get("user-agent"),
                "correlation_id": get_correlation_id(),
            },
        )
    except TransientStorageError as e:
        logger.error("Webhook enqueue failed for %s: %s", ep.value, str(e), extra=log_extra)
        raise HTTPException(status_code=500, detail="Internal server error")

    if services.settings.queue_process_inline:
        try:
            await services.workers.run_job(job_id)
        except Exception as e:
            # Job stays queued; the background loop or the lease reaper picks it up
            logger.error("Inline processing failed for job %s: %s", str(job_id)[:8], str(e), extra=log_extra)

    response.headers.update(limit.headers())
    elapsed_ms = timer.stop()
    services.ingest_latency.record(ep.value, elapsed_ms)
    logger.info(
        "Webhook accepted: endpoint=%s webhook=%s (%dms)",
        ep.value, str(webhook_id)[:8], elapsed_ms,
        extra={**log_extra, "webhook_id": str(webhook_id), "job_id": str(job_id)},
    )
    return WebhookAcceptedResponse(webhook_id=str(webhook_id), job_id=str(job_id))


@router.get("/{endpoint}")
async def webhook_endpoint_status(
    endpoint: str,
    services: ServiceContainer = Depends(get_services),
):
    """Liveness for one endpoint: supported event types and processing stats."""
    ep = _resolve_endpoint(endpoint)
    stats = None
    queue_stats = None
    try:
        stats = await services.event_store.counts(ep.value)
        queue_stats = asdict(await services.queue.stats())
    except TransientStorageError as e:
        logger.warning("Stats unavailable for %s: %s", ep.value, str(e))

    return {
        "status": "active",
        "endpoint": ep.value,
        "description": ENDPOINT_DESCRIPTIONS[ep],
        "defaultEventType": DEFAULT_EVENT_TYPES[ep],
        "supportedEventTypes": sorted(KNOWN_EVENT_TYPES[ep]),
        "stats": stats,
        "queue": queue_stats,
        "ingestLatencyMs": services.ingest_latency.snapshot(ep.value),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
