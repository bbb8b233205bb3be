"""
Ingestion queue administration: stats, pause/resume, retention clean-up.
"""
import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException

from hookgate.api.deps import get_services, require_capability
from hookgate.errors import TransientStorageError
from hookgate.schemas.api_responses import QueueActionRequest, QueueStatsResponse
from hookgate.services.container import ServiceContainer
from hookgate.services.session_auth import CAP_WEBHOOKS_ADMIN, SessionUser

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhooks/queue", tags=["webhooks"])

require_webhooks_admin = require_capability(CAP_WEBHOOKS_ADMIN)


async def _stats(services: ServiceContainer) -> dict:
    try:
        stats = await services.queue.stats()
    except TransientStorageError as e:
        logger.error("Queue stats unavailable: %s", str(e))
        raise HTTPException(status_code=500, detail="Internal server error")
    return QueueStatsResponse(**asdict(stats)).model_dump(by_alias=True)


@router.get("")
async def queue_status(
    services: ServiceContainer = Depends(get_services),
    user: SessionUser = Depends(require_webhooks_admin),
):
    return {
        "success": True,
        "queue": await _stats(services),
        "workers": {
            "concurrency": services.workers.concurrency,
            "running": services.workers.is_running,
            "inline": services.settings.queue_process_inline,
            "outcomes": {status.value: n for status, n in services.workers.outcomes.items()},
        },
    }


@router.post("")
async def queue_action(
    payload: QueueActionRequest,
    services: ServiceContainer = Depends(get_services),
    user: SessionUser = Depends(require_webhooks_admin),
):
    result: dict = {"success": True, "action": payload.action}
    if payload.action == "pause":
        services.queue.pause()
    elif payload.action == "resume":
        services.queue.resume()
    else:
        hours = payload.older_than_hours
        if hours is None:
            hours = services.settings.queue_retention_hours
        try:
            result["removed"] = await services.queue.clean(hours * 3600)
        except TransientStorageError as e:
            logger.error("Queue clean failed: %s", str(e))
            raise HTTPException(status_code=500, detail="Internal server error")

    logger.info("Queue %s requested by %s", payload.action, user.user_id)
    result["queue"] = await _stats(services)
    return result
