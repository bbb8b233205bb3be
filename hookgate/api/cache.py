"""
Secret cache introspection.

- GET    /api/webhook-secrets/cache-status  stats and estimated query reduction
- DELETE /api/webhook-secrets/cache-status  invalidate everything, then re-warm
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from hookgate.api.deps import get_services, require_capability
from hookgate.schemas.api_responses import CacheStatsResponse
from hookgate.services.container import ServiceContainer
from hookgate.services.secret_cache import CacheStats
from hookgate.services.session_auth import CAP_MANAGE_SECRETS, SessionUser

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhook-secrets/cache-status", tags=["webhook-secrets"])


def _to_response(stats: CacheStats) -> CacheStatsResponse:
    return CacheStatsResponse(
        total_secrets=stats.entry_count,
        fresh=stats.fresh,
        stale=stats.stale,
        hits=stats.hits,
        misses=stats.misses,
        loads=stats.loads,
        last_batch_fetch=stats.last_batch_fetch,
        cache_age_ms=stats.oldest_age_ms,
        ttl_seconds=stats.ttl_seconds,
        is_healthy=stats.healthy,
        estimated_query_reduction=stats.estimated_query_reduction,
    )


@router.get("")
async def cache_status(
    services: ServiceContainer = Depends(get_services),
    user: SessionUser = Depends(require_capability(CAP_MANAGE_SECRETS)),
):
    return {
        "success": True,
        "cache": _to_response(services.cache.stats()).model_dump(by_alias=True),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.delete("")
async def refresh_cache(
    services: ServiceContainer = Depends(get_services),
    user: SessionUser = Depends(require_capability(CAP_MANAGE_SECRETS)),
):
    await services.cache.invalidate_all()
    warmed = await services.cache.warm()
    logger.info("Secret cache refreshed by %s (%d secrets)", user.user_id, warmed)
    return {
        "success": True,
        "message": "Cache invalidated and refreshed",
        "warmed": warmed,
        "cache": _to_response(services.cache.stats()).model_dump(by_alias=True),
    }
