"""
Health endpoints for load balancers and monitoring.

- GET /health       liveness, always 200 while the process serves requests
- GET /health/ready readiness, gated on the database only (Redis is optional)
- GET /health/deep  database, Redis, worker heartbeat age, queue backlog, secret cache
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import text

from hookgate.api.deps import get_services
from hookgate.services.container import ServiceContainer
from hookgate.workers.worker_pool import HEARTBEAT_KEY

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"
HEARTBEAT_STALE_SECONDS = 120
FAILED_BACKLOG_WARNING = 100


async def _check_database(services: ServiceContainer) -> bool:
    try:
        async with services.session_factory() as db:
            await db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))
        return False


async def _check_redis() -> Optional[object]:
    """Connected client, or None when Redis is unreachable."""
    try:
        from hookgate.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.ping()
        return redis
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))
        return None


async def _heartbeat_age_seconds(redis) -> Optional[float]:
    try:
        raw = await redis.get(HEARTBEAT_KEY)
    except Exception as e:
        logger.warning("Worker heartbeat read failed: %s", str(e))
        return None
    if not raw:
        return None
    beat = datetime.fromisoformat(raw if isinstance(raw, str) else raw.decode())
    return (datetime.now(timezone.utc) - beat).total_seconds()


@router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


@router.get("/health/ready")
async def readiness_check(services: ServiceContainer = Depends(get_services)):
    database_ok = await _check_database(services)
    redis_ok = await _check_redis() is not None
    return {
        "status": "ready" if database_ok else "degraded",
        "checks": {"database": database_ok, "redis": redis_ok},
        "workers": {
            "running": services.workers.is_running,
            "inline": services.settings.queue_process_inline,
        },
        "cacheHealthy": services.cache.stats().healthy,
        "unsignedWebhooksPermitted": services.settings.unsigned_webhooks_permitted,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/deep")
async def deep_health_check(services: ServiceContainer = Depends(get_services)):
    """
    Every dependency plus processing health. unhealthy: database down.
    degraded: Redis down, stale worker heartbeat, or a large failed backlog.
    """
    issues: list[str] = []
    database_ok = await _check_database(services)
    if not database_ok:
        issues.append("database unreachable")

    redis = await _check_redis()
    if redis is None:
        issues.append("redis unreachable")

    heartbeat_age = None
    if not services.settings.queue_process_inline:
        heartbeat_age = await _heartbeat_age_seconds(redis) if redis is not None else None
        if heartbeat_age is None or heartbeat_age > HEARTBEAT_STALE_SECONDS:
            issues.append("worker heartbeat missing or stale")

    queue = None
    if database_ok:
        try:
            stats = await services.queue.stats()
            queue = {"waiting": stats.waiting, "delayed": stats.delayed, "failed": stats.failed, "paused": stats.paused}
            if stats.failed >= FAILED_BACKLOG_WARNING:
                issues.append(f"{stats.failed} failed jobs")
        except Exception as e:
            logger.error("Queue health check failed: %s", str(e))

    cache = services.cache.stats()
    if not database_ok:
        status = "unhealthy"
    elif issues:
        status = "degraded"
    else:
        status = "healthy"

    return {
        "status": status,
        "issues": issues,
        "checks": {"database": database_ok, "redis": redis is not None},
        "workers": {
            "running": services.workers.is_running,
            "inline": services.settings.queue_process_inline,
            "heartbeatAgeSeconds": round(heartbeat_age, 1) if heartbeat_age is not None else None,
        },
        "queue": queue,
        "cache": {"entries": cache.entry_count, "healthy": cache.healthy},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
