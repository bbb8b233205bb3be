"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from hookgate.api.webhooks import router as webhooks_router
from hookgate.api.cache import router as cache_router
from hookgate.api.secrets import router as secrets_router
from hookgate.api.internal import router as internal_router
from hookgate.api.queue import router as queue_router
from hookgate.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(webhooks_router)
# cache-status must register before /api/webhook-secrets/{endpoint}
api_router.include_router(cache_router)
api_router.include_router(secrets_router)
api_router.include_router(internal_router)
api_router.include_router(queue_router)
api_router.include_router(health_router)
