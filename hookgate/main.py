"""
Hookgate - payment webhook ingestion service.
Main FastAPI application entry point.

Run with: uvicorn hookgate.main:create_app --factory
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from hookgate.api.router import api_router
from hookgate.config import Settings, get_settings
from hookgate.services.container import ServiceContainer, build_services
from hookgate.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("hookgate")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


def _log_security_posture(settings: Settings) -> None:
    if settings.allow_unsigned_webhooks and settings.is_production:
        logger.error(
            "ALLOW_UNSIGNED_WEBHOOKS=true is ignored in production - "
            "unsigned webhooks will be rejected"
        )
    elif settings.unsigned_webhooks_permitted:
        logger.warning(
            "ALLOW_UNSIGNED_WEBHOOKS=true - webhooks without a signature header "
            "will be ACCEPTED (env=%s). Never enable this in production.",
            settings.app_env,
        )
    if not settings.session_jwt_secret:
        logger.warning("SESSION_JWT_SECRET not set - secret administration endpoints will reject all sessions")
    if not settings.internal_api_token:
        logger.info("INTERNAL_API_TOKEN not set - internal decrypt endpoint disabled")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings: Settings = app.state.settings
    services: ServiceContainer = app.state.services
    logger.info("Hookgate starting up (env=%s)", settings.app_env)
    _log_security_posture(settings)
    if settings.unsigned_webhooks_permitted:
        from hookgate.utils.alerting import AlertType, send_alert
        await send_alert(
            AlertType.UNSIGNED_WEBHOOKS_ENABLED,
            f"Unsigned webhooks are being accepted (env={settings.app_env})",
            severity="warning",
        )

    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    await services.start()
    logger.info(
        "Services started (workers=%d, inline=%s, rate_limit=%s)",
        services.workers.concurrency, settings.queue_process_inline, settings.rate_limit_backend,
    )

    yield

    logger.info("Hookgate shutting down - stopping workers...")
    await services.stop()
    if app.state.owns_resources:
        from hookgate.database import dispose_engine
        from hookgate.utils.redis_client import close_redis
        await close_redis()
        await dispose_engine()
    logger.info("Hookgate shutdown complete")


async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"success": False, "error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
    )


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
) -> FastAPI:
    """Application factory. Tests inject settings and a prebuilt service container."""
    owns_resources = services is None
    if settings is None:
        settings = services.settings if services is not None else get_settings()

    configure_structured_logging(settings.log_level, settings.log_format)

    if services is None:
        from hookgate.database import get_session_factory
        from hookgate.utils.redis_client import get_redis
        services = build_services(settings, get_session_factory(), redis_getter=get_redis)

    application = FastAPI(
        title="Hookgate",
        description="Payment webhook ingestion with encrypted per-endpoint secrets",
        version="1.0.0",
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.services = services
    application.state.owns_resources = owns_resources

    application.add_exception_handler(HTTPException, _http_exception_handler)
    application.add_exception_handler(RequestValidationError, _validation_exception_handler)
    application.add_exception_handler(Exception, _unhandled_exception_handler)

    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(api_router)

    return application
