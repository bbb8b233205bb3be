"""
Service wiring - every stateful service is constructed here and injected
into the app (app.state.services). No module-level singletons hold cache,
queue, or limiter state.
"""
import logging
from dataclasses import dataclass, field
from typing import Union

from sqlalchemy.ext.asyncio import async_sessionmaker

from hookgate.config import Settings
from hookgate.services.event_store import EventStore
from hookgate.services.ingestion_queue import IngestionQueue
from hookgate.services.rate_limiter import InMemoryRateLimiter, RateLimitConfig, RedisRateLimiter
from hookgate.services.secret_cache import SecretCache
from hookgate.services.secret_vault import SecretVault
from hookgate.services.session_auth import SessionAuthService
from hookgate.services.signature_verifier import SignatureVerifier
from hookgate.utils.encryption import SecretCipher
from hookgate.utils.metrics import LatencyTracker
from hookgate.workers.event_processor import EventProcessor
from hookgate.workers.worker_pool import WorkerPool

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    session_factory: async_sessionmaker
    vault: SecretVault
    cache: SecretCache
    verifier: SignatureVerifier
    rate_limiter: Union[InMemoryRateLimiter, RedisRateLimiter]
    rate_limit: RateLimitConfig
    queue: IngestionQueue
    event_store: EventStore
    processor: EventProcessor
    workers: WorkerPool
    session_auth: SessionAuthService
    ingest_latency: LatencyTracker = field(default_factory=LatencyTracker)
    start_workers: bool = True
    _started: bool = False

    async def start(self) -> None:
        if self._started:
            return
        await self.rate_limiter.start()
        await self.cache.warm()
        # Inline mode still needs a background loop for retries and the lease reaper
        if self.start_workers:
            await self.workers.start()
        self._started = True

    async def stop(self) -> None:
        if not self._started:
            return
        await self.workers.stop()
        await self.rate_limiter.stop()
        self._started = False


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker,
    redis_getter=None,
    start_workers: bool = True,
    alert=None,
) -> ServiceContainer:
    """Construct the full service graph from settings."""
    cipher = SecretCipher(settings.secret_encryption_key)
    vault = SecretVault(session_factory, cipher, min_secret_length=settings.secret_min_length)
    cache = SecretCache(vault, ttl_seconds=settings.secret_cache_ttl_seconds)
    vault.add_change_listener(cache.invalidate)

    alert_kwargs = {"alert": alert} if alert is not None else {}
    verifier = SignatureVerifier(
        cache, allow_unsigned=settings.unsigned_webhooks_permitted, **alert_kwargs,
    )

    if settings.rate_limit_backend == "redis" and redis_getter is not None:
        rate_limiter: Union[InMemoryRateLimiter, RedisRateLimiter] = RedisRateLimiter(redis_getter)
    else:
        if settings.rate_limit_backend not in ("memory", "redis"):
            logger.warning("Unknown RATE_LIMIT_BACKEND '%s' - using memory", settings.rate_limit_backend)
        rate_limiter = InMemoryRateLimiter(
            max_keys=settings.rate_limit_max_keys,
            sweep_interval_seconds=settings.rate_limit_sweep_interval_seconds,
        )

    queue = IngestionQueue(
        session_factory,
        max_attempts=settings.queue_max_attempts,
        backoff_base_ms=settings.queue_backoff_base_ms,
        backoff_max_ms=settings.queue_backoff_max_ms,
        lease_seconds=settings.queue_lease_seconds,
        redis_getter=redis_getter,
    )
    event_store = EventStore(session_factory)
    processor = EventProcessor(event_store, vault, queue.backoff_ms, **alert_kwargs)
    workers = WorkerPool(
        queue,
        processor,
        concurrency=1 if settings.queue_process_inline else settings.queue_workers,
        poll_interval_seconds=settings.queue_poll_interval_seconds,
        redis_getter=redis_getter,
    )

    return ServiceContainer(
        settings=settings,
        session_factory=session_factory,
        vault=vault,
        cache=cache,
        verifier=verifier,
        rate_limiter=rate_limiter,
        rate_limit=RateLimitConfig(
            requests_per_window=settings.webhook_rate_limit_requests,
            window_ms=settings.webhook_rate_limit_window_ms,
        ),
        queue=queue,
        event_store=event_store,
        processor=processor,
        workers=workers,
        session_auth=SessionAuthService(settings.session_jwt_secret),
        start_workers=start_workers,
    )
