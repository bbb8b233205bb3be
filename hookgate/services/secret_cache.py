"""
Secret cache - read-through, TTL-bounded cache of decrypted secrets.

- Concurrent misses for one endpoint share a single vault read (single flight)
- Entries expire after the TTL even without invalidation
- invalidate() bumps a per-endpoint generation so a load already in flight
  cannot repopulate the cache with the pre-rotation key
- Negative results are never cached
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from hookgate.services.secret_vault import DecryptedSecret, SecretVault

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    secret: DecryptedSecret
    fetched_at: float
    expires_at: float


@dataclass(frozen=True)
class CacheStats:
    entry_count: int
    fresh: int
    stale: int
    oldest_age_ms: Optional[int]
    hits: int
    misses: int
    loads: int
    last_batch_fetch: Optional[datetime]
    ttl_seconds: int
    healthy: bool

    @property
    def estimated_query_reduction(self) -> str:
        return f"~{self.hits} vault queries avoided ({self.entry_count} endpoints cached)"


class SecretCache:
    def __init__(
        self,
        vault: SecretVault,
        ttl_seconds: int = 1800,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._vault = vault
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self._inflight: dict[str, asyncio.Future] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self._last_batch_fetch: Optional[datetime] = None
        self.hits = 0
        self.misses = 0
        self.loads = 0

    def _token(self, endpoint: str) -> tuple[int, int]:
        return self._epoch, self._generations.get(endpoint, 0)

    def _store(self, secret: DecryptedSecret) -> None:
        now = self._clock()
        self._entries[secret.endpoint] = _CacheEntry(
            secret=secret, fetched_at=now, expires_at=now + self.ttl_seconds,
        )

    async def resolve(self, endpoint: str) -> Optional[DecryptedSecret]:
        """Decrypted active secret for the endpoint, or None when none is registered."""
        entry = self._entries.get(endpoint)
        if entry is not None:
            if entry.expires_at > self._clock():
                self.hits += 1
                return entry.secret
            self._entries.pop(endpoint, None)

        self.misses += 1
        future = self._inflight.get(endpoint)
        if future is None:
            future = asyncio.ensure_future(self._load(endpoint, self._token(endpoint)))
            self._inflight[endpoint] = future
            future.add_done_callback(lambda f, ep=endpoint: self._load_finished(ep, f))
        # shield: a cancelled caller must not cancel the load other callers share
        return await asyncio.shield(future)

    def _load_finished(self, endpoint: str, future: asyncio.Future) -> None:
        if self._inflight.get(endpoint) is future:
            del self._inflight[endpoint]
        if not future.cancelled():
            # Mark retrieved - waiters re-raise it themselves
            future.exception()

    async def _load(self, endpoint: str, token: tuple[int, int]) -> Optional[DecryptedSecret]:
        record = await self._vault.get(endpoint)
        self.loads += 1
        if record is None:
            return None
        secret = self._vault.decrypt(record)
        if self._token(endpoint) == token:
            self._store(secret)
        else:
            logger.debug("Discarding secret load for %s - invalidated while in flight", endpoint)
        return secret

    async def invalidate(self, endpoint: str) -> None:
        self._entries.pop(endpoint, None)
        self._generations[endpoint] = self._generations.get(endpoint, 0) + 1
        self._inflight.pop(endpoint, None)
        logger.debug("Secret cache invalidated: %s", endpoint)

    async def invalidate_all(self) -> None:
        self._entries.clear()
        self._inflight.clear()
        self._epoch += 1
        logger.info("Secret cache cleared")

    async def warm(self) -> int:
        """Batch-load every active secret in one vault query. Returns entries stored."""
        epoch = self._epoch
        generations = dict(self._generations)
        try:
            records = await self._vault.load_active()
        except Exception as e:
            logger.warning("Secret cache warm-up failed: %s", str(e))
            return 0

        self.loads += 1
        stored = 0
        for record in records:
            if self._epoch != epoch or self._generations.get(record.endpoint, 0) != generations.get(record.endpoint, 0):
                continue
            try:
                self._store(self._vault.decrypt(record))
                stored += 1
            except Exception as e:
                logger.error("Secret cache warm-up could not decrypt %s: %s", record.endpoint, str(e))
        self._last_batch_fetch = datetime.now(timezone.utc)
        logger.info("Secret cache warmed: %d active secrets", stored)
        return stored

    def stats(self) -> CacheStats:
        now = self._clock()
        fresh = sum(1 for e in self._entries.values() if e.expires_at > now)
        stale = len(self._entries) - fresh
        oldest = max((now - e.fetched_at for e in self._entries.values()), default=None)
        return CacheStats(
            entry_count=len(self._entries),
            fresh=fresh,
            stale=stale,
            oldest_age_ms=int(oldest * 1000) if oldest is not None else None,
            hits=self.hits,
            misses=self.misses,
            loads=self.loads,
            last_batch_fetch=self._last_batch_fetch,
            ttl_seconds=self.ttl_seconds,
            healthy=fresh > 0 and stale == 0,
        )
