"""
Test configuration and fixtures.
Uses a file-backed SQLite database per test (several sessions share it).
Redis and outbound alerting are never touched.
"""
import httpx
import pytest
from unittest.mock import AsyncMock
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

from hookgate.config import Settings
from hookgate.database import Base
from hookgate.main import create_app
from hookgate.services.container import build_services
from hookgate.services.event_store import EventStore
from hookgate.services.ingestion_queue import IngestionQueue
from hookgate.services.secret_cache import SecretCache
from hookgate.services.secret_vault import SecretVault
from hookgate.utils.encryption import SecretCipher, generate_encryption_key
import hookgate.models  # noqa: F401

# Not hex-only, comfortably above the 32 character minimum
WEBHOOK_SECRET = "whsec_test_primary_signing_key_0001_abcdef"
ROTATED_SECRET = "whsec_test_rotated_signing_key_0002_uvwxyz"


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'hookgate_test.db'}"


@pytest.fixture
async def session_factory(database_url):
    """Fresh schema per test."""
    engine = create_async_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture
def encryption_key():
    return generate_encryption_key()


@pytest.fixture
def cipher(encryption_key):
    return SecretCipher(encryption_key)


@pytest.fixture
def vault(session_factory, cipher):
    return SecretVault(session_factory, cipher)


@pytest.fixture
def fake_clock():
    """Manually advanced monotonic clock (seconds)."""

    class _Clock:
        def __init__(self):
            self.now = 1000.0

        def __call__(self):
            return self.now

        def advance(self, seconds: float):
            self.now += seconds

    return _Clock()


@pytest.fixture
def cache(vault, fake_clock):
    cache = SecretCache(vault, ttl_seconds=60, clock=fake_clock)
    vault.add_change_listener(cache.invalidate)
    return cache


@pytest.fixture
def event_store(session_factory):
    return EventStore(session_factory)


@pytest.fixture
def queue(session_factory):
    return IngestionQueue(session_factory, max_attempts=3, backoff_base_ms=100, backoff_max_ms=1000)


@pytest.fixture
def mock_alert():
    """Stands in for send_alert - prevents Redis and outbound HTTP in tests."""
    return AsyncMock(return_value=True)


@pytest.fixture
def make_settings(database_url, encryption_key):
    """Settings built explicitly so no .env or environment leaks in."""

    def _make(**overrides) -> Settings:
        values = {
            "app_env": "test",
            "database_url": database_url,
            "secret_encryption_key": encryption_key,
            "session_jwt_secret": "test-session-jwt-secret",
            "internal_api_token": "test-internal-token",
            "queue_workers": 2,
            "queue_process_inline": True,
            "queue_max_attempts": 3,
            "queue_backoff_base_ms": 100,
            "queue_backoff_max_ms": 1000,
            "secret_cache_ttl_seconds": 60,
            "webhook_rate_limit_requests": 100,
            "webhook_rate_limit_window_ms": 60000,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
async def build_client(make_settings, session_factory, mock_alert):
    """Factory: (client, services) for an app built from settings overrides."""
    clients = []

    async def _build(**overrides):
        services = build_services(
            make_settings(**overrides), session_factory, start_workers=False, alert=mock_alert,
        )
        app = create_app(services=services)
        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client, services

    yield _build
    for client in clients:
        await client.aclose()
