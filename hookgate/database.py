"""
Async SQLAlchemy engine and session factory (asyncpg in production).

Services never open their own engine: they receive the session factory at
construction (see services/container.py), which lets tests hand them a
SQLite-backed factory instead. Sessions use expire_on_commit=False so rows
returned from a committed session stay readable in async code.
"""
import logging
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


class Base(DeclarativeBase):
    pass


def _get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        from hookgate.config import get_settings
        settings = get_settings()
        url = make_url(settings.database_url)
        engine_kwargs: dict = {"echo": False}
        if url.get_backend_name() != "sqlite":
            engine_kwargs.update(
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_pre_ping=True,
            )
        _engine = create_async_engine(url, **engine_kwargs)
        logger.info("Database engine created: %s", url.render_as_string(hide_password=True))
    return _engine


def get_session_factory() -> async_sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(_get_engine(), class_=AsyncSession, expire_on_commit=False)
    return _session_factory


async def dispose_engine() -> None:
    """Close pooled connections on shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_factory = None
