"""Async engine and session factory.

Built on first use rather than at import time so tests (and the CLI) can point
the settings at another database before anything connects.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from pulsefeed.infra.db.base import async_pg_connect_args, normalize_async_pg_url, strip_sslmode
from pulsefeed.settings import settings

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    url = normalize_async_pg_url(database_url)
    kwargs = {"echo": echo, "future": True}
    if url.startswith("postgresql+asyncpg://"):
        kwargs["connect_args"] = async_pg_connect_args(url)
        url = strip_sslmode(url)
    return create_async_engine(url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine(settings.database_url, echo=settings.database_echo)
        logger.info("Database engine created (%s)", _engine.url.render_as_string(hide_password=True))
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
