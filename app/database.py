"""Async database engine and session management.

Uses SQLAlchemy 2.0 async with the asyncpg driver against the platform's
Postgres. Only transactional server-side work (password reset tokens,
wallet credits) goes through here; collection reads use the REST query layer.

The engine is created lazily so importing the app never needs a database.
Graceful degradation: if Postgres is unavailable, the app keeps serving reads.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.config import settings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_engine(url: str) -> AsyncEngine:
    """Engine with pooling for servers; SQLite URLs get the driver defaults."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine(settings.database_url)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def get_db():
    """FastAPI dependency — yields an async DB session."""
    async with get_session_factory()() as session:
        yield session


async def init_db() -> bool:
    """Create service-owned tables if they don't exist. Returns True on success."""
    from app.models import Base  # noqa: F811

    try:
        async with get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized | url=%s", get_engine().url.render_as_string(hide_password=True))
        return True
    except Exception as e:
        logger.warning("Database unavailable — continuing without persistence: %s", str(e)[:200])
        return False


async def close_db():
    """Dispose engine connections on shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database connections closed")
    _engine = None
    _session_factory = None
