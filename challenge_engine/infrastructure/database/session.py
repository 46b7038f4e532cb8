"""Process-wide async engine and session factory for the SQL store."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from challenge_engine.config import EngineSettings, get_settings
from challenge_engine.infrastructure.database.models import Base
from challenge_engine.shared.utils.logging import get_logger

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def normalize_database_url(url: str) -> str:
    """Rewrite ``postgres://`` and ``postgresql://`` URLs to the asyncpg driver."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def get_engine(settings: EngineSettings | None = None) -> AsyncEngine:
    """Create the engine on first use. Connections open lazily."""
    global _engine
    if _engine is None:
        settings = settings or get_settings()
        _engine = create_async_engine(
            normalize_database_url(settings.database_url),
            echo=settings.database_echo,
            pool_size=settings.database_pool_size,
            pool_pre_ping=True,
        )
    return _engine


def get_session_factory(settings: EngineSettings | None = None) -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(settings), expire_on_commit=False)
    return _session_factory


async def init_db(settings: EngineSettings | None = None) -> None:
    """Create any missing challenge tables.

    Fails the application start when the database is unreachable.
    """
    async with get_engine(settings).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_ready", tables=sorted(Base.metadata.tables))


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("database_closed")
