"""Per-process database lifecycle for hosts of the gamification engine.

A host (the arq worker, an API process) calls ``init_db`` once at startup and
hands the returned session factory to ``build_engine``. The SQL repository
opens one short session per operation from it.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from nexus.config import Settings

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Returned rows are read after commit, so nothing may expire.
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(settings: Settings) -> async_sessionmaker[AsyncSession]:
    """Create the process-wide engine from settings and return its session factory."""
    global _engine, _session_factory  # noqa: PLW0603
    if _session_factory is not None:
        return _session_factory

    _engine = create_async_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
        echo=False,
    )
    _session_factory = create_session_factory(_engine)
    return _session_factory


async def close_db() -> None:
    """Dispose of the database engine."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine:
        await _engine.dispose()
    _engine = None
    _session_factory = None
