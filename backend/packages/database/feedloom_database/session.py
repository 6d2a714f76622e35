"""
Database session management.

Holds the process-wide async engine and session factory, configured
once at application startup with ``init_database``.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_database(database_url: str, echo: bool = False) -> async_sessionmaker[AsyncSession]:
    """
    Initialize the database engine and session factory.

    Args:
        database_url: SQLAlchemy async database URL.
        echo: Log SQL statements.

    Returns:
        The session factory.
    """
    global _engine, _session_factory

    _engine = create_async_engine(database_url, echo=echo, pool_pre_ping=True)
    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)
    return _session_factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get the configured session factory.

    Raises:
        RuntimeError: If the database is not initialized.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized")
    return _session_factory


async def close_database() -> None:
    """Dispose of the engine and its connection pool."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
