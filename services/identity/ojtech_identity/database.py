from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ojtech_shared.database.postgres import get_async_session_factory

_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_db(database_url: str) -> async_sessionmaker[AsyncSession]:
    global _session_factory
    _session_factory = get_async_session_factory(database_url, expire_on_commit=False)
    return _session_factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database not initialized")
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """One session per request: commit on success, roll back on any failure."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
