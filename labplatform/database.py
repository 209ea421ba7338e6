"""Database connection and session handling."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from labplatform.config import get_settings
from labplatform.models import Base


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create the async engine (defaults to DATABASE_URL from settings)."""
    return create_async_engine(database_url or get_settings().database_url, echo=False)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

