from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from labplatform.config import Settings
from labplatform.database import create_engine, create_session_maker, init_models


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'labplatform.db'}",
        terraform_work_dir=str(tmp_path / "terraform"),
        git_work_dir=str(tmp_path / "git"),
        max_concurrent_provisioning=2,
    )


@pytest.fixture
async def db_engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_engine(settings.database_url)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_maker(db_engine)
