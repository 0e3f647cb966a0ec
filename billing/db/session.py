"""Engine and session factory shared by the API, the ARQ worker and the CLI.

PostgreSQL (asyncpg) in production; SQLite (aiosqlite) for local runs and the
test suite. ``Settings`` already normalizes the URL to an async driver.
"""

from collections.abc import AsyncGenerator
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from billing.config import get_settings

settings = get_settings()


def _build_engine(url: str):
    if not url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.debug, pool_pre_ping=True)

    db_file = url.split("///")[-1]
    if db_file and db_file != ":memory:":
        Path(db_file).parent.mkdir(parents=True, exist_ok=True)
    return create_async_engine(url, echo=settings.debug, connect_args={"check_same_thread": False})


engine = _build_engine(settings.database_url)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session for routes; callers commit or roll back themselves."""
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
