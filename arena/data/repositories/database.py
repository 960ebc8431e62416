from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from arena.config import Config

async_engine = create_async_engine(url=Config.ARENA_DB_URL)

async_session_factory = async_sessionmaker(
    bind=async_engine, class_=AsyncSession, expire_on_commit=False
)


async def init_db() -> None:
    """
    Initializes the arena database.
    """
    # Register every table on the metadata before create_all
    import arena.data.schemas  # noqa: F401

    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get an async session for the arena database.
    """
    async with async_session_factory() as session:
        yield session


def get_session_factory() -> async_sessionmaker:
    """
    Dependency for code that opens its own sessions (one per match during a poll pass).
    """
    return async_session_factory
