from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from auction_service.core.config import settings

engine: AsyncEngine | None = None
async_session_maker: async_sessionmaker[AsyncSession] | None = None


class Base(DeclarativeBase):
    pass


def get_engine() -> AsyncEngine:
    """Get or create the async engine.

    Created lazily so the in-memory store never needs a database driver.
    """
    global engine
    if engine is None:
        engine = create_async_engine(
            settings.DATABASE_URL,
            echo=settings.DEBUG,
            pool_size=15,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=180,
            pool_pre_ping=True,
            # Bid admission holds a row lock, keep statements short
            connect_args={
                "prepared_statement_cache_size": 0,
                "command_timeout": 10,
            },
        )
    return engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global async_session_maker
    if async_session_maker is None:
        async_session_maker = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return async_session_maker


async def dispose_engine() -> None:
    global engine, async_session_maker
    if engine is not None:
        await engine.dispose()
        engine = None
        async_session_maker = None
