"""
Local database configuration using SQLAlchemy with async support.
Backs the session-recovery store; see session_store.py.
"""
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from quiz_client.constants import DATABASE_URL

# Base class for models
Base = declarative_base()


def normalize_database_url(url: str) -> str:
    """Plain sqlite:// URLs need the async driver."""
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def create_engine(url: str = DATABASE_URL, echo: bool = False) -> AsyncEngine:
    return create_async_engine(normalize_database_url(url), echo=echo, future=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create tables if they do not exist yet."""
    # Import models to register them with Base.metadata
    from quiz_client import db_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
