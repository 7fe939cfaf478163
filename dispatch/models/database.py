"""
Database base and connection setup.
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine, AsyncEngine
from sqlalchemy.orm import declarative_base
from typing import Optional
from dispatch.core.config import settings

Base = declarative_base()


# Database connection (lazy initialization)
engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker] = None


def create_engine_and_sessions(database_url: str) -> tuple[AsyncEngine, async_sessionmaker]:
    """
    Build an async engine and its session factory.

    Pool sizing only applies to server databases; SQLite keeps the
    dialect defaults.
    """
    options = {"echo": False, "future": True}
    if not database_url.startswith("sqlite"):
        options.update(
            pool_size=20,  # Max persistent connections
            max_overflow=10,  # Additional connections when pool exhausted
            pool_timeout=30,  # Seconds to wait for connection
            pool_recycle=3600,  # Recycle connections after 1 hour
            pool_pre_ping=True,  # Verify connections before use
        )
    new_engine = create_async_engine(database_url, **options)
    session_maker = async_sessionmaker(new_engine, class_=AsyncSession, expire_on_commit=False)
    return new_engine, session_maker


def init_engine():
    """Initialize the global database engine lazily."""
    global engine, async_session_maker
    if engine is None:
        engine, async_session_maker = create_engine_and_sessions(settings.database_url)
    return engine


async def dispose_engine():
    """Dispose the global engine (shutdown)."""
    global engine, async_session_maker
    if engine is not None:
        await engine.dispose()
    engine = None
    async_session_maker = None


async def create_tables(target_engine: AsyncEngine):
    """Create all tables on the given engine."""
    # Register every mapped class on Base.metadata
    from dispatch.models import ticket, employee, derivation, audit  # noqa: F401

    async with target_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db():
    """Initialize database tables."""
    await create_tables(init_engine())
