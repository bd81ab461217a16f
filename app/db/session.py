from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from app.core import config


def create_engine(database_url: str = None) -> AsyncEngine:
    """Create the async engine for the configured database."""
    return create_async_engine(database_url or config.DATABASE_URL, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory shared by the quota ledger and the audit log."""
    # Rows are handed back to callers after commit; keep their attributes loaded
    return async_sessionmaker(engine, autoflush=False, expire_on_commit=False)
