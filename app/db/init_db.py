import logging
from sqlalchemy.ext.asyncio import AsyncEngine

from app.db.base import Base
import app.db.models  # noqa: F401  registers every model on Base.metadata

logger = logging.getLogger(__name__)


async def init_db(engine: AsyncEngine) -> None:
    """Create the quota and audit tables if they don't exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")
