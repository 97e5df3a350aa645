"""
LPG Tank Monitor - Database Configuration
Async SQLAlchemy with PostgreSQL
"""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from lpg_monitor.core.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_pre_ping=True,
    pool_size=10,
)

# Session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class DatabaseStatus:
    """Outcome of the last connectivity probe, reported by /health."""

    def __init__(self):
        self.available = False
        self.last_error: str | None = None

    async def probe(self, session_maker=async_session_maker) -> bool:
        try:
            async with session_maker() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            self.available = False
            self.last_error = str(e)
            logger.warning(f"Postgres: connection failed: {e}")
            return False

        self.available = True
        self.last_error = None
        logger.info("Postgres: connected successfully")
        return True


db_status = DatabaseStatus()

