"""
Database configuration and session management.

The gateway only reads from the main application's database (sessions and
conversation participants), so the engine is created lazily on first use
and sized small.
"""

from functools import lru_cache

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from lovculator_shared.config.logging import get_logger
from lovculator_shared.config.settings import settings

logger = get_logger(__name__)


@lru_cache
def get_engine() -> Engine:
    """Create the engine on first use."""
    engine = create_engine(
        settings.database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=5,
        max_overflow=5,
        pool_timeout=10,
        pool_recycle=1800,
        echo=False,
    )
    logger.info("Database engine created", dialect=engine.dialect.name)
    return engine


@lru_cache
def get_session_factory() -> sessionmaker[Session]:
    """Session factory bound to the lazily created engine."""
    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False)


def dispose_engine() -> None:
    """Release pooled connections on shutdown (no-op if never used)."""
    if get_engine.cache_info().currsize:
        get_engine().dispose()
        logger.info("Database engine disposed")
