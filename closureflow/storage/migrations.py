"""Schema setup and backend-specific tuning."""

from sqlalchemy import text

from .database import Database
from ..core.logging import get_logger

logger = get_logger(__name__)


def optimize_sqlite(database: Database) -> None:
    """Enable WAL journaling for file-backed SQLite databases."""
    url = str(database.engine.url)
    if not url.startswith("sqlite") or ":memory:" in url or url == "sqlite://":
        return

    with database.engine.connect() as connection:
        connection.execute(text("PRAGMA journal_mode=WAL"))
        connection.execute(text("PRAGMA optimize"))
        connection.commit()
    logger.info("Applied SQLite optimizations")


def run_migrations(database: Database) -> None:
    """Create missing tables and indexes, then apply backend tuning."""
    try:
        logger.info("Starting database migrations")
        database.create_tables()
        optimize_sqlite(database)
        logger.info("Database migrations completed successfully")
    except Exception as e:
        logger.error(f"Database migrations failed: {str(e)}")
        raise
