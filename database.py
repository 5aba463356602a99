"""PostgreSQL engine and session construction for the agreement store."""
import time
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str) -> Engine:
    """Create engine with connection pooling and automatic reconnection."""
    return create_engine(
        database_url,
        pool_pre_ping=True,  # Test connections before using them
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,
        connect_args={"connect_timeout": 10},
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def check_connection(engine: Engine, retry_count=3, retry_delay=1):
    """
    Verify database is reachable with retry logic.

    Args:
        engine: Engine to check
        retry_count: Number of retry attempts
        retry_delay: Initial delay between retries (exponential backoff)

    Returns True if connected, False otherwise.
    """
    for attempt in range(retry_count):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            if attempt > 0:
                logger.info(f"Database connection successful after {attempt + 1} attempts")
            return True
        except Exception as e:
            if attempt < retry_count - 1:
                wait_time = retry_delay * (2 ** attempt)
                logger.warning(f"Database connection attempt {attempt + 1} failed: {e}. Retrying in {wait_time}s...")
                time.sleep(wait_time)
            else:
                logger.error(f"Database connection failed after {retry_count} attempts: {e}")
    return False
