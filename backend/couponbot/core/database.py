"""
Database utilities and connection management.

WHAT: SQLite database setup with WAL mode
WHY: Conversations are checkpointed after every mutation and must survive restarts
HOW: SQLAlchemy 2 sync engine with WAL mode, session factory, context-managed sessions
"""

from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a SQLite engine with WAL and FK pragmas on every connection.

    Args:
        database_url: SQLAlchemy URL (sqlite:///path)
        echo: Log SQL statements

    Returns:
        Configured Engine
    """
    if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
        Path(database_url.replace("sqlite:///", "")).parent.mkdir(parents=True, exist_ok=True)

    new_engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
        echo=echo,
    )

    @event.listens_for(new_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        """Enable WAL mode for better concurrency."""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return new_engine


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, expire_on_commit=False, autoflush=False, autocommit=False)


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

# Session factory
SessionLocal = build_session_factory(engine)

# Base for models
Base = declarative_base()


@contextmanager
def get_db(session_factory: sessionmaker = SessionLocal):
    """
    Context manager for database session.

    Usage:
        with get_db() as db:
            # use db session
            pass

    Yields:
        Session: SQLAlchemy session, committed on success, rolled back on error
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ping_database() -> dict:
    """
    Check database connectivity.

    Returns:
        Dict with status and info
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"available": True, "url": settings.DATABASE_URL, "error": None}
    except Exception as e:
        logger.error(f"Database ping failed: {e}")
        return {"available": False, "url": settings.DATABASE_URL, "error": str(e)}


def init_db(bind: Engine = engine):
    """Create all tables."""
    # Import models so they register on Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind)
    logger.info("Database initialized with WAL mode")


def close_db():
    """Close database connections."""
    engine.dispose()
    logger.info("Database connections closed")
