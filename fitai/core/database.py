"""
Database engine, sessions and table definitions.

SQLAlchemy Core only: services build select/insert/update statements against
the Tables below and run them inside get_db_session(). PostgreSQL in
deployment; tests point TEST_DATABASE_URL at a SQLite file.
"""
import logging
import os
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Index, text, false
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.sql import func

from fitai.core.config import settings

logger = logging.getLogger("fitai")

metadata = MetaData()

# Pool sizing for networked databases (ignored for SQLite)
POOL_SIZE = 5
MAX_OVERFLOW = 10
POOL_TIMEOUT = 30
POOL_RECYCLE = 1800

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def get_database_url() -> Optional[str]:
    """TEST_DATABASE_URL wins when set; otherwise DATABASE_URL."""
    return os.getenv("TEST_DATABASE_URL") or settings.TEST_DATABASE_URL or settings.DATABASE_URL


def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": False, "pool_pre_ping": True}
    if make_url(url).get_backend_name() == "sqlite":
        # Request handlers run in FastAPI's threadpool
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
        )
    return options


def init_engine(database_url: Optional[str] = None) -> Engine:
    """(Re)create the engine and session factory, disposing any previous engine."""
    global _engine, _SessionLocal

    url = database_url or get_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not configured. Set DATABASE_URL in the environment or .env file.")

    if _engine is not None:
        _engine.dispose()
    _engine = create_engine(url, **_engine_options(url))
    _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
    logger.info(f"Database engine ready ({make_url(url).get_backend_name()})")
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session() -> Iterator[Session]:
    """
    Unit of work: commits when the block exits cleanly, rolls back and
    re-raises otherwise.

        with get_db_session() as session:
            session.execute(update(profiles).where(...).values(...))
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    """Create missing tables (existing ones are left untouched)."""
    metadata.create_all(bind=get_engine())


def drop_all_tables() -> None:
    """Drop every table. Tests and local resets only."""
    metadata.drop_all(bind=get_engine())


def check_connection() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


# One row per Clerk identity; only the webhook reconciler mutates billing columns
profiles = Table(
    'profiles',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(255), unique=True, nullable=False),
    Column('email', String(320), nullable=False),
    Column('subscription_active', Boolean, nullable=False, default=False, server_default=false()),
    Column('subscription_tier', String(20), nullable=True),
    Column('stripe_subscription_id', String(255), unique=True, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_profiles_created_at', 'created_at'),
)

# Dead-letter log for webhook transitions that failed to persist
webhook_failures = Table(
    'webhook_failures',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_event_id', String(255), nullable=False, index=True),
    Column('event_type', String(100), nullable=False),
    Column('payload', JSON, nullable=False),
    Column('event_created_at', DateTime(timezone=True), nullable=True),
    Column('error_message', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('replayed_at', DateTime(timezone=True), nullable=True),
    Index('idx_webhook_failures_pending', 'replayed_at', 'created_at'),
)
