"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine construction (callers own the engine)
- Connection pooling with sane defaults (StaticPool for SQLite)
- Table definitions for durable entitlements
"""
import logging

from sqlalchemy import create_engine, MetaData, Table, Column, String, DateTime, Boolean, Index, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func

logger = logging.getLogger("starsgate")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour


def build_engine(url: str) -> Engine:
    """Create an engine for the given URL.

    SQLite URLs share a single connection so in-memory databases survive
    across sessions; server databases get a bounded pool.
    """
    if url.startswith("sqlite"):
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
        echo=False,  # Set to True for SQL query logging
    )


def create_all_tables(engine: Engine) -> None:
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine)


def check_connection(engine: Engine) -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.warning("Database connection check failed", exc_info=True)
        return False


# Entitlements: one row per paying identity, never updated or deleted
entitlements = Table(
    'entitlements',
    metadata,
    Column('identity', String(64), primary_key=True),
    Column('paid', Boolean, nullable=False, server_default=text('true')),
    Column('granted_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('source', String(32), nullable=False, server_default='webhook'),  # webhook | admin
    Column('charge_id', String(255), nullable=True),
    Index('idx_entitlements_granted_at', 'granted_at'),
)
