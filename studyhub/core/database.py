"""
Database configuration for the SQL-backed entitlement store.

This module provides:
- the entitlements table definition
- engine construction with sane pooling defaults (sqlite gets a static pool)
- idempotent table creation and a connectivity probe
"""
from sqlalchemy import create_engine, MetaData, Table, Column, String, DateTime, Boolean, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.exc import SQLAlchemyError


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour


entitlements = Table(
    "entitlements",
    metadata,
    Column("subject_id", String(128), primary_key=True),
    Column("email", String(320), nullable=True),
    Column("is_premium", Boolean, nullable=False, default=False),
    Column("payment_account_id", String(255), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=True),
)


def build_engine(database_url: str) -> Engine:
    """
    Create an engine for database_url.

    In-memory sqlite shares one connection across threads so every session
    sees the same database.
    """
    if not database_url:
        raise ValueError("DATABASE_URL is not configured.")

    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )

    return create_engine(
        database_url,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
        echo=False,  # Set to True for SQL query logging
    )


def create_all_tables(engine: Engine) -> None:
    """Create all tables defined in metadata. Existing tables are left alone."""
    metadata.create_all(bind=engine)


def check_connection(engine: Engine) -> bool:
    """Return True when a trivial query succeeds."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False
