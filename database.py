"""
Database Configuration and Session Management
============================================

Async engine, session factory and table creation for the escrow ledger.

The ledger relies on the store serializing read-check-write sequences per
escrow row. PostgreSQL gets this from SELECT ... FOR UPDATE. SQLite ignores
FOR UPDATE, so SQLite engines open every transaction with BEGIN IMMEDIATE,
which takes the database write lock before the first read.
"""

import logging
from typing import Optional

from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from config import Config
from models import Base

logger = logging.getLogger(__name__)


def _install_sqlite_immediate_begin(engine: AsyncEngine) -> None:
    """Make every SQLite transaction take the write lock up front"""

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        # Stop the driver from emitting its own deferred BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_database_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """Build the async engine for the configured database"""
    url = database_url or Config.DATABASE_URL
    if not url:
        raise ValueError("DATABASE_URL environment variable is required")

    # asyncpg uses 'ssl' instead of 'sslmode'
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        url = url.replace("sslmode=require", "ssl=require")
        url = url.replace("sslmode=prefer", "ssl=prefer")
        url = url.replace("sslmode=disable", "ssl=disable")

    echo = Config.DATABASE_ECHO if echo is None else echo
    backend = make_url(url).get_backend_name()

    if backend == "sqlite":
        engine = create_async_engine(
            url,
            echo=echo,
            poolclass=NullPool,
            connect_args={"timeout": Config.SQLITE_BUSY_TIMEOUT_SECONDS},
        )
        _install_sqlite_immediate_begin(engine)
        logger.info("🗄️ SQLite escrow store configured (BEGIN IMMEDIATE transactions)")
    else:
        engine = create_async_engine(
            url,
            echo=echo,
            pool_size=Config.DATABASE_POOL_SIZE,
            max_overflow=Config.DATABASE_MAX_OVERFLOW,
            pool_pre_ping=True,    # Validate connections before use
            pool_recycle=3600,     # Recycle connections every hour
            pool_timeout=30,
        )
        logger.info(f"🗄️ {backend} escrow store configured (row-level locking)")

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory used by the ledger and the release scheduler"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,  # Results are read after commit
    )


async def create_tables(engine: AsyncEngine) -> bool:
    """Create all escrow tables if they don't exist"""
    try:
        logger.info("🏗️ Creating escrow tables (if they don't exist)...")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"✅ Escrow schema verified: {', '.join(sorted(Base.metadata.tables))}")
        return True
    except Exception as e:
        logger.error(f"❌ Failed to create escrow tables: {e}")
        raise


async def test_connection(engine: AsyncEngine) -> bool:
    """Test database connection"""
    try:
        async with engine.connect() as connection:
            await connection.execute(text("SELECT 1"))
        logger.info("✅ Database connection test successful")
        return True
    except Exception as e:
        logger.error(f"❌ Database connection test failed: {e}")
        return False

