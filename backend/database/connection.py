"""
Database Connection Management
Async SQLAlchemy engine: aiosqlite by default, asyncpg for PostgreSQL
"""
from pathlib import Path
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from loguru import logger

from .models import Base
from config import settings

# Async engine
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def is_row_locking_backend(url: str) -> bool:
    """True if the backend supports SELECT ... FOR UPDATE SKIP LOCKED"""
    return make_url(url).get_backend_name() == "postgresql"


def _use_immediate_transactions(engine: AsyncEngine):
    """
    Take the SQLite write lock when a transaction begins.
    Concurrent writers then wait on the busy timeout instead of failing with
    "database is locked" when both try to upgrade a read lock.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with backend-appropriate options"""
    parsed = make_url(url)

    if parsed.get_backend_name() == "sqlite":
        database = parsed.database or ""
        if database in ("", ":memory:"):
            # In-memory databases only exist per connection
            return create_async_engine(
                url,
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )

        Path(database).parent.mkdir(parents=True, exist_ok=True)
        return _use_immediate_transactions(create_async_engine(
            url,
            echo=echo,
            # Writers wait on the SQLite lock instead of failing immediately
            connect_args={"check_same_thread": False, "timeout": 30},
        ))

    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    """Get or create async engine"""
    global _engine
    if _engine is None:
        logger.info(f"Creating database engine: {make_url(settings.DATABASE_URL).render_as_string(hide_password=True)}")
        _engine = create_engine_for_url(settings.DATABASE_URL)
    return _engine


def get_session_factory() -> async_sessionmaker:
    """Get or create session factory"""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


async def create_tables(engine: AsyncEngine):
    """Create tables if they do not exist"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db():
    """Initialize database - create tables if not exist"""
    await create_tables(get_engine())
    logger.info("Database initialized successfully")


async def close_db():
    """Close database connection"""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
    logger.info("Database connection closed")


@asynccontextmanager
async def transaction(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """
    Open a session and run the block as one transaction.
    Commits on success; rolls back and re-raises on any error.
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except BaseException as e:
            await session.rollback()
            logger.error(f"Transaction rolled back: {e!r}")
            raise


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session as a transactional async context manager"""
    async with transaction(get_session_factory()) as session:
        yield session
