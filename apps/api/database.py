# database.py
# Async engine, session factory and transaction helpers for the ledger store.

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import settings
from services.errors import LedgerTimeout

logger = logging.getLogger(__name__)

Base = declarative_base()


def configure_engine(engine: AsyncEngine) -> AsyncEngine:
    """Apply store-specific transaction semantics to an engine.

    SQLite has no row locks, so every transaction is opened with
    BEGIN IMMEDIATE: writers serialise on the database lock instead of
    failing when two readers later try to upgrade. The pysqlite driver's own
    BEGIN handling is disabled so SAVEPOINTs work as expected.
    """
    if engine.dialect.name != "sqlite":
        return engine

    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    url = url or settings.DATABASE_URL
    kwargs = {"echo": False}
    if url.startswith("postgresql"):
        kwargs.update(pool_size=20, pool_recycle=1800, pool_pre_ping=True)
    return configure_engine(create_async_engine(url, **kwargs))


engine = build_engine()

async_session_maker = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with async_session_maker() as db:
        yield db


@asynccontextmanager
async def atomic(db: AsyncSession, timeout_seconds: Optional[float] = None) -> AsyncIterator[AsyncSession]:
    """Run a block as one all-or-nothing store transaction.

    Commits when the block exits cleanly, rolls back on any exception, and
    rolls back with ``LedgerTimeout`` when the block (commit included) does
    not finish within the configured bound.
    """
    timeout = timeout_seconds if timeout_seconds is not None else settings.LEDGER_TX_TIMEOUT_SECONDS
    try:
        async with asyncio.timeout(timeout if timeout and timeout > 0 else None):
            yield db
            await db.commit()
    except TimeoutError as exc:
        await db.rollback()
        logger.error("Ledger transaction exceeded %.1fs and was rolled back", timeout)
        raise LedgerTimeout(f"Ledger transaction did not complete within {timeout} seconds") from exc
    except Exception:
        await db.rollback()
        raise
