"""
Database Initialization

Creates the SQLite tables for PayBridge and exposes the async session
factory used by the FastAPI dependencies.
Tables: transactions, payouts, reconciliation_anomalies
"""
from pathlib import Path
from typing import AsyncGenerator
import asyncio
import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker

from ..config import settings
from .models import Base

logger = logging.getLogger(__name__)


def build_engine(database_path: str) -> AsyncEngine:
    """
    Create async engine with settings tuned for concurrent writers.

    The busy timeout lets a losing compare-and-set wait for the winner's
    commit instead of failing with "database is locked".
    """
    return create_async_engine(
        f"sqlite+aiosqlite:///{database_path}",
        echo=False,
        future=True,
        connect_args={
            "timeout": 30,  # 30 second timeout for lock acquisition
            "check_same_thread": False
        },
        pool_pre_ping=True,
        pool_recycle=3600
    )


async def create_tables(target_engine: AsyncEngine) -> None:
    """
    Create all tables and enable WAL mode.
    """
    # journal_mode cannot change inside a transaction, so pragmas go first
    async with target_engine.connect() as conn:
        await conn.exec_driver_sql("PRAGMA journal_mode=WAL")
        await conn.exec_driver_sql("PRAGMA synchronous=NORMAL")

    async with target_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def initialize_database(target_engine: AsyncEngine = None) -> None:
    """
    Initialize the database with all required tables.

    This function is called during FastAPI startup.
    """
    db_path = Path(settings.database_path)
    logger.info(f"Initializing database at: {db_path}")

    # Create database directory if it doesn't exist
    db_path.parent.mkdir(parents=True, exist_ok=True)

    await create_tables(target_engine or engine)
    logger.info(f"Database initialized successfully at {db_path}")


# ============================================================================
# SQLAlchemy Async Session Setup for FastAPI
# ============================================================================

engine = build_engine(settings.database_path)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions in FastAPI.

    Usage:
        @app.get("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_async_session)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


# Alias for FastAPI Depends
get_db = get_async_session


def main():
    """CLI entry point for initializing database."""
    logging.basicConfig(level=logging.INFO)
    asyncio.run(initialize_database())


if __name__ == "__main__":
    main()
