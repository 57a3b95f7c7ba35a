"""Database engines and session factories.

WHAT:
    Provides the sync and async SQLAlchemy engines and session factories,
    plus a session context manager for scripts.

WHY:
    - Async sessions: analytics queries; data and count queries run
      concurrently, each on its own pooled connection
    - Sync sessions: scripts such as scripts/check_engagement_query.py

ARCHITECTURE:
    ┌──────────────────┐     ┌───────────────────┐
    │  Sync Engine     │     │  Async Engine     │
    │  (psycopg2)      │     │  (asyncpg)        │
    └────────┬─────────┘     └─────────┬─────────┘
             │                         │
    ┌────────▼─────────┐     ┌─────────▼─────────┐
    │  SessionLocal    │     │ AsyncSessionLocal │
    └────────┬─────────┘     └─────────┬─────────┘
             │                         │
    ┌────────▼─────────┐     ┌─────────▼─────────┐
    │ get_sync_session │     │ QueryExecutor     │
    └──────────────────┘     └───────────────────┘

The analytics engine only reads. No transaction outlives one statement.
"""

import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker


# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================

def _get_database_url() -> str:
    """Get DATABASE_URL from the environment, loading .env if needed.

    Raises:
        RuntimeError: If DATABASE_URL is not configured
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        from engagement_analytics.utils.env import load_env_file
        load_env_file()
        database_url = os.getenv("DATABASE_URL")

    if not database_url:
        raise RuntimeError(
            "DATABASE_URL is not set. "
            "Ensure .env is loaded or the env var is exported."
        )

    return database_url


def _get_async_database_url(sync_url: str) -> str:
    """Convert postgresql:// (or Heroku-style postgres://) to postgresql+asyncpg://."""
    if sync_url.startswith("postgresql://"):
        return sync_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif sync_url.startswith("postgres://"):
        return sync_url.replace("postgres://", "postgresql+asyncpg://", 1)
    return sync_url


DATABASE_URL = _get_database_url()
ASYNC_DATABASE_URL = _get_async_database_url(DATABASE_URL)


# =============================================================================
# SYNC ENGINE
# =============================================================================

# SQLite (tests) does not support pool_size/max_overflow.
if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        DATABASE_URL,
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


# =============================================================================
# ASYNC ENGINE
# =============================================================================

# Only PostgreSQL gets an async engine; the analytics SQL is PostgreSQL-specific.
async_engine = None
AsyncSessionLocal = None
if ASYNC_DATABASE_URL.startswith("postgresql+asyncpg://"):
    async_engine = create_async_engine(
        ASYNC_DATABASE_URL,
        pool_size=10,           # two connections per in-flight request (data + count)
        max_overflow=20,
        pool_recycle=3600,
        pool_pre_ping=True,
        echo=False,
    )

    AsyncSessionLocal = async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


from .models import Base  # noqa: E402,F401


# =============================================================================
# CONTEXT MANAGERS (for scripts)
# =============================================================================

@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

