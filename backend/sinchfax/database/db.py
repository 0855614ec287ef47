# backend/sinchfax/database/db.py
import logging
import ssl
from contextlib import asynccontextmanager
from typing import AsyncIterator

import certifi
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

# Declarative base used by all models
Base = declarative_base()

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./sinchfax.db"


def resolve_database_url(database_url: str) -> str:
    """
    Validate a DATABASE_URL and fall back to SQLite for development when it
    is missing or malformed.
    """
    url = (database_url or "").strip()

    if url.startswith("postgresql"):
        if "://" not in url:
            logger.warning("DATABASE_URL is missing protocol, falling back to SQLite")
            url = ""
        else:
            connection_part = url.split("://", 1)[1]
            if not connection_part or connection_part.startswith(("/", "@")):
                logger.warning("DATABASE_URL appears malformed (missing hostname), falling back to SQLite")
                url = ""

    if not url:
        logger.info(f"✅ Using SQLite database: {DEFAULT_DATABASE_URL}")
        return DEFAULT_DATABASE_URL

    logger.info(f"✅ Using database: {mask_database_url(url)}")
    return url


def mask_database_url(url: str) -> str:
    """Hide credentials in log output."""
    if "@" not in url or "://" not in url:
        return url
    proto, rest = url.split("://", 1)
    creds, host = rest.rsplit("@", 1)
    if ":" in creds:
        return f"{proto}://****:****@{host}"
    return url


def make_engine(database_url: str) -> AsyncEngine:
    url = resolve_database_url(database_url)

    # TLS for managed Postgres via asyncpg
    connect_args = {}
    if url.startswith("postgresql+asyncpg://"):
        connect_args["ssl"] = ssl.create_default_context(cafile=certifi.where())

    return create_async_engine(
        url,
        pool_pre_ping=True,
        connect_args=connect_args,
        echo=False,
    )


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """
    Create all tables in the database if they don't exist.
    Called once on app startup and before CLI runs.
    """
    # Register model metadata for create_all
    from sinchfax.models import FaxJob, FaxSetting  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("✅ Database tables initialized successfully")
    except Exception as e:
        logger.error(f"❌ ERROR initializing database tables: {e}")
        raise


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """
    Dependency to get a database session.
    Usage: def my_route(db: AsyncSession = Depends(get_db))
    """
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def session_scope(session_factory: async_sessionmaker) -> AsyncIterator[AsyncSession]:
    """
    Session for work outside a request (CLI runs, scheduled polls).

        async with session_scope(factory) as db:
            await FaxService(config, db).poll_incoming_faxes()
    """
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
