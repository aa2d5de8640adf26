"""
Database engine configuration for the hosted relational store.

Builds the async SQLAlchemy engine and session factory from Settings.
The privileged service credential is applied as the connection password
of DATABASE_URL, so the URL itself can be shared without the secret.

Unlike a module-level engine, these are created once per process in the
application lifespan and handed to the store gateway.
"""
import logging

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from chat_responder.config import Settings
from chat_responder.db import models  # noqa: F401  registers tables on SQLModel.metadata

logger = logging.getLogger(__name__)


def create_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async engine with connection pooling.

    SQLite URLs (used in tests and local runs) get a single shared
    connection instead of a sized pool.

    Args:
        settings: Service settings with database_url and database_service_key

    Returns:
        AsyncEngine: Configured async engine instance
    """
    url = make_url(settings.database_url)
    if settings.database_service_key and url.get_backend_name() != "sqlite":
        url = url.set(password=settings.database_service_key)

    if url.get_backend_name() == "sqlite":
        return create_async_engine(
            url,
            echo=settings.sql_echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

    return create_async_engine(
        url,
        echo=settings.sql_echo,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=True,  # Verify connections before use
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent attribute expiry after commit
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """
    Create the assistants/chats/messages tables if they don't exist.

    Idempotent; called during startup when DB_CREATE_TABLES is enabled.
    """
    logger.info("Creating database tables if not exists...")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables initialized")


async def check_db_health(engine: AsyncEngine) -> bool:
    """Run ``SELECT 1``; return False if the store is unreachable."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        logger.warning("Database health check failed: %s", exc)
        return False


async def close_db(engine: AsyncEngine) -> None:
    """Dispose of the connection pool."""
    logger.info("Closing database connections...")
    await engine.dispose()
    logger.info("Database connections closed")
