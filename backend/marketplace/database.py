"""
Database configuration and session management.
Uses PostgreSQL via asyncpg with SQLAlchemy 2 async engine.
SQLite (aiosqlite) is accepted for local development; Postgres-only DDL is skipped there.
"""

import logging
import ssl
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from marketplace.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def _get_connect_args():
    """Enable SSL for managed Postgres hosts that proxy through rlwy.net."""
    url = settings.database_url
    args = {"timeout": 30}  # Fail fast if DB unreachable
    if "rlwy.net" in url:
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        args["ssl"] = ctx
    return args


def enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """SQLite ignores FOREIGN KEY clauses unless the pragma is set per connection."""

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _create_engine() -> AsyncEngine:
    if settings.is_postgres:
        return create_async_engine(
            settings.database_url,
            echo=False,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
            connect_args=_get_connect_args(),
        )
    sqlite_engine = create_async_engine(settings.database_url, echo=False)
    enable_sqlite_foreign_keys(sqlite_engine)
    return sqlite_engine


engine = _create_engine()

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    """Dependency that provides a database session with auto-commit/rollback."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker:
    """Dependency that hands the lifecycle engine its own session factory."""
    return async_session


async def init_db():
    """
    Create all tables defined in models and install the ads guard trigger.
    create_all only creates tables that don't exist yet.
    """
    # Import models to ensure they are registered with Base.metadata
    import marketplace.models  # noqa: F401
    from marketplace.services.ad_guard import install_guard_triggers

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await install_guard_triggers(conn)

        logger.info(f"Database initialized with {len(Base.metadata.tables)} tables: "
                     f"{', '.join(Base.metadata.tables.keys())}")


async def drop_and_recreate_db():
    """
    Drop all tables and recreate them. Destroys all data.
    Only allowed in development environments.
    """
    if settings.is_production:
        raise RuntimeError(
            "drop_and_recreate_db() is disabled in production. "
            "Use Alembic migrations instead."
        )

    import marketplace.models  # noqa: F401
    from marketplace.services.ad_guard import install_guard_triggers

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
        await install_guard_triggers(conn)
        logger.info("Database dropped and recreated.")


async def check_db_connection() -> bool:
    """Test database connectivity."""
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
