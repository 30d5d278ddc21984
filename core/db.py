"""
Async database engine and session management.

Purpose:
- Create SQLAlchemy async engine (aiomysql in production, aiosqlite for local dev)
- Provide async session factory for dependency injection
- Provide Base declarative class for ORM models

Production notes:
- Seat exclusivity relies on unique constraints; every writer must go through
  the transport services so those constraints are hit inside one transaction
- pysqlite defers BEGIN until the first write, which lets two approvals read the
  same capacity snapshot. SQLite engines therefore start every transaction with
  BEGIN IMMEDIATE so writers serialize.
"""
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from config.settings import settings
import logging
from typing import Any, AsyncGenerator, Dict, Optional

logger = logging.getLogger(__name__)

Base = declarative_base()


def enable_sqlite_immediate_transactions(async_engine: AsyncEngine) -> None:
    """Take the SQLite write lock at BEGIN instead of at the first write."""
    sync_engine = async_engine.sync_engine

    @event.listens_for(sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def engine_options(url: str) -> Dict[str, Any]:
    """
    Dialect-specific engine options. MySQL defaults to REPEATABLE READ, where a
    waiting approval would count subscriptions from its old snapshot; READ
    COMMITTED makes every statement see the latest committed claims.
    """
    if make_url(url).get_backend_name() == "mysql":
        return {"isolation_level": "READ COMMITTED"}
    return {}


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    new_engine = create_async_engine(url, echo=echo, future=True, **engine_options(url))
    if new_engine.dialect.name == "sqlite":
        enable_sqlite_immediate_transactions(new_engine)
    return new_engine


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: services return ORM rows after commit
    return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


# When DATABASE_URL is "disabled", do not create an engine at all.
engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None

if settings.db_enabled:
    engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
    async_session_maker = build_session_maker(engine)
    logger.info("Async DB engine created for dialect %s", engine.dialect.name)
else:
    logger.warning("DATABASE_URL is 'disabled' – DB engine will not be created.")

async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield an AsyncSession per request. Transport operations need durable
    storage, so a disabled DB is a configuration error rather than a fallback.
    """
    if async_session_maker is None:
        raise RuntimeError("Database is disabled; set DATABASE_URL to use transport endpoints")

    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()
