"""
Fulfillment Service — Async database engine and session
"""
from collections.abc import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from fulfillment.core.config import get_settings

settings = get_settings()


class Base(DeclarativeBase):
    pass


def _build_engine(url: str):
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=False, connect_args={"timeout": 30})

        # SQLite has no row locks. Taking the write lock at BEGIN makes every
        # transaction serializable, so concurrent reservations queue on the
        # database lock instead of deadlocking on lock upgrade.
        @event.listens_for(engine.sync_engine, "connect")
        def _disable_implicit_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_async_engine(url, echo=False, pool_pre_ping=True)


engine = _build_engine(settings.database_url)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


async def init_models() -> None:
    # Import models so they register on Base.metadata
    from fulfillment import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
