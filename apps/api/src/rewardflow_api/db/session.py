"""Async engine and session factory shared by the API and Celery workers."""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from rewardflow_api.core.settings import settings


def _install_sqlite_immediate_transactions(engine: AsyncEngine) -> None:
    # pysqlite defers BEGIN until the first write, which lets two claims read the
    # same "available" card. Taking the write lock up front serializes them.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record) -> None:  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn) -> None:  # noqa: ANN001
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine; SQLite URLs get immediate-mode transactions."""

    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        engine = create_async_engine(
            database_url,
            echo=echo,
            future=True,
            connect_args={"timeout": 30},
        )
        _install_sqlite_immediate_transactions(engine)
        return engine

    return create_async_engine(database_url, echo=echo, future=True, pool_pre_ping=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


engine = build_engine(settings.database_url, echo=settings.database_echo)
async_session = build_session_factory(engine)


__all__ = ["async_session", "build_engine", "build_session_factory", "engine"]
