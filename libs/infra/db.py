# libs/infra/db.py
from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy import text, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

log = logging.getLogger(__name__)


def build_engine(database_url: str, *, schema: str | None = None, echo: bool = False) -> AsyncEngine:
    """
    Создаёт AsyncEngine. Для PostgreSQL (asyncpg) сразу задаётся search_path,
    поэтому ORM-модели объявлены без явной схемы.
    """
    connect_args: Dict[str, Any] = {}
    is_postgres = database_url.startswith("postgresql")
    if is_postgres and schema:
        # asyncpg понимает server_settings → задаём search_path сразу.
        connect_args = {"server_settings": {"search_path": f"{schema},public"}}

    engine = create_async_engine(
        database_url,
        echo=echo,
        poolclass=NullPool,
        pool_pre_ping=True,
        connect_args=connect_args,
    )

    if database_url.startswith("sqlite"):
        # В SQLite внешние ключи выключены по умолчанию
        @event.listens_for(engine.sync_engine, "connect")
        def _enable_sqlite_fk(dbapi_conn, _):  # type: ignore[no-untyped-def]
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def check_db_connection(engine: AsyncEngine) -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError):
        log.exception("DB readiness check failed")
        return False


__all__ = [
    "build_engine",
    "build_session_factory",
    "check_db_connection",
]
