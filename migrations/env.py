# migrations/env.py
from __future__ import annotations

import os
import sys
from pathlib import Path
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool, text

# 1. Настройка путей, чтобы Alembic видел модели
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.append(str(ROOT_DIR))

# 2. Конфигурация Alembic и логирования
config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name)

# 3. Импорт моделей для поддержки Autogenerate (пакет регистрирует все таблицы в metadata)
from libs.domain.orm.base import Base
import libs.domain.orm.auth  # noqa: F401,E402

target_metadata = Base.metadata


def get_db_url() -> str:
    """URL берётся из DATABASE_URL; миграции идут через синхронный драйвер."""
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        raise RuntimeError("Переменная окружения DATABASE_URL не установлена!")

    if "+asyncpg" in db_url:
        return db_url.replace("+asyncpg", "+psycopg2")
    if "+aiosqlite" in db_url:
        return db_url.replace("+aiosqlite", "")
    return db_url


def get_schema() -> str | None:
    schema = context.get_x_argument(as_dictionary=True).get("schema") or os.getenv("DB_SCHEMA")
    return schema or None


def run_migrations_offline() -> None:
    """Генерация SQL без подключения: alembic upgrade head --sql."""
    context.configure(
        url=get_db_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        version_table_schema=get_schema(),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    db_url = get_db_url()
    schema = get_schema()
    connectable = create_engine(db_url, poolclass=pool.NullPool)
    is_postgres = db_url.startswith("postgresql")

    with connectable.connect() as connection:
        if is_postgres and schema:
            conn_autocommit = connection.execution_options(isolation_level="AUTOCOMMIT")
            with conn_autocommit.begin():
                conn_autocommit.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{schema}"'))

        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            version_table_schema=schema if is_postgres else None,
            include_schemas=is_postgres,
            compare_type=True,
            render_as_batch=not is_postgres,
        )

        with context.begin_transaction():
            if is_postgres and schema:
                context.execute(text(f'SET search_path TO "{schema}", public'))
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
