from __future__ import annotations

import os
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlmodel import SQLModel


BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

# Ensure SQLModel metadata is populated.
import sql_store  # noqa: F401,E402

config = context.config

# In-process upgrades (app startup) keep the application logging setup.
if (
    config.attributes.get("configure_logger", True)
    and config.config_file_name is not None
    and Path(config.config_file_name).is_file()
):
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def _sync_database_url(url: str) -> str:
    u = str(url or "").strip()
    if u.startswith("mysql://"):
        return "mysql+pymysql://" + u[len("mysql://") :]
    if u.startswith("mysql+aiomysql://"):
        return "mysql+pymysql://" + u[len("mysql+aiomysql://") :]
    if u.startswith("sqlite+aiosqlite:"):
        return "sqlite:" + u[len("sqlite+aiosqlite:") :]
    return u


db_url = config.get_main_option("sqlalchemy.url") or os.environ.get("DATABASE_URL")
if db_url:
    config.set_main_option("sqlalchemy.url", _sync_database_url(db_url))

target_metadata = SQLModel.metadata


def _is_sqlite(url: str | None) -> bool:
    return str(url or "").startswith("sqlite")


def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        render_as_batch=_is_sqlite(url),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
