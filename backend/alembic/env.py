"""Alembic environment configuration."""
import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from pulsefeed.settings import settings
from pulsefeed.infra.db.base import (
    Base,
    async_pg_connect_args,
    normalize_async_pg_url,
    strip_sslmode,
)
from pulsefeed.infra.db import models  # noqa: F401

# this is the Alembic Config object
config = context.config

# Same URL normalization as the app (asyncpg driver, sslmode moved into connect_args).
_db_url = normalize_async_pg_url(settings.database_url)
config.set_main_option("sqlalchemy.url", strip_sslmode(_db_url))
_db_connect_args = async_pg_connect_args(_db_url)

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    """Run migrations with connection."""
    context.configure(connection=connection, target_metadata=target_metadata)

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Run migrations in 'online' mode using an async engine."""
    connectable = create_async_engine(
        strip_sslmode(_db_url),
        connect_args=_db_connect_args,
        poolclass=pool.NullPool,
        future=True,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
