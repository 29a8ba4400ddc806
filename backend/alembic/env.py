"""Migrations for the portal's SQL storage mode.

The database URL comes from ``-x database_url=...`` when given, otherwise from
the same settings the service reads (``DATABASE_URL`` / ``.env``).
"""

import asyncio
import logging
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

import offer_portal.access.models  # noqa: F401
import offer_portal.documents.models  # noqa: F401
from offer_portal.config import Settings
from offer_portal.database import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")


def _database_url() -> str:
    override = context.get_x_argument(as_dictionary=True).get("database_url")
    return override or Settings().database_url


DATABASE_URL = _database_url()


def _configure(**kwargs) -> None:
    # SQLite cannot ALTER most column properties in place.
    context.configure(
        target_metadata=Base.metadata,
        render_as_batch="sqlite" in DATABASE_URL,
        compare_type=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    _configure(
        url=DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_on_connection(connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_async_engine(DATABASE_URL, poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_on_connection)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    logger.info("Migrating portal tables on %s", DATABASE_URL.split("://", 1)[0])
    asyncio.run(run_migrations_online())
