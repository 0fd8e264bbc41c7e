"""Alembic environment: migrates the catalog database through the app's async engine."""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection

from catalog_export.core.config import get_settings
from catalog_export.core.database import create_engine, dispose_engine
from catalog_export.models import ExportJob, Product  # noqa: F401
from catalog_export.models.base import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    # sqlalchemy.url set on the Config (e.g. by tests) wins over DATABASE_URL
    return config.get_main_option("sqlalchemy.url") or get_settings().database_url


def _configure_and_run(**options: object) -> None:
    context.configure(target_metadata=target_metadata, compare_type=True, **options)
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection) -> None:
    # SQLite cannot ALTER most constraints in place; batch mode copies the table.
    _configure_and_run(connection=connection, render_as_batch=connection.dialect.name == "sqlite")


async def _migrate_online() -> None:
    engine = create_engine(_database_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await dispose_engine(engine)


if context.is_offline_mode():
    _configure_and_run(url=_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
else:
    asyncio.run(_migrate_online())
