"""
Alembic Migration Environment
===============================

What:  Applies the schema in alembic/versions/ to the configured database.
How:   Online runs go through quillnest.database.Database, the same engine
       wrapper the application uses (SQLite gets its foreign-key pragma).
       Offline runs (`alembic upgrade head --sql`) only render SQL.

Database URL, first match wins:
    alembic -x url=postgresql+asyncpg://... upgrade head
    DATABASE_URL from the environment / .env (quillnest.config)
"""

import asyncio
from logging.config import fileConfig

from alembic import context

from quillnest import models  # noqa: F401  (registers every table)
from quillnest.config import settings
from quillnest.database import Base, Database

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    return context.get_x_argument(as_dictionary=True).get("url") or settings.database_url


def _configure(**kwargs) -> None:
    url = kwargs.pop("url", None)
    connection = kwargs.get("connection")
    dialect = connection.dialect.name if connection is not None else url.split(":", 1)[0]
    context.configure(
        url=url,
        target_metadata=target_metadata,
        compare_type=True,
        # SQLite cannot ALTER most constraints in place
        render_as_batch=dialect.startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline() -> None:
    _configure(url=_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def _run_with_connection(connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    database = Database(_database_url())
    try:
        async with database.engine.connect() as connection:
            await connection.run_sync(_run_with_connection)
    finally:
        await database.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
