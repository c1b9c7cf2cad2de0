"""Alembic environment for the certificate pipeline schema.

The database URL comes from DATABASE_URL (via medcerts.config), never from
alembic.ini, so migrations and the application always target the same
database.
"""

from logging.config import fileConfig

from sqlalchemy import pool
from sqlmodel import SQLModel, create_engine

from alembic import context

import medcerts.models  # noqa: F401  (registers every table on SQLModel.metadata)
from medcerts.config import get_settings
from medcerts.db.session import connect_args_for, normalize_database_url

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata

database_url = normalize_database_url(get_settings().DATABASE_URL)


def run_migrations_offline() -> None:
    """Emit migration SQL to the script output without connecting."""
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a dedicated, unpooled connection."""
    connectable = create_engine(
        database_url,
        poolclass=pool.NullPool,
        connect_args=connect_args_for(database_url),
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
