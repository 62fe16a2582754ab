"""Alembic migration environment for the regportal schema.

The database URL comes from REGPORTAL_DATABASE__URL (through the settings
layer) unless alembic.ini overrides sqlalchemy.url. Migrations always run
through the synchronous psycopg driver.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from regportal.db import async_database_url
from regportal.db.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    """Resolve the migration URL.

    Priority:
    1. sqlalchemy.url from alembic.ini (when set)
    2. REGPORTAL_DATABASE__URL via the settings layer
    """
    url = config.get_main_option("sqlalchemy.url", "")
    if not url:
        from regportal.core.settings import get_settings

        url = str(get_settings().database.url)
    return async_database_url(url)


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting to the database."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live connection."""
    # NullPool: migration connections are closed as soon as they are released
    connectable = create_engine(get_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
