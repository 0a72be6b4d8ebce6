"""Alembic environment for the CHEER schema."""
from __future__ import annotations

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

# this is the Alembic Config object, which provides
# access to the values within the .ini file in use.
config = context.config

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# Add project root to path so we can import models
import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from database import Base, SQLALCHEMY_DATABASE_URL  # noqa: E402
import models  # noqa: E402,F401  # ensure models are imported for metadata

target_metadata = Base.metadata


def get_url() -> str:
    """An explicit sqlalchemy.url (tests set one) wins over the app's own resolution."""
    return config.get_main_option("sqlalchemy.url") or SQLALCHEMY_DATABASE_URL


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        url=get_url(),
    )

    with connectable.connect() as connection:
        # Batch mode lets ALTERs work on SQLite
        context.configure(connection=connection, target_metadata=target_metadata, render_as_batch=True)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
