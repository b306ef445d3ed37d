"""Alembic environment for the ``shieldon_record`` table."""
from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context

import shieldon_core.models  # noqa: F401
from shieldon_core.core.settings import settings
from shieldon_core.db.session import Base, build_engine

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# ALEMBIC_URL overrides SHIELDON_DATABASE_URL.
database_url = os.getenv("ALEMBIC_URL") or settings.database_url


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    context.configure(
        url=database_url,
        target_metadata=Base.metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations through the same engine setup the storage backend uses."""
    engine = build_engine(database_url)
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, target_metadata=Base.metadata)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
