import os
from logging.config import fileConfig
from sqlalchemy import pool
from alembic import context

# --- 1. Import Base and register every model on its metadata ---
from app.db.base import Base
import app.models  # noqa: F401
from app.core.config import get_settings
from app.db.session import build_engine

# this is the Alembic Config object
config = context.config

# --- 2. DATABASE_URL from the environment, else the app settings ---
database_url = os.getenv("DATABASE_URL") or get_settings().database_url

# Override the ini file's URL
config.set_main_option("sqlalchemy.url", database_url)

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Set the metadata for 'autogenerate' support
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


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = build_engine(config.get_main_option("sqlalchemy.url"), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
