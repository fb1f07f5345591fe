"""Alembic environment for the BlogX Chat message store.

The database URL comes from ``ALEMBIC_URL`` when set, otherwise from the
application settings, so migrations always target the same database as the
running service.
"""
from __future__ import annotations

import logging
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from blogx_chat.core.settings import settings
from blogx_chat.db.session import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

config.set_main_option(
    "sqlalchemy.url",
    os.getenv("ALEMBIC_URL") or settings.effective_database_url,
)

target_metadata = Base.metadata


def _render_as_batch(url: str) -> bool:
    # SQLite cannot ALTER constraints in place.
    return url.startswith("sqlite")


def run_migrations_offline() -> None:
    """Emit SQL for the message store without a live connection."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=_render_as_batch(url),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations against the configured database."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        logger.info("Migrating %s", connection.engine.url.render_as_string(hide_password=True))
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
