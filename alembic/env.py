"""Alembic environment for the challenge node schema."""
from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlmodel import SQLModel

from challenge_node.db.session import database_url
from challenge_node.db.tables import *  # noqa: F401,F403

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata


def migration_url() -> str:
    # `init_db` hands its engine URL over; CLI runs fall back to the env
    return config.get_main_option("sqlalchemy.url") or database_url()


def _configure_options(url: str) -> dict:
    options = {"target_metadata": target_metadata, "compare_type": True}
    if url.startswith("sqlite"):
        options["render_as_batch"] = True
    return options


def run_migrations_offline() -> None:
    url = migration_url()
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_options(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = migration_url()
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = url

    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_options(url))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
