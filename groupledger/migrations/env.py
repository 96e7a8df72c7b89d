"""
groupledger/migrations/env.py — Alembic environment.

Uses DATABASE_URL, or TEST_DATABASE_URL when TEST_RUN=1, from the environment
or the .env file next to groupledger/.
"""

from __future__ import annotations

import os
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from groupledger.app.extensions import db  # noqa: E402
from groupledger.app.models import (  # noqa: E402,F401
    balance,
    expense,
    expense_split,
    group,
    membership,
    settlement,
    user,
)

target_metadata = db.metadata

db_url = os.environ["TEST_DATABASE_URL"] if os.getenv("TEST_RUN") else os.environ["DATABASE_URL"]
if db_url.startswith("postgres://"):
    db_url = db_url.replace("postgres://", "postgresql://", 1)

config = context.config
config.set_main_option("sqlalchemy.url", db_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def run_migrations_offline() -> None:
    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
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
