"""Alembic environment for the balance ledger schema.

The default deployment is SQLite, which cannot ALTER most constraints in
place. Migrations that touch ``monthly_balances`` (its unique key and month
check) therefore run in batch mode there, copying the table instead.
"""

import logging
from logging.config import fileConfig
import sys
from pathlib import Path

from sqlalchemy import engine_from_config, pool
from alembic import context

# The service uses a flat layout; make its modules importable from here.
BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))


def _ledger_metadata():
    from database import Base
    import models  # noqa: F401  registers the ledger tables on Base

    return Base.metadata


def _ledger_database_url() -> str:
    from config import get_settings

    return get_settings().database_url


config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

config.set_main_option("sqlalchemy.url", _ledger_database_url())
target_metadata = _ledger_metadata()


def _needs_batch_mode(dialect_name: str) -> bool:
    return dialect_name == "sqlite"


def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    logger.info(f"migrations_offline: url={url}")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=_needs_batch_mode(url.split(":", 1)[0].split("+", 1)[0]),
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
        logger.info(f"migrations_online: dialect={connection.dialect.name}")
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=_needs_batch_mode(connection.dialect.name),
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
