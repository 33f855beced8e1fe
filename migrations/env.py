"""
Alembic environment for the reminder worker schema.

Revisions pin events, households, reminder_state and the two message-log
tables declared in *db/db.py*. Migrations run on the same asyncpg driver the
worker uses; ``alembic upgrade --sql`` renders the DDL without connecting.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from db.db import Base, _build_url

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _migration_url() -> str:
    """Worker's DATABASE_URL (rewritten for asyncpg), else ``sqlalchemy.url``."""
    try:
        return _build_url()
    except RuntimeError:
        url = config.get_main_option("sqlalchemy.url")
        if not url:
            raise RuntimeError("DATABASE_URL not set and alembic.ini has no sqlalchemy.url")
        return url


def run_migrations_offline() -> None:
    context.configure(
        url=_migration_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _apply(sync_conn) -> None:
    # compare_type so autogenerate notices timestamptz / text drift on reminder_state
    context.configure(connection=sync_conn, target_metadata=target_metadata, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    # NullPool: one connection for the upgrade, nothing left pooled afterwards.
    engine = create_async_engine(_migration_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as conn:
            await conn.run_sync(_apply)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
