from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

import loyaltymart_api.models  # noqa: F401
from loyaltymart_api.core.settings import settings
from loyaltymart_api.db.base import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_database_url() -> str:
    """Mart database by default; ``alembic -x service=accrual upgrade head`` targets the accrual one."""
    service = context.get_x_argument(as_dictionary=True).get("service", "mart")
    if service not in ("mart", "accrual"):
        raise ValueError(f"Unknown service {service!r}; expected mart or accrual")
    return settings.accrual_database_url if service == "accrual" else settings.database_url


def run_migrations_offline() -> None:
    context.configure(url=get_database_url(), target_metadata=target_metadata, literal_binds=True)

    with context.begin_transaction():
        context.run_migrations()


def _run_sync_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    # Same async drivers as the services (asyncpg / aiosqlite).
    engine = create_async_engine(get_database_url(), poolclass=pool.NullPool)
    async with engine.connect() as connection:
        await connection.run_sync(_run_sync_migrations)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
