from __future__ import annotations

import asyncio
import sys
from pathlib import Path

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

# `ebr_api.*` must be importable when alembic is invoked from anywhere
PROJECT_ROOT = Path(__file__).resolve().parents[3]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from ebr_api.db.base import Base  # noqa: E402
from ebr_api.db.config import get_db_settings  # noqa: E402
import ebr_api.db.models  # noqa: E402,F401  registers tables on Base.metadata

config = context.config
db_settings = get_db_settings()
target_metadata = Base.metadata

VERSION_TABLE = "ebr_alembic_version"


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        version_table=VERSION_TABLE,
        compare_type=True,
        compare_server_default=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL to stdout for the configured URL instead of executing it."""
    _configure(
        url=db_settings.sync_database_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Run migrations against the database through the asyncpg driver."""
    connectable = create_async_engine(
        db_settings.async_database_url,
        poolclass=pool.NullPool,
        echo=db_settings.SQL_ECHO,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
