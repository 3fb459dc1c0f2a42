from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Union
from uuid import UUID

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_db_settings


_ENGINE: AsyncEngine | None = None
_SESSION_MAKER: async_sessionmaker[AsyncSession] | None = None


def _ensure_engine_initialized() -> None:
    """
    Lazily initialize the AsyncEngine and session maker.
    """
    global _ENGINE, _SESSION_MAKER
    if _ENGINE is None:
        settings = get_db_settings()
        pool_options = {}
        if settings.is_postgres:
            pool_options = {
                "pool_size": settings.DB_POOL_SIZE,
                "max_overflow": settings.DB_MAX_OVERFLOW,
                "pool_recycle": settings.DB_POOL_RECYCLE_SECONDS,
            }
        _ENGINE = create_async_engine(
            settings.async_database_url,
            echo=settings.SQL_ECHO,
            pool_pre_ping=True,
            **pool_options,
        )
    if _SESSION_MAKER is None:
        _SESSION_MAKER = async_sessionmaker(
            bind=_ENGINE, expire_on_commit=False, autoflush=False, autocommit=False
        )


# PUBLIC_INTERFACE
def get_engine() -> AsyncEngine:
    """Return the global AsyncEngine instance."""
    _ensure_engine_initialized()
    assert _ENGINE is not None
    return _ENGINE


# PUBLIC_INTERFACE
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Return the global session factory."""
    _ensure_engine_initialized()
    assert _SESSION_MAKER is not None
    return _SESSION_MAKER


# PUBLIC_INTERFACE
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield an AsyncSession suitable for FastAPI dependency injection.
    Ensures engine/session factory is initialized.
    """
    async with get_session_maker()() as session:
        yield session


def _is_postgres(session: AsyncSession) -> bool:
    bind = session.get_bind()
    return bind.dialect.name == "postgresql"


# PUBLIC_INTERFACE
async def set_current_tenant(
    session: AsyncSession, tenant_id: Union[str, UUID]
) -> None:
    """
    Set the current tenant for the current transaction using a custom GUC.

    This enables Row-Level Security (RLS) policies that reference:
      current_setting('app.tenant_id', true)

    No-op on databases other than PostgreSQL; the application predicates still apply.
    """
    if not _is_postgres(session):
        return
    await session.execute(
        text("SELECT set_config('app.tenant_id', :tenant_id, true);"),
        {"tenant_id": str(tenant_id)},
    )


# PUBLIC_INTERFACE
@asynccontextmanager
async def tenant_context(
    session: AsyncSession, tenant_id: Union[str, UUID]
) -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager that applies the tenant context to every transaction the
    session begins while inside the block. The setting is transaction-local, so
    nothing leaks to other users of a pooled connection.

    Usage:
        async with tenant_context(session, tenant_id):
            # all queries inside will be filtered by RLS as well as by explicit predicates
            ...
    """
    if not _is_postgres(session):
        yield session
        return

    def _apply_tenant(_sync_session, _transaction, connection) -> None:
        # Commit may hand back a different pooled connection.
        connection.execute(
            text("SELECT set_config('app.tenant_id', :tenant_id, true);"),
            {"tenant_id": str(tenant_id)},
        )

    event.listen(session.sync_session, "after_begin", _apply_tenant)
    await set_current_tenant(session, tenant_id)
    try:
        yield session
    finally:
        event.remove(session.sync_session, "after_begin", _apply_tenant)