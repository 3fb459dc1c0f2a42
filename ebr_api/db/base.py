from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, MetaData, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Standardized naming convention for alembic-friendly constraints/indexes.
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


# PUBLIC_INTERFACE
def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(tz=timezone.utc)


class Base(DeclarativeBase):
    """Declarative base class with metadata naming conventions."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class UUIDPkMixin:
    """Mixin that provides a UUID primary key (generated client-side, server default in migrations)."""
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)


class CreatedAtMixin:
    """Mixin that provides an immutable created_at column."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class TimestampMixin(CreatedAtMixin):
    """Mixin that provides created_at and updated_at timestamp columns."""
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )


class TenantMixin:
    """
    Mixin that provides tenant scoping and FK to tenants.id.

    The tenant id is always set explicitly by the application; on PostgreSQL the
    migration also installs a default from the ``app.tenant_id`` session setting.
    """
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
