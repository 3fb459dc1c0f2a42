from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ebr_api.db.base import Base, TimestampMixin, UUIDPkMixin

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Tenant(UUIDPkMixin, TimestampMixin, Base):
    """Isolation boundary; every other entity belongs to exactly one tenant."""
    __tablename__ = "tenants"

    slug: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class TenantSettings(UUIDPkMixin, TimestampMixin, Base):
    """Per-tenant branding, feature flags and compliance options."""
    __tablename__ = "tenant_settings"

    tenant_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    branding: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    feature_flags: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    compliance: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
