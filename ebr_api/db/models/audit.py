from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ebr_api.db.base import Base, CreatedAtMixin, UUIDPkMixin, TenantMixin


class AuditLogEntry(UUIDPkMixin, TenantMixin, CreatedAtMixin, Base):
    """
    Append-only audit record.

    entity_type/entity_id form a polymorphic reference (batch|recipe|user|session);
    batch_id/step_id are nulled rather than cascaded so the record outlives its subject.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_tenant_created_at", "tenant_id", "created_at"),
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        CheckConstraint(
            "entity_type IS NULL OR entity_type IN ('batch', 'recipe', 'user', 'session')",
            name="entity_type",
        ),
    )

    action: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    entity_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    batch_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid, ForeignKey("batches.id", ondelete="SET NULL"), nullable=True, index=True
    )
    step_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid, ForeignKey("batch_steps.id", ondelete="SET NULL"), nullable=True
    )
    performed_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=True
    )
