from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from ebr_api.db.base import Base, CreatedAtMixin, UUIDPkMixin, TimestampMixin, TenantMixin


class Batch(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """
    One manufacturing run.

    started_at is set once the batch leaves draft; completed_at only when completed.
    """
    __tablename__ = "batches"
    __table_args__ = (
        UniqueConstraint("tenant_id", "batch_number", name="uq_batches_tenant_batch_number"),
        CheckConstraint("status IN ('draft', 'active', 'completed', 'cancelled')", name="status"),
        Index("ix_batches_tenant_created_at", "tenant_id", "created_at"),
    )

    batch_number: Mapped[str] = mapped_column(Text, nullable=False)
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    batch_size: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="draft", server_default="draft")
    recipe_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid, ForeignKey("recipes.id", ondelete="SET NULL"), nullable=True
    )
    created_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class BatchStep(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Executed instance of a recipe step within a batch."""
    __tablename__ = "batch_steps"
    __table_args__ = (
        UniqueConstraint("batch_id", "step_number", name="uq_batch_steps_batch_step_number"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("batches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    step_type: Mapped[str] = mapped_column(Text, nullable=False, default="manual", server_default="manual")
    expected_value: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    unit: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actual_value: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    requires_signature: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    signature_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending", server_default="pending")
    performed_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class PdfReport(UUIDPkMixin, TenantMixin, CreatedAtMixin, Base):
    """A generated batch record document; several may exist per batch, the newest wins."""
    __tablename__ = "pdf_reports"

    batch_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("batches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    generated_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
