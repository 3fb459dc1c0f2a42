from __future__ import annotations

from typing import Optional
from sqlalchemy import Boolean, CheckConstraint, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ebr_api.db.base import Base, UUIDPkMixin, TimestampMixin, TenantMixin


class User(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Application user within a tenant. Holds exactly one role."""
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
        CheckConstraint(
            "role IN ('admin', 'batch_manager', 'operator_supervisor', 'operator', 'qa_qc')",
            name="role",
        ),
    )

    email: Mapped[str] = mapped_column(Text, nullable=False)
    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    hashed_password: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(Text, nullable=False, default="operator", server_default="operator")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
