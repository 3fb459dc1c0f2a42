from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ebr_api.db.base import Base, UUIDPkMixin, TimestampMixin, TenantMixin


class Recipe(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Versioned procedure template for a product."""
    __tablename__ = "recipes"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[str] = mapped_column(Text, nullable=False, default="1.0", server_default="1.0")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    steps: Mapped[List["RecipeStep"]] = relationship(
        "RecipeStep",
        back_populates="recipe",
        cascade="all, delete-orphan",
        order_by="RecipeStep.step_number",
        lazy="selectin",
        passive_deletes=True,
    )


class RecipeStep(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Template step owned by a recipe; order is step_number, contiguous from 1."""
    __tablename__ = "recipe_steps"
    __table_args__ = (
        UniqueConstraint("recipe_id", "step_number", name="uq_recipe_steps_recipe_step_number"),
    )

    recipe_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    step_type: Mapped[str] = mapped_column(Text, nullable=False, default="manual", server_default="manual")
    expected_value: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    unit: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requires_signature: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    recipe: Mapped["Recipe"] = relationship("Recipe", back_populates="steps")
