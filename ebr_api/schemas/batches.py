from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class BatchCreate(BaseModel):
    """Create batch payload."""
    batch_number: str = Field(..., min_length=1, description="Batch number, unique within the tenant")
    product_name: str = Field(..., min_length=1, description="Product name")
    batch_size: Optional[float] = Field(None, ge=0, description="Batch size")
    recipe_id: Optional[UUID] = Field(None, description="Recipe whose steps are copied into the batch")


class BatchCancel(BaseModel):
    """Cancel batch payload."""
    reason: Optional[str] = Field(None, description="Why the batch is cancelled")


class BatchRead(BaseModel):
    """Batch read model."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Batch id")
    batch_number: str = Field(...)
    product_name: str = Field(...)
    batch_size: Optional[float] = Field(None)
    status: str = Field(..., description="draft | active | completed | cancelled")
    recipe_id: Optional[UUID] = Field(None)
    created_by: Optional[str] = Field(None)
    started_at: Optional[datetime] = Field(None)
    completed_at: Optional[datetime] = Field(None)
    created_at: datetime = Field(..., description="Created at")
    updated_at: datetime = Field(..., description="Updated at")


class BatchWithProgress(BatchRead):
    """Batch read model with step progress counts."""
    total_steps: int = Field(0)
    completed_steps: int = Field(0)


class BatchStepRead(BaseModel):
    """Batch step read model."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Step id")
    batch_id: UUID = Field(...)
    step_number: int = Field(...)
    description: str = Field(...)
    instructions: Optional[str] = Field(None)
    step_type: str = Field(...)
    expected_value: Optional[float] = Field(None)
    unit: Optional[str] = Field(None)
    actual_value: Optional[float] = Field(None)
    requires_signature: bool = Field(False)
    signature_data: Optional[str] = Field(None)
    status: str = Field(..., description="pending | in_progress | completed | skipped")
    performed_by: Optional[str] = Field(None)
    notes: Optional[str] = Field(None)
    duration_minutes: Optional[int] = Field(None)
    started_at: Optional[datetime] = Field(None)
    completed_at: Optional[datetime] = Field(None)


class StepUpdate(BaseModel):
    """Update step payload. Omitted notes/actual_value leave stored values untouched."""
    status: str = Field(..., min_length=1, max_length=50, pattern=r"^[a-z_]+$")
    notes: Optional[str] = Field(None)
    actual_value: Optional[float] = Field(None)


class StepSign(BaseModel):
    """Sign step payload."""
    signature_data: str = Field(..., min_length=1, description="Opaque signature payload, typically an image data URI")
    notes: Optional[str] = Field(None)
    actual_value: Optional[float] = Field(None)


class ReportGenerated(BaseModel):
    """Result of a report generation."""
    success: bool = Field(True)
    report_id: UUID = Field(..., description="Id of the stored report record")
