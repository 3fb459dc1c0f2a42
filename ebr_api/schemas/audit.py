from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AuditEventRead(BaseModel):
    """Audit entry enriched with display fields for the referenced entities."""
    id: UUID = Field(..., description="Audit entry id")
    action: str = Field(..., description="Dot-notation action code, e.g. batch.step.signed")
    entity_type: Optional[str] = Field(None, description="batch | recipe | user | session")
    entity_id: Optional[UUID] = Field(None)
    entity_name: Optional[str] = Field(None, description="Display name of the referenced entity, if it still exists")
    batch_id: Optional[UUID] = Field(None)
    batch_number: Optional[str] = Field(None)
    step_id: Optional[UUID] = Field(None)
    step_number: Optional[int] = Field(None)
    step_description: Optional[str] = Field(None)
    performed_by: Optional[str] = Field(None)
    ip_address: Optional[str] = Field(None)
    details: Optional[Dict[str, Any]] = Field(None, description="Free-form payload; keys vary per action")
    created_at: datetime = Field(..., description="Recorded at")
