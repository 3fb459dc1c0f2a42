from __future__ import annotations

from datetime import datetime
from typing import Any, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

StepType = Literal["manual", "measurement", "verification", "equipment_check"]


class RecipeStepIn(BaseModel):
    """Template step as supplied by clients; step_number is reassigned from list order."""
    description: str = Field(..., min_length=1)
    instructions: Optional[str] = Field(None)
    step_type: StepType = Field("manual")
    expected_value: Optional[float] = Field(None)
    unit: Optional[str] = Field(None)
    requires_signature: bool = Field(False)
    duration_minutes: Optional[int] = Field(None, ge=0)


class RecipeStepRead(RecipeStepIn):
    """Template step read model."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(...)
    step_number: int = Field(...)
    step_type: str = Field(...)


class RecipeCreate(BaseModel):
    """Create recipe payload."""
    name: str = Field(..., min_length=1)
    product_name: str = Field(..., min_length=1)
    version: Optional[str] = Field("1.0")
    description: Optional[str] = Field(None)
    steps: List[RecipeStepIn] = Field(default_factory=list)


class RecipeUpdate(BaseModel):
    """Update recipe payload. Header fields merge; steps, when present, replace all steps."""
    name: Optional[str] = Field(None, min_length=1)
    product_name: Optional[str] = Field(None, min_length=1)
    version: Optional[str] = Field(None)
    description: Optional[str] = Field(None)
    steps: Optional[List[RecipeStepIn]] = Field(None)


class RecipeRead(BaseModel):
    """Recipe header read model."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(...)
    name: str = Field(...)
    product_name: str = Field(...)
    version: str = Field(...)
    description: Optional[str] = Field(None)
    created_by: Optional[str] = Field(None)
    created_at: datetime = Field(...)
    updated_at: datetime = Field(...)


class RecipeDetail(RecipeRead):
    """Recipe with ordered steps."""
    steps: List[RecipeStepRead] = Field(default_factory=list)


class RecipeImport(BaseModel):
    """Import payload: a JSON envelope/recipe object, or BatchML XML text."""
    format: Literal["json", "xml"] = Field("json")
    data: Union[str, dict[str, Any]] = Field(...)
