from __future__ import annotations

from typing import Any, Dict
from uuid import UUID

from pydantic import BaseModel, Field


class TenantInfo(BaseModel):
    id: UUID = Field(...)
    slug: str = Field(...)
    name: str = Field(...)


class TenantSettingsRead(BaseModel):
    """Tenant identity plus branding, feature flags and compliance options."""
    tenant: TenantInfo = Field(...)
    branding: Dict[str, Any] = Field(default_factory=dict)
    feature_flags: Dict[str, Any] = Field(default_factory=dict)
    compliance: Dict[str, Any] = Field(default_factory=dict)
