from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class LoginRequest(BaseModel):
    """Login payload."""
    email: str = Field(..., min_length=3, description="User email")
    password: str = Field(..., min_length=1, description="User password")
    tenant: Optional[str] = Field(None, description="Tenant slug; defaults to the configured tenant")


class UserRead(BaseModel):
    """User read model."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="User ID")
    email: str = Field(..., description="User email")
    full_name: str = Field(...)
    role: str = Field(..., description="Role name")
    is_active: bool = Field(..., description="Active flag")
    created_at: datetime = Field(..., description="Created timestamp")


class LoginResponse(UserRead):
    """Logged-in user plus the session token for bearer clients (also set as a cookie)."""
    access_token: str = Field(...)
    token_type: str = Field("bearer")
    tenant_id: UUID = Field(...)
    tenant_slug: str = Field(...)


class UserCreate(BaseModel):
    """Admin create user payload."""
    email: EmailStr = Field(..., description="Email")
    password: str = Field(..., min_length=6, description="Password")
    full_name: str = Field(..., min_length=1)
    role: str = Field(..., description="admin | batch_manager | operator_supervisor | operator | qa_qc")


class UserUpdate(BaseModel):
    """Admin update user payload."""
    password: Optional[str] = Field(None, min_length=6)
    full_name: Optional[str] = Field(None, min_length=1)
    role: Optional[str] = Field(None)
    is_active: Optional[bool] = Field(None)
