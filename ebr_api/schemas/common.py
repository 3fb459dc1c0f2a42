from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class MessageResponse(BaseModel):
    """Standard message response."""
    message: str = Field(..., description="Human readable message")
    details: Optional[dict] = Field(default=None, description="Optional extra data")


class SuccessResponse(BaseModel):
    """Acknowledgement envelope for actions that return no entity."""
    success: bool = Field(True)


# PUBLIC_INTERFACE
class ErrorResponse(BaseModel):
    """Standardized API error envelope returned by exception handlers."""
    success: bool = Field(False, description="Always false for errors")
    error: str = Field(..., description="Human-readable error message")
    code: Optional[str] = Field(default=None, description="Machine-readable error code")
    details: Optional[Any] = Field(default=None, description="Optional error details (e.g., validation issues)")
    correlation_id: Optional[str] = Field(default=None, description="Request correlation ID")
