"""
Domain error taxonomy.

Services raise these; the API layer renders them into the standard
``{success: false, error, code}`` envelope using the attached status code.
"""
from __future__ import annotations

from typing import Any, Optional


class EBRError(Exception):
    """Base class for all expected, client-visible failures."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(EBRError):
    """Missing or malformed input (absent tenant id, cross-tenant reference, ...)."""

    status_code = 400
    code = "VALIDATION_ERROR"


class AuthError(EBRError):
    """Missing, invalid or expired session."""

    status_code = 401
    code = "AUTH_REQUIRED"


class PermissionDeniedError(EBRError):
    """Authenticated, but the caller's role does not allow the operation."""

    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(EBRError):
    """
    Entity absent, owned by another tenant, or not in the lifecycle state the
    requested transition starts from. The three cases are reported identically.
    """

    status_code = 404
    code = "NOT_FOUND"


class ConflictError(EBRError):
    """Unique constraint violation (duplicate email, duplicate batch number)."""

    status_code = 409
    code = "CONFLICT"


class InvalidStateError(EBRError):
    """The entity exists but its state does not permit the operation."""

    status_code = 400
    code = "INVALID_STATE"
