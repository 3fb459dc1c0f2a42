from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncGenerator, Callable, Optional
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from ebr_api.core.errors import AuthError, PermissionDeniedError
from ebr_api.core.logging import tenant_id_var, user_id_var
from ebr_api.core.policy import Operation, allowed
from ebr_api.core.security import decode_token
from ebr_api.core.settings import get_app_settings
from ebr_api.db.models.security import User
from ebr_api.db.session import get_async_session, tenant_context
from ebr_api.repositories.security import UserRepository
from ebr_api.services.base import Actor
from ebr_api.services.equipment import SimulatorState

logger = logging.getLogger(__name__)

# Bearer token for API clients and the docs UI; browsers use the session cookie instead.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


@dataclass(frozen=True)
class SessionClaims:
    """Verified identity carried by the session token."""

    user_id: UUID
    tenant_id: UUID
    tenant_slug: Optional[str]
    role: Optional[str]
    full_name: Optional[str]
    email: Optional[str]


def _claims_from_token(raw: str) -> SessionClaims:
    try:
        payload = decode_token(raw)
        return SessionClaims(
            user_id=UUID(str(payload["sub"])),
            tenant_id=UUID(str(payload["tenant_id"])),
            tenant_slug=payload.get("tenant_slug"),
            role=payload.get("role"),
            full_name=payload.get("full_name"),
            email=payload.get("email"),
        )
    except (JWTError, KeyError, ValueError, TypeError):
        raise AuthError("Invalid or expired session")


def _raw_token(request: Request, bearer: Optional[str]) -> Optional[str]:
    return bearer or request.cookies.get(get_app_settings().SESSION_COOKIE_NAME)


# PUBLIC_INTERFACE
def client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop when behind a proxy, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


# PUBLIC_INTERFACE
async def get_session_claims(
    request: Request, bearer: Optional[str] = Depends(oauth2_scheme)
) -> SessionClaims:
    """
    Resolve the caller's session from the Authorization header or the session cookie.

    The tenant is taken from the verified token only, never from request parameters.
    """
    raw = _raw_token(request, bearer)
    if not raw:
        raise AuthError("Authentication required")
    claims = _claims_from_token(raw)
    tenant_id_var.set(str(claims.tenant_id))
    user_id_var.set(str(claims.user_id))
    return claims


# PUBLIC_INTERFACE
async def get_optional_claims(
    request: Request, bearer: Optional[str] = Depends(oauth2_scheme)
) -> Optional[SessionClaims]:
    """Like get_session_claims but returns None instead of failing."""
    raw = _raw_token(request, bearer)
    if not raw:
        return None
    try:
        claims = _claims_from_token(raw)
    except AuthError:
        return None
    tenant_id_var.set(str(claims.tenant_id))
    user_id_var.set(str(claims.user_id))
    return claims


# PUBLIC_INTERFACE
async def get_tenant_session(
    claims: SessionClaims = Depends(get_session_claims),
    session: AsyncSession = Depends(get_async_session),
) -> AsyncGenerator[AsyncSession, None]:
    """
    Yield an AsyncSession with Row-Level Security (RLS) configured for the caller's tenant.
    """
    async with tenant_context(session, claims.tenant_id):
        yield session


# PUBLIC_INTERFACE
async def get_current_user(
    claims: SessionClaims = Depends(get_session_claims),
    session: AsyncSession = Depends(get_tenant_session),
) -> User:
    """Load the session's user; deactivated users lose access immediately."""
    user = await UserRepository(session).get_user_by_id(claims.tenant_id, claims.user_id)
    if user is None or not user.is_active:
        raise AuthError("User not found or deactivated")
    return user


# PUBLIC_INTERFACE
async def get_actor(request: Request, user: User = Depends(get_current_user)) -> Actor:
    """The authenticated caller as seen by services. Role comes from the stored user."""
    return Actor(
        tenant_id=user.tenant_id,
        user_id=user.id,
        full_name=user.full_name,
        role=user.role,
        ip_address=client_ip(request),
    )


# PUBLIC_INTERFACE
def require_operation(operation: Operation) -> Callable:
    """
    Create a dependency that allows the request only when the caller's role may
    perform ``operation``. Resolves to the Actor.
    """

    async def _dep(actor: Actor = Depends(get_actor)) -> Actor:
        if not allowed(actor.role, operation):
            logger.warning("Role %s denied %s", actor.role, operation.value)
            raise PermissionDeniedError("Insufficient permissions")
        return actor

    return _dep


# PUBLIC_INTERFACE
def get_simulator(request: Request) -> SimulatorState:
    """Simulator state created at application startup."""
    state = getattr(request.app.state, "simulator", None)
    if state is None:
        state = SimulatorState()
        request.app.state.simulator = state
    return state
