from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ebr_api.core.deps import client_ip, get_current_user, get_optional_claims, SessionClaims
from ebr_api.core.settings import get_app_settings
from ebr_api.db.models.security import User
from ebr_api.db.session import get_async_session, tenant_context
from ebr_api.schemas.auth import LoginRequest, LoginResponse, UserRead
from ebr_api.schemas.common import SuccessResponse
from ebr_api.services.base import Actor
from ebr_api.services.users import AuthService

router = APIRouter(prefix="/auth", tags=["Auth"])


# PUBLIC_INTERFACE
@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Login",
    description=(
        "Authenticate with email and password within a tenant (defaults to the configured tenant). "
        "Sets an http-only session cookie and also returns the token for bearer clients."
    ),
)
async def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_async_session),
) -> LoginResponse:
    """Authenticate user and start a session."""
    settings = get_app_settings()
    user, tenant, token = await AuthService(session, settings).login(
        payload.email,
        payload.password,
        tenant_slug=payload.tenant,
        ip_address=client_ip(request),
    )
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.SESSION_COOKIE_SECURE,
        path="/",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    return LoginResponse(
        **UserRead.model_validate(user).model_dump(),
        access_token=token,
        tenant_id=tenant.id,
        tenant_slug=tenant.slug,
    )


# PUBLIC_INTERFACE
@router.post(
    "/logout",
    response_model=SuccessResponse,
    summary="Logout",
    description="Clear the session cookie. Records the logout when a valid session was presented.",
)
async def logout(
    request: Request,
    response: Response,
    claims: Optional[SessionClaims] = Depends(get_optional_claims),
    session: AsyncSession = Depends(get_async_session),
) -> SuccessResponse:
    settings = get_app_settings()
    if claims is not None:
        async with tenant_context(session, claims.tenant_id):
            await AuthService(session, settings).logout(
                Actor(
                    tenant_id=claims.tenant_id,
                    user_id=claims.user_id,
                    full_name=claims.full_name,
                    role=claims.role,
                    ip_address=client_ip(request),
                )
            )
    response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")
    return SuccessResponse()


# PUBLIC_INTERFACE
@router.get(
    "/me",
    response_model=UserRead,
    summary="Current user",
    description="Return the user of the current session; 401 once the user is deactivated.",
)
async def me(user: User = Depends(get_current_user)) -> User:
    return user
