from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ebr_api.core.deps import get_tenant_session, require_operation
from ebr_api.core.policy import Operation
from ebr_api.schemas.auth import UserCreate, UserRead, UserUpdate
from ebr_api.services.base import Actor
from ebr_api.services.users import UserService

router = APIRouter(prefix="/users", tags=["Users"])

_admin = require_operation(Operation.USER_MANAGE)


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=List[UserRead],
    summary="List users",
    description="List users of the current tenant, oldest first.",
)
async def list_users(
    actor: Actor = Depends(_admin),
    session: AsyncSession = Depends(get_tenant_session),
):
    return await UserService(session).list_users(actor.tenant_id)


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create user",
    description="Create a user in the current tenant. 409 if the email is taken, 400 on an unknown role.",
)
async def create_user(
    payload: UserCreate,
    actor: Actor = Depends(_admin),
    session: AsyncSession = Depends(get_tenant_session),
):
    return await UserService(session).create_user(actor, payload)


# PUBLIC_INTERFACE
@router.put(
    "/{user_id}",
    response_model=UserRead,
    summary="Update user",
    description="Change full name, role, active flag or password. Admins cannot deactivate themselves.",
)
async def update_user(
    payload: UserUpdate,
    user_id: UUID = Path(..., description="User ID"),
    actor: Actor = Depends(_admin),
    session: AsyncSession = Depends(get_tenant_session),
):
    return await UserService(session).update_user(actor, user_id, payload)


# PUBLIC_INTERFACE
@router.delete(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Deactivate user",
    description="Soft-delete: the user is deactivated, never removed.",
)
async def deactivate_user(
    user_id: UUID = Path(..., description="User ID"),
    actor: Actor = Depends(_admin),
    session: AsyncSession = Depends(get_tenant_session),
) -> Response:
    await UserService(session).deactivate_user(actor, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
