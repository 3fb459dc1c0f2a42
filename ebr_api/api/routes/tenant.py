from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ebr_api.core.deps import get_tenant_session, require_operation
from ebr_api.core.policy import Operation
from ebr_api.schemas.tenant import TenantSettingsRead
from ebr_api.services.base import Actor
from ebr_api.services.tenancy import TenantService

router = APIRouter(prefix="/tenant", tags=["Tenant"])


# PUBLIC_INTERFACE
@router.get(
    "/settings",
    response_model=TenantSettingsRead,
    summary="Tenant settings",
    description="Branding, feature flags and compliance options of the caller's tenant.",
)
async def tenant_settings(
    actor: Actor = Depends(require_operation(Operation.TENANT_READ)),
    session: AsyncSession = Depends(get_tenant_session),
) -> TenantSettingsRead:
    return await TenantService(session).get_settings(actor.tenant_id)
