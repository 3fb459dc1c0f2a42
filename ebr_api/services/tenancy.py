from __future__ import annotations

from uuid import UUID

from ebr_api.core.errors import NotFoundError
from ebr_api.repositories.tenancy import TenantRepository
from ebr_api.schemas.tenant import TenantInfo, TenantSettingsRead
from ebr_api.services.base import BaseService


class TenantService(BaseService):
    """Read access to the caller's tenant and its settings."""

    # PUBLIC_INTERFACE
    async def get_settings(self, tenant_id: UUID) -> TenantSettingsRead:
        repo = TenantRepository(self.session)
        tenant = await repo.get_by_id(tenant_id)
        if tenant is None or not tenant.is_active:
            raise NotFoundError("Tenant not found")
        settings = await repo.get_settings(tenant_id)
        return TenantSettingsRead(
            tenant=TenantInfo(id=tenant.id, slug=tenant.slug, name=tenant.name),
            branding=(settings.branding if settings else None) or {},
            feature_flags=(settings.feature_flags if settings else None) or {},
            compliance=(settings.compliance if settings else None) or {},
        )
