from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from sqlalchemy import select

from ebr_api.db.models.tenancy import Tenant, TenantSettings
from .base import BaseRepository


class TenantRepository(BaseRepository):
    """Repository for tenants and their settings. Tenants themselves are not tenant-scoped."""

    async def get_by_slug(self, slug: str) -> Optional[Tenant]:
        return await self.scalar_one_or_none(select(Tenant).where(Tenant.slug == slug))

    async def get_by_id(self, tenant_id: UUID) -> Optional[Tenant]:
        return await self.scalar_one_or_none(select(Tenant).where(Tenant.id == tenant_id))

    async def get_settings(self, tenant_id: UUID) -> Optional[TenantSettings]:
        stmt = select(TenantSettings).where(TenantSettings.tenant_id == tenant_id)
        return await self.scalar_one_or_none(stmt)

    async def list_tenants(self) -> List[Tenant]:
        return list(await self.scalars(select(Tenant).order_by(Tenant.slug)))
