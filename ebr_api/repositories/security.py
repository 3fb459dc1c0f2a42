from __future__ import annotations

from typing import Any, List, Optional
from uuid import UUID

from sqlalchemy import select, update

from ebr_api.db.models.security import User
from .base import BaseRepository


class UserRepository(BaseRepository):
    """Repository for user management within a tenant."""

    async def get_user_by_email(self, tenant_id: UUID, email: str) -> Optional[User]:
        stmt = select(User).where(User.tenant_id == tenant_id, User.email == email)
        return await self.scalar_one_or_none(stmt)

    async def get_user_by_id(self, tenant_id: UUID, user_id: UUID) -> Optional[User]:
        stmt = select(User).where(User.tenant_id == tenant_id, User.id == user_id)
        return await self.scalar_one_or_none(stmt)

    async def list_users(self, tenant_id: UUID) -> List[User]:
        stmt = select(User).where(User.tenant_id == tenant_id).order_by(User.created_at.asc())
        return list(await self.scalars(stmt))

    async def create_user(self, user: User) -> User:
        await self.add(user)
        await self.flush()
        return user

    async def update_user(self, tenant_id: UUID, user_id: UUID, values: dict[str, Any]) -> Optional[User]:
        if not values:
            return await self.get_user_by_id(tenant_id, user_id)
        stmt = (
            update(User)
            .where(User.id == user_id, User.tenant_id == tenant_id)
            .values(**values)
            .returning(User)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        res = await self.execute(stmt)
        return res.scalar_one_or_none()
