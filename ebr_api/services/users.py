"""
Users and sessions: login/logout with audit entries, and tenant-scoped user administration.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ebr_api.core.errors import AuthError, ConflictError, NotFoundError, ValidationError
from ebr_api.core.policy import VALID_ROLES
from ebr_api.core.security import create_session_token, get_password_hash, verify_password
from ebr_api.core.settings import AppSettings, get_app_settings
from ebr_api.db.base import utcnow
from ebr_api.db.models.security import User
from ebr_api.db.models.tenancy import Tenant
from ebr_api.db.session import set_current_tenant
from ebr_api.repositories.security import UserRepository
from ebr_api.repositories.tenancy import TenantRepository
from ebr_api.schemas.auth import UserCreate, UserUpdate
from ebr_api.services.audit import AuditAction, EntityRef, log_event
from ebr_api.services.base import Actor, BaseService

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"


class AuthService(BaseService):
    """Credential checks and session issuance."""

    def __init__(self, session: AsyncSession, settings: Optional[AppSettings] = None) -> None:
        super().__init__(session)
        self.settings = settings or get_app_settings()
        self.tenants = TenantRepository(session)
        self.users = UserRepository(session)

    # PUBLIC_INTERFACE
    async def login(
        self,
        email: str,
        password: str,
        *,
        tenant_slug: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Tuple[User, Tenant, str]:
        """
        Verify credentials within a tenant and issue a session token.

        Unknown tenant, unknown or inactive user and wrong password all fail the
        same way so the response does not reveal which one it was.
        """
        slug = tenant_slug or self.settings.DEFAULT_TENANT_SLUG
        async with self.unit_of_work():
            tenant = await self.tenants.get_by_slug(slug)
            if tenant is None or not tenant.is_active:
                logger.warning("Login attempt for unknown tenant %s", slug)
                raise AuthError(INVALID_CREDENTIALS)
            await set_current_tenant(self.session, tenant.id)

            user = await self.users.get_user_by_email(tenant.id, email.lower().strip())
            if user is None or not user.is_active or not verify_password(password, user.hashed_password):
                logger.warning("Failed login for %s in tenant %s", email, slug)
                raise AuthError(INVALID_CREDENTIALS)

            token = create_session_token(
                user_id=str(user.id),
                tenant_id=str(tenant.id),
                tenant_slug=tenant.slug,
                role=user.role,
                full_name=user.full_name,
                email=user.email,
            )
            await log_event(
                self.session,
                tenant_id=tenant.id,
                action=AuditAction.AUTH_LOGIN,
                entity=EntityRef.session(user.id),
                performed_by=user.full_name,
                ip_address=ip_address,
                details={"email": user.email, "role": user.role},
            )
        logger.info("User %s logged in", user.id)
        return user, tenant, token

    # PUBLIC_INTERFACE
    async def logout(self, actor: Actor) -> None:
        async with self.unit_of_work():
            await log_event(
                self.session,
                tenant_id=actor.tenant_id,
                action=AuditAction.AUTH_LOGOUT,
                entity=EntityRef.session(actor.user_id) if actor.user_id else None,
                performed_by=actor.full_name,
                ip_address=actor.ip_address,
            )


class UserService(BaseService):
    """Admin user management; users are never hard-deleted."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)
        self.users = UserRepository(session)

    async def list_users(self, tenant_id: UUID) -> List[User]:
        return await self.users.list_users(tenant_id)

    async def get_active_user(self, tenant_id: UUID, user_id: UUID) -> User:
        user = await self.users.get_user_by_id(tenant_id, user_id)
        if user is None or not user.is_active:
            raise AuthError("User not found or deactivated")
        return user

    @staticmethod
    def _check_role(role: Optional[str]) -> None:
        if role is not None and role not in VALID_ROLES:
            raise ValidationError("Invalid role", details={"valid_roles": sorted(VALID_ROLES)})

    # PUBLIC_INTERFACE
    async def create_user(self, actor: Actor, payload: UserCreate) -> User:
        self._check_role(payload.role)
        email = payload.email.lower().strip()
        async with self.unit_of_work("Email already exists"):
            if await self.users.get_user_by_email(actor.tenant_id, email):
                raise ConflictError("Email already exists")
            user = await self.users.create_user(
                User(
                    tenant_id=actor.tenant_id,
                    email=email,
                    full_name=payload.full_name,
                    role=payload.role,
                    hashed_password=get_password_hash(payload.password),
                    is_active=True,
                )
            )
            await log_event(
                self.session,
                tenant_id=actor.tenant_id,
                action=AuditAction.USER_CREATED,
                entity=EntityRef.user(user.id),
                performed_by=actor.full_name,
                ip_address=actor.ip_address,
                details={"email": user.email, "role": user.role},
            )
        logger.info("User %s created with role %s", user.id, user.role)
        return user

    # PUBLIC_INTERFACE
    async def update_user(self, actor: Actor, user_id: UUID, payload: UserUpdate) -> User:
        """Partial update; the audit entry lists changed field names, never their values."""
        if user_id == actor.user_id and payload.is_active is False:
            raise ValidationError("Cannot deactivate your own account")
        self._check_role(payload.role)

        values: Dict[str, Any] = {}
        changed: List[str] = []
        for field in ("full_name", "role", "is_active"):
            value = getattr(payload, field)
            if value is not None:
                values[field] = value
                changed.append(field)
        if payload.password:
            values["hashed_password"] = get_password_hash(payload.password)
            changed.append("password")
        if values:
            values["updated_at"] = utcnow()

        async with self.unit_of_work():
            user = await self.users.update_user(actor.tenant_id, user_id, values)
            if user is None:
                raise NotFoundError("User not found")
            await log_event(
                self.session,
                tenant_id=actor.tenant_id,
                action=AuditAction.USER_UPDATED,
                entity=EntityRef.user(user.id),
                performed_by=actor.full_name,
                ip_address=actor.ip_address,
                details={"email": user.email, "changed_fields": changed},
            )
        return user

    # PUBLIC_INTERFACE
    async def deactivate_user(self, actor: Actor, user_id: UUID) -> None:
        if user_id == actor.user_id:
            raise ValidationError("Cannot delete your own account")
        async with self.unit_of_work():
            user = await self.users.update_user(
                actor.tenant_id, user_id, {"is_active": False, "updated_at": utcnow()}
            )
            if user is None:
                raise NotFoundError("User not found")
            await log_event(
                self.session,
                tenant_id=actor.tenant_id,
                action=AuditAction.USER_DEACTIVATED,
                entity=EntityRef.user(user.id),
                performed_by=actor.full_name,
                ip_address=actor.ip_address,
                details={"email": user.email, "full_name": user.full_name},
            )
        logger.info("User %s deactivated", user_id)
