"""
Audit trail: the single write path for audit entries plus the read side.

Every state-changing operation calls ``log_event`` with the session it used for
the change itself, so the entry is committed (or rolled back) together with it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
from uuid import UUID

import pandas as pd
from sqlalchemy.ext.asyncio import AsyncSession

from ebr_api.core.errors import ValidationError
from ebr_api.core.settings import AppSettings, get_app_settings
from ebr_api.db.models.audit import AuditLogEntry
from ebr_api.repositories.audit import AuditLogRepository, AuditRow
from ebr_api.schemas.audit import AuditEventRead
from ebr_api.services.base import BaseService

logger = logging.getLogger(__name__)


class AuditAction:
    """Dot-notation action codes."""

    BATCH_CREATED = "batch.created"
    BATCH_STARTED = "batch.started"
    BATCH_COMPLETED = "batch.completed"
    BATCH_CANCELLED = "batch.cancelled"
    BATCH_REPORT_GENERATED = "batch.report.generated"
    STEP_STARTED = "batch.step.started"
    STEP_COMPLETED = "batch.step.completed"
    STEP_SKIPPED = "batch.step.skipped"
    STEP_SIGNED = "batch.step.signed"
    RECIPE_CREATED = "recipe.created"
    RECIPE_IMPORTED = "recipe.imported"
    RECIPE_UPDATED = "recipe.updated"
    RECIPE_DELETED = "recipe.deleted"
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DEACTIVATED = "user.deactivated"
    AUTH_LOGIN = "auth.login"
    AUTH_LOGOUT = "auth.logout"


class EntityType(str, Enum):
    """Kinds of entity an audit entry may point at."""

    BATCH = "batch"
    RECIPE = "recipe"
    USER = "user"
    SESSION = "session"


@dataclass(frozen=True)
class EntityRef:
    """Tagged reference to the subject of an audit entry."""

    kind: EntityType
    id: UUID

    @classmethod
    def batch(cls, id: UUID) -> "EntityRef":
        return cls(EntityType.BATCH, id)

    @classmethod
    def recipe(cls, id: UUID) -> "EntityRef":
        return cls(EntityType.RECIPE, id)

    @classmethod
    def user(cls, id: UUID) -> "EntityRef":
        return cls(EntityType.USER, id)

    @classmethod
    def session(cls, id: UUID) -> "EntityRef":
        return cls(EntityType.SESSION, id)

    @classmethod
    def from_columns(cls, entity_type: Optional[str], entity_id: Optional[UUID]) -> Optional["EntityRef"]:
        """Rebuild the reference from a stored row; None for untyped or unknown rows."""
        if not entity_type or entity_id is None:
            return None
        try:
            return cls(EntityType(entity_type), entity_id)
        except ValueError:
            return None


# PUBLIC_INTERFACE
async def log_event(
    session: AsyncSession,
    *,
    tenant_id: Optional[UUID],
    action: str,
    entity: Optional[EntityRef] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[UUID] = None,
    batch_id: Optional[UUID] = None,
    step_id: Optional[UUID] = None,
    performed_by: Optional[str] = None,
    ip_address: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    created_at: Optional[datetime] = None,
) -> AuditLogEntry:
    """
    Append one audit entry to the session's current transaction.

    Either ``entity`` or the ``entity_type``/``entity_id`` pair may be given.
    ``created_at`` is only passed by the backfill pass. Does not commit.

    Raises:
        ValidationError: tenant_id missing, action missing, or unknown entity_type.
    """
    if not tenant_id:
        raise ValidationError("tenant_id is required to write audit logs")
    if not action:
        raise ValidationError("action is required to write audit logs")
    if entity is not None:
        entity_type, entity_id = entity.kind.value, entity.id
    elif entity_type is not None:
        try:
            entity_type = EntityType(entity_type).value
        except ValueError:
            raise ValidationError(f"Unknown audit entity_type '{entity_type}'")

    entry = AuditLogEntry(
        tenant_id=tenant_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        batch_id=batch_id,
        step_id=step_id,
        performed_by=performed_by,
        ip_address=ip_address,
        details=details,
    )
    if created_at is not None:
        entry.created_at = created_at
    session.add(entry)
    await session.flush()
    logger.debug("Audit %s entity=%s:%s", action, entity_type, entity_id)
    return entry


class AuditService(BaseService):
    """Read side of the audit trail."""

    def __init__(self, session: AsyncSession, settings: Optional[AppSettings] = None) -> None:
        super().__init__(session)
        self.settings = settings or get_app_settings()
        self.repo = AuditLogRepository(session)

    def clamp_limit(self, limit: Optional[int]) -> int:
        """Apply the default page size and the hard cap."""
        if not limit or limit < 1:
            return self.settings.AUDIT_DEFAULT_LIMIT
        return min(limit, self.settings.AUDIT_MAX_LIMIT)

    # PUBLIC_INTERFACE
    async def list_events(
        self,
        tenant_id: UUID,
        *,
        entity_type: Optional[str] = None,
        batch_id: Optional[UUID] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[AuditEventRead]:
        """Tenant audit trail, newest first, paginated."""
        rows = await self.repo.list_entries(
            tenant_id,
            entity_type=entity_type,
            batch_id=batch_id,
            limit=self.clamp_limit(limit),
            offset=max(offset, 0),
        )
        return await self._to_events(tenant_id, rows)

    # PUBLIC_INTERFACE
    async def batch_trail(
        self, tenant_id: UUID, batch_id: UUID, *, oldest_first: bool = False
    ) -> List[AuditEventRead]:
        """Every event recorded against a batch, whatever its entity_type."""
        rows = await self.repo.list_entries(tenant_id, batch_id=batch_id, oldest_first=oldest_first)
        return await self._to_events(tenant_id, rows)

    # PUBLIC_INTERFACE
    async def export_frame(self, tenant_id: UUID, *, entity_type: Optional[str] = None) -> pd.DataFrame:
        """Full tenant trail (newest first) as a DataFrame for CSV/XLSX export."""
        rows = await self.repo.list_entries(tenant_id, entity_type=entity_type)
        events = await self._to_events(tenant_id, rows)
        columns = [
            "created_at",
            "action",
            "entity_type",
            "entity_name",
            "batch_number",
            "step_number",
            "step_description",
            "performed_by",
            "ip_address",
            "details",
        ]
        data = []
        for e in events:
            data.append(
                {
                    "created_at": e.created_at,
                    "action": e.action,
                    "entity_type": e.entity_type,
                    "entity_name": e.entity_name,
                    "batch_number": e.batch_number,
                    "step_number": e.step_number,
                    "step_description": e.step_description,
                    "performed_by": e.performed_by,
                    "ip_address": e.ip_address,
                    "details": format_details(e.details),
                }
            )
        df = pd.DataFrame(data, columns=columns)
        if not df.empty:
            # Excel cannot store timezone-aware datetimes
            df["created_at"] = pd.to_datetime(df["created_at"], utc=True).dt.tz_localize(None)
        return df

    async def resolve_entity_names(
        self, tenant_id: UUID, refs: Iterable[EntityRef]
    ) -> Dict[EntityRef, str]:
        """Resolve display names with one lookup per entity kind."""
        by_kind: Dict[EntityType, List[UUID]] = {}
        for ref in refs:
            by_kind.setdefault(ref.kind, []).append(ref.id)

        loaders: Dict[EntityType, Callable[[UUID, Iterable[UUID]], Awaitable[Dict[UUID, str]]]] = {
            EntityType.BATCH: self.repo.batch_numbers,
            EntityType.RECIPE: self.repo.recipe_names,
            EntityType.USER: self.repo.user_names,
            EntityType.SESSION: self.repo.user_names,
        }
        names: Dict[EntityRef, str] = {}
        for kind, ids in by_kind.items():
            found = await loaders[kind](tenant_id, ids)
            for id_, name in found.items():
                names[EntityRef(kind, id_)] = name
        return names

    async def _to_events(self, tenant_id: UUID, rows: List[AuditRow]) -> List[AuditEventRead]:
        refs = {}
        for entry, *_ in rows:
            ref = EntityRef.from_columns(entry.entity_type, entry.entity_id)
            if ref is not None:
                refs[entry.id] = ref
        names = await self.resolve_entity_names(tenant_id, refs.values())

        events: List[AuditEventRead] = []
        for entry, batch_number, step_number, step_description in rows:
            ref = refs.get(entry.id)
            events.append(
                AuditEventRead(
                    id=entry.id,
                    action=entry.action,
                    entity_type=entry.entity_type,
                    entity_id=entry.entity_id,
                    entity_name=names.get(ref) if ref else None,
                    batch_id=entry.batch_id,
                    batch_number=batch_number,
                    step_id=entry.step_id,
                    step_number=step_number,
                    step_description=step_description,
                    performed_by=entry.performed_by,
                    ip_address=entry.ip_address,
                    details=entry.details,
                    created_at=entry.created_at,
                )
            )
        return events


# PUBLIC_INTERFACE
def format_details(details: Optional[Dict[str, Any]]) -> str:
    """Flatten a details payload into ``key: value | key: value`` for documents and exports."""
    if not details:
        return "-"
    return " | ".join(f"{k}: {v}" for k, v in details.items())
