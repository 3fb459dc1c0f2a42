from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select, update

from ebr_api.db.models.audit import AuditLogEntry
from ebr_api.db.models.batches import Batch, BatchStep
from ebr_api.db.models.recipes import Recipe
from ebr_api.db.models.security import User
from .base import BaseRepository

# (entry, batch_number, step_number, step_description)
AuditRow = Tuple[AuditLogEntry, Optional[str], Optional[int], Optional[str]]


class AuditLogRepository(BaseRepository):
    """
    Repository for the audit trail.

    Inserts go through ebr_api.services.audit.log_event only; the rename/backfill
    helpers below exist for the maintenance pass in services.audit_backfill.
    """

    def _enriched(self, tenant_id: UUID):
        return (
            select(
                AuditLogEntry,
                Batch.batch_number,
                BatchStep.step_number,
                BatchStep.description,
            )
            .outerjoin(Batch, Batch.id == AuditLogEntry.batch_id)
            .outerjoin(BatchStep, BatchStep.id == AuditLogEntry.step_id)
            .where(AuditLogEntry.tenant_id == tenant_id)
        )

    async def list_entries(
        self,
        tenant_id: UUID,
        *,
        entity_type: Optional[str] = None,
        batch_id: Optional[UUID] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        oldest_first: bool = False,
    ) -> List[AuditRow]:
        stmt = self._enriched(tenant_id)
        if entity_type:
            stmt = stmt.where(AuditLogEntry.entity_type == entity_type)
        if batch_id:
            stmt = stmt.where(AuditLogEntry.batch_id == batch_id)
        if oldest_first:
            stmt = stmt.order_by(AuditLogEntry.created_at.asc())
        else:
            stmt = stmt.order_by(AuditLogEntry.created_at.desc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        res = await self.execute(stmt)
        return [tuple(row) for row in res.all()]  # type: ignore[misc]

    async def count_entries(self, tenant_id: UUID) -> int:
        res = await self.execute(
            select(func.count(AuditLogEntry.id)).where(AuditLogEntry.tenant_id == tenant_id)
        )
        return int(res.scalar_one())

    # Entity name lookups used by the EntityRef dispatch
    async def batch_numbers(self, tenant_id: UUID, ids: Iterable[UUID]) -> Dict[UUID, str]:
        return await self._names(select(Batch.id, Batch.batch_number), Batch, tenant_id, ids)

    async def recipe_names(self, tenant_id: UUID, ids: Iterable[UUID]) -> Dict[UUID, str]:
        return await self._names(select(Recipe.id, Recipe.name), Recipe, tenant_id, ids)

    async def user_names(self, tenant_id: UUID, ids: Iterable[UUID]) -> Dict[UUID, str]:
        return await self._names(select(User.id, User.full_name), User, tenant_id, ids)

    async def _names(self, stmt, model, tenant_id: UUID, ids: Iterable[UUID]) -> Dict[UUID, str]:
        ids = list(set(ids))
        if not ids:
            return {}
        res = await self.execute(stmt.where(model.tenant_id == tenant_id, model.id.in_(ids)))
        return {row[0]: row[1] for row in res.all()}

    # Maintenance helpers
    async def all_entries(self, tenant_id: UUID) -> List[AuditLogEntry]:
        stmt = select(AuditLogEntry).where(AuditLogEntry.tenant_id == tenant_id)
        return list(await self.scalars(stmt))

    async def set_entity(self, tenant_id: UUID, entry_id: UUID, entity_type: str, entity_id: UUID) -> None:
        await self.execute(
            update(AuditLogEntry)
            .where(AuditLogEntry.id == entry_id, AuditLogEntry.tenant_id == tenant_id)
            .values(entity_type=entity_type, entity_id=entity_id)
            .execution_options(synchronize_session=False)
        )

    async def rename_action(self, tenant_id: UUID, old: str, new: str) -> int:
        res = await self.execute(
            update(AuditLogEntry)
            .where(AuditLogEntry.tenant_id == tenant_id, AuditLogEntry.action == old)
            .values(action=new)
            .execution_options(synchronize_session=False)
        )
        return int(res.rowcount or 0)
