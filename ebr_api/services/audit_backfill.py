"""
Normalization pass over a tenant's audit trail.

``plan_audit_backfill`` is pure: given the current rows it returns the changes
to make. ``apply_audit_backfill`` gathers the rows, plans, and writes the plan
in the caller's transaction. Running the pass on an already normalized trail
plans nothing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ebr_api.repositories.audit import AuditLogRepository
from ebr_api.repositories.batches import BatchRepository
from ebr_api.repositories.recipes import RecipeRepository
from ebr_api.repositories.security import UserRepository
from ebr_api.services.audit import AuditAction, EntityRef, EntityType, log_event

logger = logging.getLogger(__name__)

LEGACY_ACTIONS: Dict[str, str] = {
    "batch_created": AuditAction.BATCH_CREATED,
    "start": AuditAction.BATCH_STARTED,
    "complete": AuditAction.BATCH_COMPLETED,
    "cancel": AuditAction.BATCH_CANCELLED,
    "step_in_progress": AuditAction.STEP_STARTED,
    "step_completed": AuditAction.STEP_COMPLETED,
    "step_skipped": AuditAction.STEP_SKIPPED,
    "step_signed": AuditAction.STEP_SIGNED,
}

BACKFILL_NOTE = "backfilled"
SEED_PERFORMER = "System (seed)"


@dataclass(frozen=True)
class EntryFacts:
    id: UUID
    action: str
    entity_type: Optional[str]
    entity_id: Optional[UUID]
    batch_id: Optional[UUID]


@dataclass(frozen=True)
class RecipeFacts:
    id: UUID
    name: str
    product_name: str
    version: str
    created_by: Optional[str]
    created_at: datetime
    step_count: int


@dataclass(frozen=True)
class UserFacts:
    id: UUID
    email: str
    role: str
    created_at: datetime


@dataclass(frozen=True)
class BatchFacts:
    id: UUID
    batch_number: str
    created_by: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class SyntheticEntry:
    action: str
    entity: EntityRef
    performed_by: Optional[str]
    details: Dict[str, Any]
    created_at: datetime
    batch_id: Optional[UUID] = None


@dataclass
class BackfillPlan:
    entity_links: List[Tuple[UUID, UUID]] = field(default_factory=list)  # (entry id, batch id)
    renames: List[Tuple[str, str, int]] = field(default_factory=list)  # (old, new, rows)
    synthetic: List[SyntheticEntry] = field(default_factory=list)

    @property
    def change_count(self) -> int:
        return len(self.entity_links) + sum(n for _, _, n in self.renames) + len(self.synthetic)

    @property
    def is_empty(self) -> bool:
        return self.change_count == 0


# PUBLIC_INTERFACE
def plan_audit_backfill(
    entries: Iterable[EntryFacts],
    recipes: Iterable[RecipeFacts],
    users: Iterable[UserFacts],
    batches: Iterable[BatchFacts],
) -> BackfillPlan:
    """Compute the normalization changes for one tenant's trail."""
    plan = BackfillPlan()
    rename_counts: Dict[str, int] = {}
    recipe_ids: Set[UUID] = set()
    user_ids: Set[UUID] = set()
    created_batches: Set[UUID] = set()

    for e in entries:
        entity_type, entity_id = e.entity_type, e.entity_id
        if e.batch_id is not None and entity_type is None:
            plan.entity_links.append((e.id, e.batch_id))
            entity_type, entity_id = EntityType.BATCH.value, e.batch_id

        action = e.action
        if action in LEGACY_ACTIONS:
            rename_counts[action] = rename_counts.get(action, 0) + 1
            action = LEGACY_ACTIONS[action]

        if entity_type == EntityType.RECIPE.value and entity_id is not None:
            recipe_ids.add(entity_id)
        elif entity_type == EntityType.USER.value and entity_id is not None:
            user_ids.add(entity_id)
        if action == AuditAction.BATCH_CREATED and e.batch_id is not None:
            created_batches.add(e.batch_id)

    plan.renames = [(old, LEGACY_ACTIONS[old], n) for old, n in sorted(rename_counts.items())]

    for r in recipes:
        if r.id in recipe_ids:
            continue
        plan.synthetic.append(
            SyntheticEntry(
                action=AuditAction.RECIPE_CREATED,
                entity=EntityRef.recipe(r.id),
                performed_by=r.created_by,
                details={
                    "name": r.name,
                    "product_name": r.product_name,
                    "version": r.version,
                    "step_count": r.step_count,
                    "note": BACKFILL_NOTE,
                },
                created_at=r.created_at,
            )
        )
    for u in users:
        if u.id in user_ids:
            continue
        plan.synthetic.append(
            SyntheticEntry(
                action=AuditAction.USER_CREATED,
                entity=EntityRef.user(u.id),
                performed_by=SEED_PERFORMER,
                details={"email": u.email, "role": u.role, "note": BACKFILL_NOTE},
                created_at=u.created_at,
            )
        )
    for b in batches:
        if b.id in created_batches:
            continue
        plan.synthetic.append(
            SyntheticEntry(
                action=AuditAction.BATCH_CREATED,
                entity=EntityRef.batch(b.id),
                batch_id=b.id,
                performed_by=b.created_by,
                details={"batch_number": b.batch_number, "note": BACKFILL_NOTE},
                created_at=b.created_at,
            )
        )
    return plan


# PUBLIC_INTERFACE
async def apply_audit_backfill(session: AsyncSession, tenant_id: UUID, *, dry_run: bool = False) -> BackfillPlan:
    """Plan and (unless dry_run) write the backfill for one tenant. Does not commit."""
    audit = AuditLogRepository(session)
    entries = [
        EntryFacts(e.id, e.action, e.entity_type, e.entity_id, e.batch_id)
        for e in await audit.all_entries(tenant_id)
    ]
    recipes = [
        RecipeFacts(r.id, r.name, r.product_name, r.version, r.created_by, r.created_at, len(r.steps))
        for r in await RecipeRepository(session).list_recipes(tenant_id)
    ]
    users = [
        UserFacts(u.id, u.email, u.role, u.created_at)
        for u in await UserRepository(session).list_users(tenant_id)
    ]
    batches = [
        BatchFacts(b.id, b.batch_number, b.created_by, b.created_at)
        for b, _, _ in await BatchRepository(session).list_batches_with_progress(tenant_id)
    ]

    plan = plan_audit_backfill(entries, recipes, users, batches)
    if dry_run or plan.is_empty:
        return plan

    for entry_id, batch_id in plan.entity_links:
        await audit.set_entity(tenant_id, entry_id, EntityType.BATCH.value, batch_id)
    for old, new, _ in plan.renames:
        renamed = await audit.rename_action(tenant_id, old, new)
        logger.info("Renamed audit action %s -> %s (%d rows)", old, new, renamed)
    for s in plan.synthetic:
        await log_event(
            session,
            tenant_id=tenant_id,
            action=s.action,
            entity=s.entity,
            batch_id=s.batch_id,
            performed_by=s.performed_by,
            details=s.details,
            created_at=s.created_at,
        )
    logger.info(
        "Audit backfill for tenant %s: %d entity links, %d renames, %d synthetic entries",
        tenant_id,
        len(plan.entity_links),
        sum(n for _, _, n in plan.renames),
        len(plan.synthetic),
    )
    return plan
