"""Audit trail normalization: pure planning and the idempotent apply pass."""

from datetime import datetime, timezone
from uuid import uuid4

from ebr_api.db.models.audit import AuditLogEntry
from ebr_api.schemas.batches import BatchCreate
from ebr_api.services.audit import AuditService
from ebr_api.services.audit_backfill import (
    BatchFacts,
    EntryFacts,
    RecipeFacts,
    UserFacts,
    apply_audit_backfill,
    plan_audit_backfill,
)
from ebr_api.services.batches import BatchLifecycleService

WHEN = datetime(2025, 11, 3, 9, 30, tzinfo=timezone.utc)


def test_plan_links_renames_and_synthesizes():
    batch_id, recipe_id, user_id = uuid4(), uuid4(), uuid4()
    entries = [
        EntryFacts(uuid4(), "start", None, None, batch_id),
        EntryFacts(uuid4(), "step_completed", None, None, batch_id),
        EntryFacts(uuid4(), "step_completed", None, None, batch_id),
        EntryFacts(uuid4(), "recipe.updated", "recipe", recipe_id, None),
    ]
    plan = plan_audit_backfill(
        entries,
        recipes=[RecipeFacts(recipe_id, "Ibuprofen", "Ibuprofen 200mg", "1.0", "QA", WHEN, 4)],
        users=[UserFacts(user_id, "ops@dicode-demo.com", "operator", WHEN)],
        batches=[BatchFacts(batch_id, "B-1", "Ops", WHEN)],
    )

    assert [link[1] for link in plan.entity_links] == [batch_id, batch_id, batch_id]
    assert plan.renames == [("start", "batch.started", 1), ("step_completed", "batch.step.completed", 2)]
    assert [(s.action, s.entity.id) for s in plan.synthetic] == [
        ("user.created", user_id),
        ("batch.created", batch_id),
    ]
    batch_entry = plan.synthetic[1]
    assert batch_entry.batch_id == batch_id
    assert batch_entry.created_at == WHEN
    assert batch_entry.details == {"batch_number": "B-1", "note": "backfilled"}
    assert plan.change_count == 3 + 3 + 2


def test_plan_counts_legacy_created_entries():
    batch_id = uuid4()
    plan = plan_audit_backfill(
        [EntryFacts(uuid4(), "batch_created", "batch", batch_id, batch_id)],
        recipes=[],
        users=[],
        batches=[BatchFacts(batch_id, "B-1", None, WHEN)],
    )
    assert plan.entity_links == []
    assert plan.synthetic == []
    assert plan.renames == [("batch_created", "batch.created", 1)]


def test_plan_on_normalized_trail_is_empty():
    plan = plan_audit_backfill([], [], [], [])
    assert plan.is_empty
    assert plan.change_count == 0


async def test_apply_is_idempotent(session, world):
    tenant_id = world.tenant.id
    batch = await BatchLifecycleService(session).create_batch(
        world.actor(), BatchCreate(batch_number="B-300", product_name="Paracetamol 500mg")
    )
    batch_id = batch.id
    session.add(AuditLogEntry(tenant_id=tenant_id, action="start", batch_id=batch_id, performed_by="Legacy"))
    await session.commit()

    dry = await apply_audit_backfill(session, tenant_id, dry_run=True)
    # one recipe and five users predate logging; the batch already has batch.created
    assert len(dry.synthetic) == 6
    assert dry.entity_links and dry.renames == [("start", "batch.started", 1)]
    await session.rollback()

    plan = await apply_audit_backfill(session, tenant_id)
    await session.commit()
    assert plan.change_count == 1 + 1 + 6

    trail = await AuditService(session).batch_trail(tenant_id, batch_id, oldest_first=True)
    assert [(e.action, e.entity_type, e.entity_id) for e in trail] == [
        ("batch.created", "batch", batch_id),
        ("batch.started", "batch", batch_id),
    ]
    recipe_events = await AuditService(session).list_events(tenant_id, entity_type="recipe")
    assert recipe_events[0].action == "recipe.created"
    assert recipe_events[0].details["step_count"] == 3
    assert recipe_events[0].performed_by == "Dr. A. Rossi"

    again = await apply_audit_backfill(session, tenant_id)
    assert again.is_empty


async def test_apply_leaves_other_tenants_alone(session, world):
    await apply_audit_backfill(session, world.tenant.id)
    await session.commit()

    events = await AuditService(session).list_events(world.other_tenant.id)
    assert events == []
