"""Audit writer contract, read-side queries and entity name resolution."""

from __future__ import annotations

from uuid import uuid4

import pytest

from ebr_api.core.errors import ValidationError
from ebr_api.core.settings import AppSettings
from ebr_api.schemas.batches import BatchCreate
from ebr_api.services.audit import AuditService, EntityRef, EntityType, format_details, log_event
from ebr_api.services.batches import BatchLifecycleService


async def test_log_event_requires_tenant(session):
    with pytest.raises(ValidationError, match="tenant_id"):
        await log_event(session, tenant_id=None, action="batch.created")


async def test_log_event_requires_action(session, world):
    with pytest.raises(ValidationError):
        await log_event(session, tenant_id=world.tenant.id, action="")


async def test_log_event_rejects_unknown_entity_type(session, world):
    with pytest.raises(ValidationError, match="entity_type"):
        await log_event(session, tenant_id=world.tenant.id, action="x.y", entity_type="invoice", entity_id=uuid4())


async def test_log_event_accepts_entity_pair_or_ref(session, world):
    recipe_id = world.recipe.id
    by_pair = await log_event(
        session, tenant_id=world.tenant.id, action="recipe.viewed", entity_type="recipe", entity_id=recipe_id
    )
    by_ref = await log_event(
        session, tenant_id=world.tenant.id, action="recipe.viewed", entity=EntityRef.recipe(recipe_id)
    )
    assert (by_pair.entity_type, by_pair.entity_id) == ("recipe", recipe_id)
    assert (by_ref.entity_type, by_ref.entity_id) == ("recipe", recipe_id)


async def test_log_event_does_not_commit(session_maker, world):
    async with session_maker() as session:
        await log_event(session, tenant_id=world.tenant.id, action="auth.login")
        await session.rollback()

    async with session_maker() as session:
        assert await AuditService(session).list_events(world.tenant.id) == []


def test_entity_ref_from_columns():
    some_id = uuid4()
    assert EntityRef.from_columns("batch", some_id) == EntityRef(EntityType.BATCH, some_id)
    assert EntityRef.from_columns("invoice", some_id) is None
    assert EntityRef.from_columns(None, some_id) is None
    assert EntityRef.from_columns("user", None) is None


def test_clamp_limit():
    service = AuditService(session=None, settings=AppSettings(AUDIT_DEFAULT_LIMIT=50, AUDIT_MAX_LIMIT=200))
    assert service.clamp_limit(None) == 50
    assert service.clamp_limit(0) == 50
    assert service.clamp_limit(20) == 20
    assert service.clamp_limit(1000) == 200


def test_format_details():
    assert format_details(None) == "-"
    assert format_details({}) == "-"
    assert format_details({"reason": "Spill", "batch_number": "B-1"}) == "reason: Spill | batch_number: B-1"


async def test_list_events_newest_first_and_paginated(session, world):
    tenant_id = world.tenant.id
    for n in range(5):
        await log_event(session, tenant_id=tenant_id, action=f"test.event{n}")
    await session.commit()

    service = AuditService(session)
    events = await service.list_events(tenant_id)
    assert [e.action for e in events] == [f"test.event{n}" for n in (4, 3, 2, 1, 0)]

    page = await service.list_events(tenant_id, limit=2, offset=1)
    assert [e.action for e in page] == ["test.event3", "test.event2"]


async def test_list_events_filters_and_isolates_tenants(session, world):
    await log_event(session, tenant_id=world.tenant.id, action="recipe.viewed", entity=EntityRef.recipe(world.recipe.id))
    await log_event(
        session, tenant_id=world.tenant.id, action="auth.login", entity=EntityRef.session(world.users["admin"].id)
    )
    await log_event(session, tenant_id=world.other_tenant.id, action="auth.login")
    await session.commit()

    service = AuditService(session)
    recipes_only = await service.list_events(world.tenant.id, entity_type="recipe")
    assert [e.action for e in recipes_only] == ["recipe.viewed"]
    assert len(await service.list_events(world.tenant.id)) == 2
    assert len(await service.list_events(world.other_tenant.id)) == 1


async def test_entity_names_resolved_per_kind(session, world):
    admin = world.users["admin"]
    batch = await BatchLifecycleService(session).create_batch(
        world.actor(), BatchCreate(batch_number="B-7", product_name="Paracetamol 500mg")
    )
    await log_event(session, tenant_id=world.tenant.id, action="recipe.updated", entity=EntityRef.recipe(world.recipe.id))
    await log_event(session, tenant_id=world.tenant.id, action="user.updated", entity=EntityRef.user(admin.id))
    await log_event(session, tenant_id=world.tenant.id, action="auth.login", entity=EntityRef.session(admin.id))
    await log_event(session, tenant_id=world.tenant.id, action="user.updated", entity=EntityRef.user(uuid4()))
    await session.commit()

    names = {e.action + ":" + (e.entity_type or ""): e.entity_name for e in await AuditService(session).list_events(world.tenant.id)}
    assert names["batch.created:batch"] == batch.batch_number
    assert names["recipe.updated:recipe"] == "Paracetamol 500mg Tablet"
    assert names["auth.login:session"] == admin.full_name

    user_events = await AuditService(session).list_events(world.tenant.id, entity_type="user")
    assert sorted(e.entity_name or "" for e in user_events) == ["", admin.full_name]


async def test_entity_names_never_cross_tenants(session, world):
    await log_event(
        session, tenant_id=world.other_tenant.id, action="recipe.viewed", entity=EntityRef.recipe(world.recipe.id)
    )
    await session.commit()

    events = await AuditService(session).list_events(world.other_tenant.id)
    assert events[0].entity_name is None


async def test_batch_trail_includes_every_entity_type(session, world):
    batch = await BatchLifecycleService(session).create_batch(
        world.actor(), BatchCreate(batch_number="B-8", product_name="Paracetamol 500mg")
    )
    await log_event(
        session,
        tenant_id=world.tenant.id,
        action="recipe.linked",
        entity=EntityRef.recipe(world.recipe.id),
        batch_id=batch.id,
    )
    await session.commit()

    trail = await AuditService(session).batch_trail(world.tenant.id, batch.id, oldest_first=True)
    assert [(e.action, e.entity_type, e.batch_number) for e in trail] == [
        ("batch.created", "batch", "B-8"),
        ("recipe.linked", "recipe", "B-8"),
    ]
    assert await AuditService(session).batch_trail(world.other_tenant.id, batch.id) == []


async def test_export_frame(session, world):
    await BatchLifecycleService(session).create_batch(
        world.actor(), BatchCreate(batch_number="B-9", product_name="Paracetamol 500mg")
    )
    df = await AuditService(session).export_frame(world.tenant.id)

    assert list(df.columns) == [
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
    row = df.iloc[0]
    assert row["action"] == "batch.created"
    assert row["batch_number"] == "B-9"
    assert "batch_number: B-9" in row["details"]
    assert df["created_at"].dt.tz is None
