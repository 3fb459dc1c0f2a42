"""Batch lifecycle: creation from recipes, guarded transitions, reports and their audit entries."""

from __future__ import annotations

import asyncio
import os
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from ebr_api.core.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from ebr_api.db.models.audit import AuditLogEntry
from ebr_api.db.models.batches import Batch, PdfReport
from ebr_api.repositories.audit import AuditLogRepository
from ebr_api.schemas.batches import BatchCreate, StepUpdate
from ebr_api.services import batches as batches_module
from ebr_api.services.audit import AuditService
from ebr_api.services.batches import BatchLifecycleService, DEFAULT_CANCEL_REASON
from ebr_api.services.reports import BatchReportGenerator
from ebr_api.services.steps import StepExecutionService


def _create(number: str = "B-100", recipe_id=None) -> BatchCreate:
    return BatchCreate(batch_number=number, product_name="Paracetamol 500mg", batch_size=500, recipe_id=recipe_id)


async def _audit_count(session, tenant_id) -> int:
    return await AuditLogRepository(session).count_entries(tenant_id)


async def test_scenario_b100_full_run(session, world):
    actor = world.actor("batch_manager")
    service = BatchLifecycleService(session)

    batch = await service.create_batch(actor, _create("B-100", world.recipe.id))
    await service.start_batch(actor, batch.id)
    steps = await service.list_steps(actor.tenant_id, batch.id)
    await StepExecutionService(session).update_step(
        actor, batch.id, steps[0].id, StepUpdate(status="completed", actual_value=10)
    )
    completed = await service.complete_batch(actor, batch.id)

    assert completed.status == "completed"
    step_one = (await service.list_steps(actor.tenant_id, batch.id))[0]
    assert step_one.status == "completed"
    assert step_one.actual_value == 10

    trail = await AuditService(session).batch_trail(actor.tenant_id, batch.id, oldest_first=True)
    assert [e.action for e in trail] == [
        "batch.created",
        "batch.started",
        "batch.step.completed",
        "batch.completed",
    ]


async def test_create_copies_recipe_steps_in_order(session, world):
    actor = world.actor("operator")
    batch = await BatchLifecycleService(session).create_batch(actor, _create(recipe_id=world.recipe.id))

    assert batch.status == "draft"
    assert batch.started_at is None
    assert batch.created_by == actor.full_name

    steps = await BatchLifecycleService(session).list_steps(actor.tenant_id, batch.id)
    assert [s.step_number for s in steps] == [1, 2, 3]
    assert [s.description for s in steps] == ["Weigh Raw Materials", "Granulation", "Final QC Release Check"]
    assert steps[0].expected_value == 500
    assert steps[0].unit == "kg"
    assert [s.requires_signature for s in steps] == [True, False, True]
    assert {s.status for s in steps} == {"pending"}


async def test_create_without_recipe_has_no_steps(session, world):
    actor = world.actor()
    batch = await BatchLifecycleService(session).create_batch(actor, _create())

    assert await BatchLifecycleService(session).list_steps(actor.tenant_id, batch.id) == []
    _, total, done = await BatchLifecycleService(session).get_batch(actor.tenant_id, batch.id)
    assert (total, done) == (0, 0)


async def test_create_records_audit_details(session, world):
    actor = world.actor()
    batch = await BatchLifecycleService(session).create_batch(actor, _create(recipe_id=world.recipe.id))

    trail = await AuditService(session).batch_trail(actor.tenant_id, batch.id)
    assert len(trail) == 1
    event = trail[0]
    assert event.action == "batch.created"
    assert event.entity_type == "batch"
    assert event.entity_id == batch.id
    assert event.entity_name == "B-100"
    assert event.performed_by == actor.full_name
    assert event.ip_address == "10.0.0.1"
    assert event.details == {"batch_number": "B-100", "recipe_id": str(world.recipe.id), "step_count": 3}


async def test_create_with_foreign_recipe_is_rejected(session, world):
    with pytest.raises(ValidationError):
        await BatchLifecycleService(session).create_batch(world.other_actor(), _create(recipe_id=world.recipe.id))

    assert await _audit_count(session, world.other_tenant.id) == 0


async def test_duplicate_batch_number_conflicts(session, world):
    actor = world.actor()
    service = BatchLifecycleService(session)
    await service.create_batch(actor, _create("B-1"))

    with pytest.raises(ConflictError):
        await service.create_batch(actor, _create("B-1"))
    assert await _audit_count(session, actor.tenant_id) == 1


async def test_same_batch_number_allowed_in_other_tenant(session, world):
    await BatchLifecycleService(session).create_batch(world.actor(), _create("B-1"))
    other = await BatchLifecycleService(session).create_batch(world.other_actor(), _create("B-1"))
    assert other.tenant_id == world.other_tenant.id


async def test_start_sets_started_at_and_only_once(session, world):
    actor = world.actor()
    service = BatchLifecycleService(session)
    batch = await service.create_batch(actor, _create())

    started = await service.start_batch(actor, batch.id)
    assert started.status == "active"
    assert started.started_at is not None
    assert started.completed_at is None

    # a second caller racing on the same draft batch sees no matching row
    with pytest.raises(NotFoundError, match="already started"):
        await service.start_batch(actor, batch.id)
    assert await _audit_count(session, actor.tenant_id) == 2


async def test_concurrent_starts_let_exactly_one_through(session_maker, world):
    actor = world.actor()
    async with session_maker() as session:
        batch = await BatchLifecycleService(session).create_batch(actor, _create())
        before = await _audit_count(session, actor.tenant_id)
    batch_id = batch.id

    async def _start() -> str:
        async with session_maker() as session:
            try:
                await BatchLifecycleService(session).start_batch(actor, batch_id)
            except NotFoundError:
                return "nf"
            return "ok"

    results = await asyncio.gather(_start(), _start())

    assert sorted(results) == ["nf", "ok"]
    async with session_maker() as session:
        assert (await session.get(Batch, batch_id)).status == "active"
        assert await _audit_count(session, actor.tenant_id) == before + 1


async def test_complete_requires_active(session, world):
    actor = world.actor()
    service = BatchLifecycleService(session)
    batch = await service.create_batch(actor, _create())
    batch_id = batch.id

    with pytest.raises(NotFoundError, match="not active"):
        await service.complete_batch(actor, batch_id)

    await service.start_batch(actor, batch_id)
    done = await service.complete_batch(actor, batch_id)
    assert done.status == "completed"
    assert done.completed_at is not None


async def test_complete_allows_pending_steps(session, world):
    actor = world.actor()
    service = BatchLifecycleService(session)
    batch = await service.create_batch(actor, _create(recipe_id=world.recipe.id))
    await service.start_batch(actor, batch.id)

    done = await service.complete_batch(actor, batch.id)
    assert done.status == "completed"
    _, total, completed = await service.get_batch(actor.tenant_id, batch.id)
    assert (total, completed) == (3, 0)


async def test_cancel_draft_without_reason(session, world):
    actor = world.actor()
    service = BatchLifecycleService(session)
    batch = await service.create_batch(actor, _create())

    cancelled = await service.cancel_batch(actor, batch.id)
    assert cancelled.status == "cancelled"

    trail = await AuditService(session).batch_trail(actor.tenant_id, batch.id)
    assert trail[0].action == "batch.cancelled"
    assert trail[0].details == {"batch_number": "B-100", "reason": DEFAULT_CANCEL_REASON}


async def test_cancel_active_with_reason(session, world):
    actor = world.actor("operator_supervisor")
    service = BatchLifecycleService(session)
    batch = await service.create_batch(actor, _create())
    await service.start_batch(actor, batch.id)

    await service.cancel_batch(actor, batch.id, "Contaminated granulate")
    trail = await AuditService(session).batch_trail(actor.tenant_id, batch.id)
    assert trail[0].details["reason"] == "Contaminated granulate"


@pytest.mark.parametrize("terminal", ["completed", "cancelled"])
async def test_terminal_batches_cannot_move(session, world, terminal):
    actor = world.actor()
    service = BatchLifecycleService(session)
    batch = await service.create_batch(actor, _create())
    batch_id = batch.id
    await service.start_batch(actor, batch_id)
    if terminal == "completed":
        await service.complete_batch(actor, batch_id)
    else:
        await service.cancel_batch(actor, batch_id)
    before = await _audit_count(session, actor.tenant_id)

    with pytest.raises(NotFoundError):
        await service.cancel_batch(actor, batch_id)
    with pytest.raises(NotFoundError):
        await service.start_batch(actor, batch_id)

    assert await _audit_count(session, actor.tenant_id) == before
    found, _, _ = await service.get_batch(actor.tenant_id, batch_id)
    assert found.status == terminal


async def test_transitions_on_other_tenant_batch_look_absent(session, world):
    batch = await BatchLifecycleService(session).create_batch(world.actor(), _create())
    batch_id = batch.id
    service = BatchLifecycleService(session)
    intruder = world.other_actor()

    for op in (service.start_batch, service.complete_batch, service.cancel_batch):
        with pytest.raises(NotFoundError):
            await op(intruder, batch_id)
    with pytest.raises(NotFoundError):
        await service.get_batch(intruder.tenant_id, batch_id)
    assert await service.list_steps(intruder.tenant_id, batch_id) == []

    found, _, _ = await service.get_batch(world.tenant.id, batch_id)
    assert found.status == "draft"


async def test_unknown_batch_is_not_found(session, world):
    with pytest.raises(NotFoundError):
        await BatchLifecycleService(session).start_batch(world.actor(), uuid4())


async def test_failed_audit_write_rolls_back_transition(session_maker, world, monkeypatch):
    actor = world.actor()
    async with session_maker() as session:
        batch = await BatchLifecycleService(session).create_batch(actor, _create())

    async def _broken_log_event(*args, **kwargs):
        raise RuntimeError("audit store unavailable")

    monkeypatch.setattr(batches_module, "log_event", _broken_log_event)
    async with session_maker() as session:
        with pytest.raises(RuntimeError):
            await BatchLifecycleService(session).start_batch(actor, batch.id)

    async with session_maker() as session:
        stored = await session.get(Batch, batch.id)
        assert stored.status == "draft"
        assert stored.started_at is None
        assert await _audit_count(session, actor.tenant_id) == 1


async def test_list_batches_filters_by_status(session, world):
    actor = world.actor()
    service = BatchLifecycleService(session)
    first = await service.create_batch(actor, _create("B-1", world.recipe.id))
    await service.create_batch(actor, _create("B-2"))
    await service.start_batch(actor, first.id)

    everything = await service.list_batches(actor.tenant_id)
    assert [b.batch_number for b, _, _ in everything] == ["B-2", "B-1"]

    active = await service.list_batches(actor.tenant_id, status="active")
    assert [(b.batch_number, total) for b, total, _ in active] == [("B-1", 3)]

    assert await service.list_batches(world.other_tenant.id) == []


@pytest.fixture
def report_dir(tmp_path):
    return tmp_path / "pdfs"


class TestReports:
    async def _completed_batch(self, session, world):
        actor = world.actor()
        service = BatchLifecycleService(session)
        batch = await service.create_batch(actor, _create(recipe_id=world.recipe.id))
        await service.start_batch(actor, batch.id)
        await service.complete_batch(actor, batch.id)
        return actor, batch

    async def test_report_on_draft_is_rejected(self, session, world, report_dir):
        actor = world.actor()
        service = BatchLifecycleService(session, BatchReportGenerator(str(report_dir)))
        batch = await service.create_batch(actor, _create())

        with pytest.raises(InvalidStateError):
            await service.generate_report(actor, batch.id)

        count = await session.scalar(select(func.count(PdfReport.id)))
        assert count == 0
        assert not report_dir.exists()

    async def test_report_on_unknown_batch(self, session, world, report_dir):
        service = BatchLifecycleService(session, BatchReportGenerator(str(report_dir)))
        with pytest.raises(NotFoundError):
            await service.generate_report(world.actor(), uuid4())

    async def test_generate_and_locate_report(self, session, world, report_dir):
        actor, batch = await self._completed_batch(session, world)
        service = BatchLifecycleService(session, BatchReportGenerator(str(report_dir)))

        report = await service.generate_report(actor, batch.id)

        assert report.batch_id == batch.id
        assert report.generated_by == actor.full_name
        assert os.path.dirname(report.file_path) == str(report_dir)
        with open(report.file_path, "rb") as fh:
            assert fh.read(4) == b"%PDF"

        found_batch, path = await service.report_file(actor.tenant_id, batch.id)
        assert found_batch.id == batch.id
        assert str(path) == report.file_path

        trail = await AuditService(session).batch_trail(actor.tenant_id, batch.id)
        assert trail[0].action == "batch.report.generated"
        assert trail[0].details["report_id"] == str(report.id)

    async def test_report_file_missing(self, session, world, report_dir):
        actor, batch = await self._completed_batch(session, world)
        service = BatchLifecycleService(session, BatchReportGenerator(str(report_dir)))

        with pytest.raises(NotFoundError, match="Generate one first"):
            await service.report_file(actor.tenant_id, batch.id)

        report = await service.generate_report(actor, batch.id)
        os.remove(report.file_path)
        with pytest.raises(NotFoundError, match="not found on disk"):
            await service.report_file(actor.tenant_id, batch.id)

    async def test_report_file_removed_when_transaction_fails(self, session, world, report_dir, monkeypatch):
        actor, batch = await self._completed_batch(session, world)
        service = BatchLifecycleService(session, BatchReportGenerator(str(report_dir)))

        async def _broken_log_event(*args, **kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(batches_module, "log_event", _broken_log_event)
        with pytest.raises(RuntimeError):
            await service.generate_report(actor, batch.id)

        assert list(report_dir.iterdir()) == []
        count = await session.scalar(select(func.count(PdfReport.id)))
        assert count == 0
        audit_rows = await session.scalar(
            select(func.count(AuditLogEntry.id)).where(AuditLogEntry.action == "batch.report.generated")
        )
        assert audit_rows == 0
