"""
Batch lifecycle: draft -> active -> completed, with cancellation from draft or active.

Each transition is a guarded UPDATE whose status predicate makes concurrent
callers race safely: exactly one of them matches the row, the rest get
NotFoundError. The state change and its audit entry share one transaction.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from ebr_api.core.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from ebr_api.db.base import utcnow
from ebr_api.db.models.batches import Batch, BatchStep, PdfReport
from ebr_api.repositories.batches import BatchRepository, BatchStepRepository
from ebr_api.repositories.recipes import RecipeRepository
from ebr_api.schemas.batches import BatchCreate
from ebr_api.services.audit import AuditAction, AuditService, EntityRef, log_event
from ebr_api.services.base import Actor, BaseService
from ebr_api.services.reports import BatchReportGenerator

logger = logging.getLogger(__name__)

DRAFT = "draft"
ACTIVE = "active"
COMPLETED = "completed"
CANCELLED = "cancelled"

DEFAULT_CANCEL_REASON = "No reason provided"

BatchProgress = Tuple[Batch, int, int]


class BatchLifecycleService(BaseService):
    """Creates batches from recipes and drives them through their lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        report_generator: Optional[BatchReportGenerator] = None,
    ) -> None:
        super().__init__(session)
        self.batches = BatchRepository(session)
        self.steps = BatchStepRepository(session)
        self.recipes = RecipeRepository(session)
        self.report_generator = report_generator or BatchReportGenerator()

    # Reads

    async def list_batches(self, tenant_id: UUID, *, status: Optional[str] = None) -> List[BatchProgress]:
        return await self.batches.list_batches_with_progress(tenant_id, status=status)

    async def get_batch(self, tenant_id: UUID, batch_id: UUID) -> BatchProgress:
        found = await self.batches.get_batch_with_progress(tenant_id, batch_id)
        if found is None:
            raise NotFoundError("Batch not found")
        return found

    async def list_steps(self, tenant_id: UUID, batch_id: UUID) -> List[BatchStep]:
        """Steps in step_number order; empty for unknown batches."""
        return await self.steps.list_steps(tenant_id, batch_id)

    # Transitions

    # PUBLIC_INTERFACE
    async def create_batch(self, actor: Actor, payload: BatchCreate) -> Batch:
        """
        Create a draft batch, copying the recipe's steps in step_number order.

        Raises:
            ValidationError: recipe_id does not name a recipe of the caller's tenant.
            ConflictError: batch_number already used within the tenant.
        """
        async with self.unit_of_work("Batch number already exists"):
            recipe_steps = []
            if payload.recipe_id is not None:
                recipe = await self.recipes.get_recipe(actor.tenant_id, payload.recipe_id)
                if recipe is None:
                    raise ValidationError(
                        "Recipe not found for this tenant", details={"recipe_id": str(payload.recipe_id)}
                    )
                recipe_steps = await self.recipes.list_steps(actor.tenant_id, recipe.id)

            if await self.batches.get_by_batch_number(actor.tenant_id, payload.batch_number):
                raise ConflictError("Batch number already exists")

            batch = Batch(
                tenant_id=actor.tenant_id,
                batch_number=payload.batch_number,
                product_name=payload.product_name,
                batch_size=payload.batch_size,
                recipe_id=payload.recipe_id,
                status=DRAFT,
                created_by=actor.full_name,
            )
            steps = BatchStepRepository.steps_from_recipe(actor.tenant_id, recipe_steps)
            await self.batches.create_batch(batch, steps)

            await log_event(
                self.session,
                tenant_id=actor.tenant_id,
                action=AuditAction.BATCH_CREATED,
                entity=EntityRef.batch(batch.id),
                batch_id=batch.id,
                performed_by=actor.full_name,
                ip_address=actor.ip_address,
                details={
                    "batch_number": batch.batch_number,
                    "recipe_id": str(payload.recipe_id) if payload.recipe_id else None,
                    "step_count": len(steps),
                },
            )
        logger.info("Created batch %s with %d steps", batch.batch_number, len(steps))
        return batch

    async def _transition(
        self,
        actor: Actor,
        batch_id: UUID,
        *,
        from_statuses: Tuple[str, ...],
        to_status: str,
        action: str,
        not_found: str,
        stamp: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> Batch:
        async with self.unit_of_work():
            now = utcnow()
            values = {"status": to_status, "updated_at": now}
            if stamp:
                values[stamp] = now
            batch = await self.batches.transition_status(
                actor.tenant_id, batch_id, from_statuses=from_statuses, values=values
            )
            if batch is None:
                logger.warning("Batch %s transition to %s rejected", batch_id, to_status)
                raise NotFoundError(not_found)

            await log_event(
                self.session,
                tenant_id=actor.tenant_id,
                action=action,
                entity=EntityRef.batch(batch.id),
                batch_id=batch.id,
                performed_by=actor.full_name,
                ip_address=actor.ip_address,
                details={"batch_number": batch.batch_number, **(details or {})},
            )
        logger.info("Batch %s -> %s", batch.batch_number, to_status)
        return batch

    # PUBLIC_INTERFACE
    async def start_batch(self, actor: Actor, batch_id: UUID) -> Batch:
        """draft -> active; stamps started_at."""
        return await self._transition(
            actor,
            batch_id,
            from_statuses=(DRAFT,),
            to_status=ACTIVE,
            action=AuditAction.BATCH_STARTED,
            not_found="Batch not found or already started",
            stamp="started_at",
        )

    # PUBLIC_INTERFACE
    async def complete_batch(self, actor: Actor, batch_id: UUID) -> Batch:
        """active -> completed; stamps completed_at."""
        return await self._transition(
            actor,
            batch_id,
            from_statuses=(ACTIVE,),
            to_status=COMPLETED,
            action=AuditAction.BATCH_COMPLETED,
            not_found="Batch not found or not active",
            stamp="completed_at",
        )

    # PUBLIC_INTERFACE
    async def cancel_batch(self, actor: Actor, batch_id: UUID, reason: Optional[str] = None) -> Batch:
        """draft|active -> cancelled; the reason is recorded in the audit entry only."""
        return await self._transition(
            actor,
            batch_id,
            from_statuses=(DRAFT, ACTIVE),
            to_status=CANCELLED,
            action=AuditAction.BATCH_CANCELLED,
            not_found="Batch not found or already completed",
            details={"reason": reason or DEFAULT_CANCEL_REASON},
        )

    # Reports

    # PUBLIC_INTERFACE
    async def generate_report(self, actor: Actor, batch_id: UUID) -> PdfReport:
        """
        Render the batch record PDF and store a report record.

        Only completed batches can be reported on. If the transaction fails after
        rendering, the file is removed again so no orphan document remains.
        """
        batch = await self.batches.get_batch(actor.tenant_id, batch_id)
        if batch is None:
            raise NotFoundError("Batch not found")
        if batch.status != COMPLETED:
            raise InvalidStateError(
                "Report can only be generated for completed batches", details={"status": batch.status}
            )

        steps = await self.steps.list_steps(actor.tenant_id, batch_id)
        events = await AuditService(self.session).batch_trail(actor.tenant_id, batch_id, oldest_first=True)
        file_path = await run_in_threadpool(self.report_generator.generate, batch, steps, events)

        try:
            async with self.unit_of_work():
                report = await self.batches.add_report(
                    PdfReport(
                        tenant_id=actor.tenant_id,
                        batch_id=batch.id,
                        file_path=file_path,
                        generated_by=actor.full_name,
                    )
                )
                await log_event(
                    self.session,
                    tenant_id=actor.tenant_id,
                    action=AuditAction.BATCH_REPORT_GENERATED,
                    entity=EntityRef.batch(batch.id),
                    batch_id=batch.id,
                    performed_by=actor.full_name,
                    ip_address=actor.ip_address,
                    details={
                        "batch_number": batch.batch_number,
                        "report_id": str(report.id),
                        "file_path": file_path,
                    },
                )
        except BaseException:
            if os.path.exists(file_path):
                os.remove(file_path)
            raise
        return report

    # PUBLIC_INTERFACE
    async def report_file(self, tenant_id: UUID, batch_id: UUID) -> Tuple[Batch, Path]:
        """Path of the most recent report of a batch."""
        batch = await self.batches.get_batch(tenant_id, batch_id)
        if batch is None:
            raise NotFoundError("Batch not found")
        report = await self.batches.latest_report(tenant_id, batch_id)
        if report is None:
            raise NotFoundError("No report found. Generate one first.")
        path = Path(report.file_path)
        if not path.is_file():
            logger.error("Report file %s missing on disk", path)
            raise NotFoundError("PDF file not found on disk.")
        return batch, path
