from __future__ import annotations

from typing import Any, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func, select, update

from ebr_api.db.models.batches import Batch, BatchStep, PdfReport
from ebr_api.db.models.recipes import RecipeStep
from .base import BaseRepository


class BatchRepository(BaseRepository):
    """Repository for batches and their generated reports."""

    def _progress_query(self, tenant_id: UUID):
        total = func.count(BatchStep.id)
        completed = func.count(BatchStep.id).filter(BatchStep.status == "completed")
        return (
            select(Batch, total.label("total_steps"), completed.label("completed_steps"))
            .outerjoin(BatchStep, BatchStep.batch_id == Batch.id)
            .where(Batch.tenant_id == tenant_id)
            .group_by(Batch.id)
        )

    async def list_batches_with_progress(
        self, tenant_id: UUID, *, status: Optional[str] = None
    ) -> List[Tuple[Batch, int, int]]:
        stmt = self._progress_query(tenant_id)
        if status:
            stmt = stmt.where(Batch.status == status)
        stmt = stmt.order_by(Batch.created_at.desc())
        res = await self.execute(stmt)
        return [(b, int(total or 0), int(done or 0)) for b, total, done in res.all()]

    async def get_batch_with_progress(
        self, tenant_id: UUID, batch_id: UUID
    ) -> Optional[Tuple[Batch, int, int]]:
        stmt = self._progress_query(tenant_id).where(Batch.id == batch_id)
        row = (await self.execute(stmt)).first()
        if row is None:
            return None
        batch, total, done = row
        return batch, int(total or 0), int(done or 0)

    async def get_batch(self, tenant_id: UUID, batch_id: UUID) -> Optional[Batch]:
        stmt = select(Batch).where(Batch.id == batch_id, Batch.tenant_id == tenant_id)
        return await self.scalar_one_or_none(stmt)

    async def get_by_batch_number(self, tenant_id: UUID, batch_number: str) -> Optional[Batch]:
        stmt = select(Batch).where(Batch.tenant_id == tenant_id, Batch.batch_number == batch_number)
        return await self.scalar_one_or_none(stmt)

    async def create_batch(self, batch: Batch, steps: Sequence[BatchStep] = ()) -> Batch:
        await self.add(batch)
        await self.flush()
        for step in steps:
            step.batch_id = batch.id
        await self.add_all(steps)
        await self.flush()
        return batch

    async def transition_status(
        self,
        tenant_id: UUID,
        batch_id: UUID,
        *,
        from_statuses: Sequence[str],
        values: dict[str, Any],
    ) -> Optional[Batch]:
        """
        Guarded status update. The status predicate is the concurrency control:
        when a concurrent caller has already moved the batch, no row matches and
        None is returned.
        """
        stmt = (
            update(Batch)
            .where(
                Batch.id == batch_id,
                Batch.tenant_id == tenant_id,
                Batch.status.in_(list(from_statuses)),
            )
            .values(**values)
            .returning(Batch)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        res = await self.execute(stmt)
        return res.scalar_one_or_none()

    # Reports
    async def add_report(self, report: PdfReport) -> PdfReport:
        await self.add(report)
        await self.flush()
        return report

    async def latest_report(self, tenant_id: UUID, batch_id: UUID) -> Optional[PdfReport]:
        stmt = (
            select(PdfReport)
            .where(PdfReport.tenant_id == tenant_id, PdfReport.batch_id == batch_id)
            .order_by(PdfReport.created_at.desc())
            .limit(1)
        )
        return await self.scalar_one_or_none(stmt)


class BatchStepRepository(BaseRepository):
    """Repository for batch steps."""

    async def list_steps(self, tenant_id: UUID, batch_id: UUID) -> List[BatchStep]:
        stmt = (
            select(BatchStep)
            .where(BatchStep.tenant_id == tenant_id, BatchStep.batch_id == batch_id)
            .order_by(BatchStep.step_number.asc())
        )
        return list(await self.scalars(stmt))

    async def get_step(self, tenant_id: UUID, batch_id: UUID, step_id: UUID) -> Optional[BatchStep]:
        stmt = select(BatchStep).where(
            BatchStep.id == step_id,
            BatchStep.batch_id == batch_id,
            BatchStep.tenant_id == tenant_id,
        )
        return await self.scalar_one_or_none(stmt)

    async def update_step(
        self, tenant_id: UUID, batch_id: UUID, step_id: UUID, values: dict[str, Any]
    ) -> Optional[BatchStep]:
        stmt = (
            update(BatchStep)
            .where(
                BatchStep.id == step_id,
                BatchStep.batch_id == batch_id,
                BatchStep.tenant_id == tenant_id,
            )
            .values(**values)
            .returning(BatchStep)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        res = await self.execute(stmt)
        return res.scalar_one_or_none()

    @staticmethod
    def steps_from_recipe(tenant_id: UUID, recipe_steps: Sequence[RecipeStep]) -> List[BatchStep]:
        """Materialize batch steps from template steps, preserving order and definitional fields."""
        return [
            BatchStep(
                tenant_id=tenant_id,
                step_number=rs.step_number,
                description=rs.description,
                instructions=rs.instructions,
                step_type=rs.step_type,
                expected_value=rs.expected_value,
                unit=rs.unit,
                requires_signature=rs.requires_signature,
                duration_minutes=rs.duration_minutes,
                status="pending",
            )
            for rs in sorted(recipe_steps, key=lambda s: s.step_number)
        ]
