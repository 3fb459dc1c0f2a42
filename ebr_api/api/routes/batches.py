from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Path, Query, status
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ebr_api.core.deps import get_tenant_session, require_operation
from ebr_api.core.policy import Operation
from ebr_api.db.models.batches import Batch
from ebr_api.schemas.audit import AuditEventRead
from ebr_api.schemas.batches import (
    BatchCancel,
    BatchCreate,
    BatchRead,
    BatchStepRead,
    BatchWithProgress,
    ReportGenerated,
    StepSign,
    StepUpdate,
)
from ebr_api.services.audit import AuditService
from ebr_api.services.base import Actor
from ebr_api.services.batches import BatchLifecycleService
from ebr_api.services.reports import BatchReportGenerator
from ebr_api.services.steps import StepExecutionService

router = APIRouter(prefix="/batches", tags=["Batches"])

_read = require_operation(Operation.BATCH_READ)


# PUBLIC_INTERFACE
def get_report_generator() -> BatchReportGenerator:
    """Report generator writing under REPORT_STORAGE_DIR."""
    return BatchReportGenerator()


def _with_progress(batch: Batch, total: int, completed: int) -> BatchWithProgress:
    return BatchWithProgress(
        **BatchRead.model_validate(batch).model_dump(),
        total_steps=total,
        completed_steps=completed,
    )


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=List[BatchWithProgress],
    summary="List batches",
    description="Batches of the tenant, newest first, with step progress counts.",
)
async def list_batches(
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by batch status"),
    actor: Actor = Depends(_read),
    session: AsyncSession = Depends(get_tenant_session),
) -> List[BatchWithProgress]:
    rows = await BatchLifecycleService(session).list_batches(actor.tenant_id, status=status_filter)
    return [_with_progress(*row) for row in rows]


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=BatchRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create batch",
    description="Create a draft batch, copying the steps of the given recipe.",
)
async def create_batch(
    payload: BatchCreate,
    actor: Actor = Depends(require_operation(Operation.BATCH_CREATE)),
    session: AsyncSession = Depends(get_tenant_session),
):
    return await BatchLifecycleService(session).create_batch(actor, payload)


# PUBLIC_INTERFACE
@router.get("/{batch_id}", response_model=BatchWithProgress, summary="Get batch")
async def get_batch(
    batch_id: UUID = Path(..., description="Batch ID"),
    actor: Actor = Depends(_read),
    session: AsyncSession = Depends(get_tenant_session),
) -> BatchWithProgress:
    return _with_progress(*await BatchLifecycleService(session).get_batch(actor.tenant_id, batch_id))


# PUBLIC_INTERFACE
@router.get("/{batch_id}/steps", response_model=List[BatchStepRead], summary="List batch steps")
async def list_steps(
    batch_id: UUID = Path(..., description="Batch ID"),
    actor: Actor = Depends(_read),
    session: AsyncSession = Depends(get_tenant_session),
):
    return await BatchLifecycleService(session).list_steps(actor.tenant_id, batch_id)


# PUBLIC_INTERFACE
@router.post(
    "/{batch_id}/start",
    response_model=BatchRead,
    summary="Start batch",
    description="draft -> active. 404 if the batch is absent or not in draft.",
)
async def start_batch(
    batch_id: UUID = Path(..., description="Batch ID"),
    actor: Actor = Depends(require_operation(Operation.BATCH_START)),
    session: AsyncSession = Depends(get_tenant_session),
):
    return await BatchLifecycleService(session).start_batch(actor, batch_id)


# PUBLIC_INTERFACE
@router.post(
    "/{batch_id}/complete",
    response_model=BatchRead,
    summary="Complete batch",
    description="active -> completed. 404 if the batch is absent or not active.",
)
async def complete_batch(
    batch_id: UUID = Path(..., description="Batch ID"),
    actor: Actor = Depends(require_operation(Operation.BATCH_COMPLETE)),
    session: AsyncSession = Depends(get_tenant_session),
):
    return await BatchLifecycleService(session).complete_batch(actor, batch_id)


# PUBLIC_INTERFACE
@router.post(
    "/{batch_id}/cancel",
    response_model=BatchRead,
    summary="Cancel batch",
    description="draft|active -> cancelled. The reason is kept in the audit trail.",
)
async def cancel_batch(
    batch_id: UUID = Path(..., description="Batch ID"),
    payload: Optional[BatchCancel] = Body(None),
    actor: Actor = Depends(require_operation(Operation.BATCH_CANCEL)),
    session: AsyncSession = Depends(get_tenant_session),
):
    reason = payload.reason if payload else None
    return await BatchLifecycleService(session).cancel_batch(actor, batch_id, reason)


# PUBLIC_INTERFACE
@router.put(
    "/{batch_id}/steps/{step_id}",
    response_model=BatchStepRead,
    summary="Update step",
    description="Set a step's status and optionally its notes and actual value.",
)
async def update_step(
    payload: StepUpdate,
    batch_id: UUID = Path(..., description="Batch ID"),
    step_id: UUID = Path(..., description="Batch step ID"),
    actor: Actor = Depends(require_operation(Operation.STEP_UPDATE)),
    session: AsyncSession = Depends(get_tenant_session),
):
    return await StepExecutionService(session).update_step(actor, batch_id, step_id, payload)


# PUBLIC_INTERFACE
@router.post(
    "/{batch_id}/steps/{step_id}/sign",
    response_model=BatchStepRead,
    summary="Sign step",
    description="Complete a step with an electronic signature.",
)
async def sign_step(
    payload: StepSign,
    batch_id: UUID = Path(..., description="Batch ID"),
    step_id: UUID = Path(..., description="Batch step ID"),
    actor: Actor = Depends(require_operation(Operation.STEP_SIGN)),
    session: AsyncSession = Depends(get_tenant_session),
):
    return await StepExecutionService(session).sign_step(actor, batch_id, step_id, payload)


# PUBLIC_INTERFACE
@router.get(
    "/{batch_id}/audit",
    response_model=List[AuditEventRead],
    summary="Batch audit trail",
    description="Every audit event recorded against the batch, newest first.",
)
async def batch_audit(
    batch_id: UUID = Path(..., description="Batch ID"),
    actor: Actor = Depends(_read),
    session: AsyncSession = Depends(get_tenant_session),
):
    return await AuditService(session).batch_trail(actor.tenant_id, batch_id)


# PUBLIC_INTERFACE
@router.post(
    "/{batch_id}/report",
    response_model=ReportGenerated,
    summary="Generate batch record",
    description="Render the batch record PDF. Only completed batches can be reported on.",
)
async def generate_report(
    batch_id: UUID = Path(..., description="Batch ID"),
    actor: Actor = Depends(require_operation(Operation.BATCH_REPORT)),
    session: AsyncSession = Depends(get_tenant_session),
    generator: BatchReportGenerator = Depends(get_report_generator),
) -> ReportGenerated:
    report = await BatchLifecycleService(session, generator).generate_report(actor, batch_id)
    return ReportGenerated(report_id=report.id)


# PUBLIC_INTERFACE
@router.get(
    "/{batch_id}/report/download",
    summary="Download batch record",
    description="Stream the most recently generated batch record PDF.",
    response_description="PDF file",
)
async def download_report(
    batch_id: UUID = Path(..., description="Batch ID"),
    actor: Actor = Depends(_read),
    session: AsyncSession = Depends(get_tenant_session),
) -> FileResponse:
    batch, path = await BatchLifecycleService(session).report_file(actor.tenant_id, batch_id)
    return FileResponse(
        path,
        media_type="application/pdf",
        filename=f"batch-record-{batch.batch_number}.pdf",
    )
