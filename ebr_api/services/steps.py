"""
Step execution: the per-step status machine and the electronic-signature path.

The transition table is explicit and total. In the default (permissive) mode
every requested status is accepted, so operators can correct mistakes without a
rigid workflow. With STRICT_STEP_TRANSITIONS the table only allows monotonic
progress and rejects everything else with InvalidStateError.
"""
from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ebr_api.core.errors import InvalidStateError, NotFoundError
from ebr_api.core.settings import AppSettings, get_app_settings
from ebr_api.db.base import utcnow
from ebr_api.db.models.batches import BatchStep
from ebr_api.repositories.batches import BatchStepRepository
from ebr_api.schemas.batches import StepSign, StepUpdate
from ebr_api.services.audit import AuditAction, EntityRef, log_event
from ebr_api.services.base import Actor, BaseService

logger = logging.getLogger(__name__)

PENDING = "pending"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
SKIPPED = "skipped"

STEP_STATUSES: Tuple[str, ...] = (PENDING, IN_PROGRESS, COMPLETED, SKIPPED)
TERMINAL_STATUSES: FrozenSet[str] = frozenset({COMPLETED, SKIPPED})

# (current, requested) -> allowed, for strict mode
STRICT_STEP_TRANSITIONS: Dict[Tuple[str, str], bool] = {
    (current, requested): False for current in STEP_STATUSES for requested in STEP_STATUSES
}
STRICT_STEP_TRANSITIONS.update(
    {
        (PENDING, IN_PROGRESS): True,
        (PENDING, COMPLETED): True,
        (PENDING, SKIPPED): True,
        (IN_PROGRESS, COMPLETED): True,
        (IN_PROGRESS, SKIPPED): True,
    }
)

# Permissive mode accepts every pair, including statuses outside STEP_STATUSES.
PERMISSIVE_STEP_TRANSITIONS: Dict[Tuple[str, str], bool] = {
    key: True for key in STRICT_STEP_TRANSITIONS
}

STEP_ACTIONS: Dict[str, str] = {
    IN_PROGRESS: AuditAction.STEP_STARTED,
    COMPLETED: AuditAction.STEP_COMPLETED,
    SKIPPED: AuditAction.STEP_SKIPPED,
}


# PUBLIC_INTERFACE
def resolve_transition(current: str, requested: str, *, strict: bool) -> str:
    """
    Return the status the step moves to, or raise InvalidStateError.

    Pairs missing from the table (unknown statuses) are allowed only in permissive mode.
    """
    table = STRICT_STEP_TRANSITIONS if strict else PERMISSIVE_STEP_TRANSITIONS
    if table.get((current, requested), not strict):
        return requested
    raise InvalidStateError(
        f"Step cannot move from '{current}' to '{requested}'",
        details={"current": current, "requested": requested},
    )


# PUBLIC_INTERFACE
def step_action(status: str) -> str:
    """Audit action code for a plain status update; unknown statuses get a derived code."""
    return STEP_ACTIONS.get(status, f"batch.step.{status}")


class StepExecutionService(BaseService):
    """Updates and signs batch steps, one audit entry per accepted change."""

    def __init__(self, session: AsyncSession, settings: Optional[AppSettings] = None) -> None:
        super().__init__(session)
        self.settings = settings or get_app_settings()
        self.steps = BatchStepRepository(session)

    async def _load(self, actor: Actor, batch_id: UUID, step_id: UUID) -> BatchStep:
        step = await self.steps.get_step(actor.tenant_id, batch_id, step_id)
        if step is None:
            raise NotFoundError("Step not found")
        return step

    # PUBLIC_INTERFACE
    async def update_step(
        self, actor: Actor, batch_id: UUID, step_id: UUID, payload: StepUpdate
    ) -> BatchStep:
        """
        Apply a requested status, merge notes/actual_value, and record the event.

        in_progress stamps started_at once; completed/skipped stamp completed_at.
        Moving off completed clears any signature, and moving to a non-terminal
        status clears completed_at.
        """
        async with self.unit_of_work():
            step = await self._load(actor, batch_id, step_id)
            try:
                new_status = resolve_transition(
                    step.status, payload.status, strict=self.settings.STRICT_STEP_TRANSITIONS
                )
                if (
                    self.settings.ENFORCE_STEP_SIGNATURES
                    and new_status == COMPLETED
                    and step.requires_signature
                ):
                    raise InvalidStateError("Step requires an electronic signature; use the sign endpoint")
            except InvalidStateError:
                logger.warning(
                    "Rejected step %s update %s -> %s", step_id, step.status, payload.status
                )
                raise

            now = utcnow()
            values: dict = {"status": new_status, "updated_at": now}
            if actor.full_name is not None:
                values["performed_by"] = actor.full_name
            if payload.notes is not None:
                values["notes"] = payload.notes
            if payload.actual_value is not None:
                values["actual_value"] = payload.actual_value
            if new_status == IN_PROGRESS and step.started_at is None:
                values["started_at"] = now
            if new_status in TERMINAL_STATUSES:
                values["completed_at"] = now
            else:
                values["completed_at"] = None
            # a signature only ever stands on a completed step
            if new_status != COMPLETED:
                values["signature_data"] = None

            updated = await self.steps.update_step(actor.tenant_id, batch_id, step_id, values)
            if updated is None:
                raise NotFoundError("Step not found")

            await log_event(
                self.session,
                tenant_id=actor.tenant_id,
                action=step_action(new_status),
                entity=EntityRef.batch(batch_id),
                batch_id=batch_id,
                step_id=updated.id,
                performed_by=actor.full_name,
                ip_address=actor.ip_address,
                details={
                    "step_number": updated.step_number,
                    "description": updated.description,
                    "actual_value": payload.actual_value,
                },
            )
        logger.info("Step %s of batch %s -> %s", updated.step_number, batch_id, new_status)
        return updated

    # PUBLIC_INTERFACE
    async def sign_step(
        self, actor: Actor, batch_id: UUID, step_id: UUID, payload: StepSign
    ) -> BatchStep:
        """
        Complete a step with an electronic signature.

        The signature payload is stored as-is. Whether the step actually requires
        a signature is the caller's decision.
        """
        async with self.unit_of_work():
            step = await self._load(actor, batch_id, step_id)
            try:
                resolve_transition(step.status, COMPLETED, strict=self.settings.STRICT_STEP_TRANSITIONS)
            except InvalidStateError:
                logger.warning("Rejected signature on step %s in status %s", step_id, step.status)
                raise

            now = utcnow()
            values: dict = {
                "status": COMPLETED,
                "performed_by": actor.full_name,
                "signature_data": payload.signature_data,
                "completed_at": now,
                "updated_at": now,
            }
            if step.started_at is None:
                values["started_at"] = now
            if payload.notes is not None:
                values["notes"] = payload.notes
            if payload.actual_value is not None:
                values["actual_value"] = payload.actual_value

            updated = await self.steps.update_step(actor.tenant_id, batch_id, step_id, values)
            if updated is None:
                raise NotFoundError("Step not found")

            await log_event(
                self.session,
                tenant_id=actor.tenant_id,
                action=AuditAction.STEP_SIGNED,
                entity=EntityRef.batch(batch_id),
                batch_id=batch_id,
                step_id=updated.id,
                performed_by=actor.full_name,
                ip_address=actor.ip_address,
                details={
                    "step_number": updated.step_number,
                    "description": updated.description,
                    "actual_value": payload.actual_value,
                },
            )
        logger.info("Step %s of batch %s signed", updated.step_number, batch_id)
        return updated
