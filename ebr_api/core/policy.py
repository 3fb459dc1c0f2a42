"""
Role/operation access policy.

Every protected operation declares the roles allowed to perform it here;
``allowed`` is the single source of truth consulted by the API dependencies.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet


class Role(str, Enum):
    """User roles known to the system."""

    ADMIN = "admin"
    BATCH_MANAGER = "batch_manager"
    OPERATOR_SUPERVISOR = "operator_supervisor"
    OPERATOR = "operator"
    QA_QC = "qa_qc"


VALID_ROLES: FrozenSet[str] = frozenset(r.value for r in Role)


class Operation(str, Enum):
    """Protected operations."""

    BATCH_READ = "batch.read"
    BATCH_CREATE = "batch.create"
    BATCH_START = "batch.start"
    BATCH_COMPLETE = "batch.complete"
    BATCH_CANCEL = "batch.cancel"
    BATCH_REPORT = "batch.report"
    STEP_UPDATE = "step.update"
    STEP_SIGN = "step.sign"
    RECIPE_READ = "recipe.read"
    RECIPE_WRITE = "recipe.write"
    USER_MANAGE = "user.manage"
    AUDIT_READ = "audit.read"
    AUDIT_EXPORT = "audit.export"
    INTEGRATIONS_READ = "integrations.read"
    TENANT_READ = "tenant.read"


ALL_ROLES: FrozenSet[Role] = frozenset(Role)
WRITERS: FrozenSet[Role] = frozenset(
    {Role.ADMIN, Role.BATCH_MANAGER, Role.OPERATOR_SUPERVISOR, Role.OPERATOR}
)
MANAGERS: FrozenSet[Role] = frozenset({Role.ADMIN, Role.BATCH_MANAGER, Role.OPERATOR_SUPERVISOR})
RECIPE_EDITORS: FrozenSet[Role] = frozenset({Role.ADMIN, Role.BATCH_MANAGER})

OPERATION_ROLES: Dict[Operation, FrozenSet[Role]] = {
    Operation.BATCH_READ: ALL_ROLES,
    Operation.BATCH_CREATE: WRITERS,
    Operation.BATCH_START: MANAGERS,
    Operation.BATCH_COMPLETE: MANAGERS,
    Operation.BATCH_CANCEL: MANAGERS,
    Operation.BATCH_REPORT: MANAGERS,
    Operation.STEP_UPDATE: WRITERS,
    Operation.STEP_SIGN: WRITERS,
    Operation.RECIPE_READ: ALL_ROLES,
    Operation.RECIPE_WRITE: RECIPE_EDITORS,
    Operation.USER_MANAGE: frozenset({Role.ADMIN}),
    Operation.AUDIT_READ: ALL_ROLES,
    Operation.AUDIT_EXPORT: frozenset({Role.ADMIN, Role.BATCH_MANAGER, Role.QA_QC}),
    Operation.INTEGRATIONS_READ: ALL_ROLES,
    Operation.TENANT_READ: ALL_ROLES,
}


# PUBLIC_INTERFACE
def allowed(role: str | Role | None, operation: Operation) -> bool:
    """Return True when ``role`` may perform ``operation``. Unknown roles are never allowed."""
    if role is None:
        return False
    try:
        role = Role(role)
    except ValueError:
        return False
    return role in OPERATION_ROLES.get(operation, frozenset())
