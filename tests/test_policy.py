import pytest

from ebr_api.core.policy import OPERATION_ROLES, Operation, Role, allowed


@pytest.mark.parametrize(
    "role,operation,expected",
    [
        ("operator", Operation.BATCH_CREATE, True),
        ("operator", Operation.BATCH_START, False),
        ("operator", Operation.STEP_SIGN, True),
        ("operator_supervisor", Operation.BATCH_COMPLETE, True),
        ("operator_supervisor", Operation.RECIPE_WRITE, False),
        ("batch_manager", Operation.RECIPE_WRITE, True),
        ("batch_manager", Operation.USER_MANAGE, False),
        ("qa_qc", Operation.BATCH_CREATE, False),
        ("qa_qc", Operation.STEP_UPDATE, False),
        ("qa_qc", Operation.AUDIT_EXPORT, True),
        ("operator", Operation.AUDIT_EXPORT, False),
        ("admin", Operation.USER_MANAGE, True),
    ],
)
def test_allowed(role, operation, expected):
    assert allowed(role, operation) is expected


def test_every_role_can_read():
    for role in Role:
        for op in (Operation.BATCH_READ, Operation.RECIPE_READ, Operation.AUDIT_READ, Operation.TENANT_READ):
            assert allowed(role, op)


def test_unknown_roles_are_denied():
    assert not allowed(None, Operation.BATCH_READ)
    assert not allowed("superuser", Operation.BATCH_READ)


def test_every_operation_has_a_rule():
    assert set(OPERATION_ROLES) == set(Operation)
