import pytest

from app.core.errors import ForbiddenError
from app.models.enums import UserRole
from app.policies.rbac import ContractAction, Principal, is_allowed, require_allowed
from app.policies.scope_policy import branch_scope

JED, MEC = 1, 2


def test_admin_is_allowed_everything_in_every_branch():
    for action in ContractAction:
        assert is_allowed(UserRole.admin, None, MEC, action) is True
        assert is_allowed(UserRole.admin, JED, MEC, action) is True


def test_non_admins_never_cross_branches():
    for role in (UserRole.employee, UserRole.manager):
        for action in ContractAction:
            assert is_allowed(role, JED, MEC, action, is_creator=True) is False


def test_branch_member_actions_for_any_role():
    for action in (
        ContractAction.CREATE,
        ContractAction.VIEW,
        ContractAction.APPROVE_EMPLOYEE,
        ContractAction.MANAGE_PAYMENTS,
        ContractAction.EXPORT,
    ):
        assert is_allowed(UserRole.employee, JED, JED, action) is True
        assert is_allowed(UserRole.manager, JED, JED, action) is True


def test_edit_and_request_signature_need_creator_or_manager():
    for action in (ContractAction.EDIT, ContractAction.REQUEST_SIGNATURE):
        assert is_allowed(UserRole.employee, JED, JED, action) is False
        assert is_allowed(UserRole.employee, JED, JED, action, is_creator=True) is True
        assert is_allowed(UserRole.manager, JED, JED, action) is True


def test_seal_archive_and_audit_are_manager_only():
    for action in (ContractAction.SEAL_MANAGEMENT, ContractAction.ARCHIVE, ContractAction.VIEW_AUDIT):
        assert is_allowed(UserRole.employee, JED, JED, action, is_creator=True) is False
        assert is_allowed(UserRole.manager, JED, JED, action) is True


def test_override_is_admin_only():
    assert is_allowed(UserRole.manager, JED, JED, ContractAction.OVERRIDE) is False
    assert is_allowed(UserRole.admin, JED, JED, ContractAction.OVERRIDE) is True


def test_missing_actor_branch_is_denied():
    assert is_allowed(UserRole.employee, None, JED, ContractAction.VIEW) is False


def test_require_allowed_raises_forbidden():
    p = Principal(user_id=7, role=UserRole.employee, branch_id=JED)
    require_allowed(p, ContractAction.VIEW, JED)
    with pytest.raises(ForbiddenError):
        require_allowed(p, ContractAction.VIEW, MEC)


def test_branch_scope():
    admin = Principal(user_id=1, role=UserRole.admin, branch_id=None)
    emp = Principal(user_id=2, role=UserRole.employee, branch_id=JED)

    assert branch_scope(admin).allow_all is True
    assert branch_scope(admin, MEC).branch_id == MEC
    assert branch_scope(admin, MEC).allow_all is False

    # a requested branch never widens a non-admin's view
    s = branch_scope(emp, MEC)
    assert s.allow_all is False
    assert s.branch_id == JED
