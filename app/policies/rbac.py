#app/policies/rbac.py
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.core.errors import ForbiddenError
from app.models.enums import UserRole


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: UserRole
    branch_id: Optional[int]
    email: str = ""

    @classmethod
    def from_user(cls, user) -> "Principal":
        return cls(
            user_id=user.id,
            role=UserRole(user.role),
            branch_id=user.branch_id,
            email=user.email,
        )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


class ContractAction(str, Enum):
    CREATE = "create"
    VIEW = "view"
    EDIT = "edit"
    REQUEST_SIGNATURE = "request_signature"
    APPROVE_EMPLOYEE = "approve_employee"
    SEAL_MANAGEMENT = "seal_management"
    ARCHIVE = "archive"
    OVERRIDE = "override"
    MANAGE_PAYMENTS = "manage_payments"
    VIEW_AUDIT = "view_audit"
    EXPORT = "export"


# any role inside its own branch
_BRANCH_MEMBER_ACTIONS = {
    ContractAction.CREATE,
    ContractAction.VIEW,
    ContractAction.APPROVE_EMPLOYEE,
    ContractAction.MANAGE_PAYMENTS,
    ContractAction.EXPORT,
}

# the contract's creator, or a manager of its branch
_CREATOR_OR_MANAGER_ACTIONS = {
    ContractAction.EDIT,
    ContractAction.REQUEST_SIGNATURE,
}

# managers of the branch only
_MANAGER_ACTIONS = {
    ContractAction.SEAL_MANAGEMENT,
    ContractAction.ARCHIVE,
    ContractAction.VIEW_AUDIT,
}


def is_allowed(
    role: UserRole,
    actor_branch_id: Optional[int],
    contract_branch_id: Optional[int],
    action: ContractAction,
    *,
    is_creator: bool = False,
) -> bool:
    """
    Pure branch/role guard shared by every entry point that reads or moves a contract.

    - admin: everything, every branch
    - everyone else: own branch only, then by action class
    """
    if role == UserRole.admin:
        return True

    if action == ContractAction.OVERRIDE:
        return False

    if actor_branch_id is None or actor_branch_id != contract_branch_id:
        return False

    if action in _BRANCH_MEMBER_ACTIONS:
        return True

    if action in _CREATOR_OR_MANAGER_ACTIONS:
        return is_creator or role == UserRole.manager

    if action in _MANAGER_ACTIONS:
        return role == UserRole.manager

    return False


def require_allowed(
    principal: Principal,
    action: ContractAction,
    branch_id: Optional[int],
    *,
    is_creator: bool = False,
) -> None:
    if not is_allowed(
        principal.role,
        principal.branch_id,
        branch_id,
        action,
        is_creator=is_creator,
    ):
        raise ForbiddenError(
            f"Role {principal.role.value} not permitted for action {action.value} on branch {branch_id}."
        )
