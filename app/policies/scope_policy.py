from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from app.policies.rbac import Principal


@dataclass(frozen=True)
class BranchScope:
    """Which branch's rows a principal may list. branch_id None means every branch."""
    allow_all: bool
    branch_id: Optional[int]


def branch_scope(principal: Principal, requested_branch_id: Optional[int] = None) -> BranchScope:
    if principal.is_admin:
        return BranchScope(allow_all=requested_branch_id is None, branch_id=requested_branch_id)
    return BranchScope(allow_all=False, branch_id=principal.branch_id)
