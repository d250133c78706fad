from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.db.session import get_db
from app.models.branch import Branch
from app.policies.rbac import Principal

router = APIRouter(prefix="/branches")


@router.get("")
async def list_branches(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    stmt = select(Branch).order_by(Branch.id)
    if not principal.is_admin:
        stmt = stmt.where(Branch.id == principal.branch_id)
    rows = db.execute(stmt).scalars().all()
    return {
        "branches": [
            {"branchId": b.id, "code": b.code, "name": b.name, "address": b.address}
            for b in rows
        ]
    }
