from __future__ import annotations

from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, desc
from sqlalchemy.orm import Session

from app.db.session import unit_of_work
from app.models.branch import Branch
from app.models.contract import Contract
from app.models.enums import AuditActionType, ContractStatus, ContractType
from app.policies.rbac import Principal
from app.policies.scope_policy import BranchScope
from app.services.audit_service import AuditRecorder, RequestMeta
from app.services.contract_service import created_between


CONTRACT_FIELDS = [
    "id", "contract_number", "client_name", "contract_type",
    "branch_code", "value", "duration_months", "status",
    "created_at", "client_signed_at", "employee_signed_at",
    "management_approved_at", "locked_at",
]


class ExportContractsService:
    def record_export(
        self,
        db: Session,
        *,
        actor: Principal,
        scope: BranchScope,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        meta: Optional[RequestMeta] = None,
    ) -> None:
        # audited before streaming starts; the stream itself never writes
        with unit_of_work(db):
            AuditRecorder().record(
                db,
                actor=actor,
                action_type=AuditActionType.export,
                table_name="contracts",
                record_id=None,
                new_values={
                    "format": "csv",
                    "branch_id": scope.branch_id,
                    "all_branches": scope.allow_all,
                    "date_from": date_from,
                    "date_to": date_to,
                },
                branch_id=scope.branch_id,
                meta=meta,
                description="Contracts exported to CSV",
            )

    def iter_rows(
        self,
        db: Session,
        *,
        scope: BranchScope,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        status: Optional[ContractStatus] = None,
        contract_type: Optional[ContractType] = None,
        limit: int = 100000,
    ) -> Iterable[Dict[str, Any]]:
        """Report rows; date_from/date_to bound created_at, both days inclusive."""
        stmt = select(Contract, Branch.code).join(Branch, Branch.id == Contract.branch_id)
        if not scope.allow_all:
            stmt = stmt.where(Contract.branch_id == scope.branch_id)
        if status is not None:
            stmt = stmt.where(Contract.status == status.value)
        if contract_type is not None:
            stmt = stmt.where(Contract.contract_type == contract_type.value)
        stmt = stmt.where(*created_between(date_from, date_to))

        stmt = stmt.order_by(desc(Contract.created_at), desc(Contract.id)).limit(limit)

        for c, branch_code in db.execute(stmt).yield_per(500):
            yield {
                "id": c.id,
                "contract_number": c.contract_number,
                "client_name": c.client_name,
                "contract_type": c.contract_type,
                "branch_code": branch_code,
                "value": c.value,
                "duration_months": c.duration_months,
                "status": c.status,
                "created_at": c.created_at,
                "client_signed_at": c.client_signed_at,
                "employee_signed_at": c.employee_signed_at,
                "management_approved_at": c.management_approved_at,
                "locked_at": c.locked_at,
            }

    def fieldnames(self) -> List[str]:
        return CONTRACT_FIELDS
