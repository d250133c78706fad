from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.core.errors import WorkflowError
from app.core.streaming import csv_stream
from app.db.session import get_db
from app.models.enums import ContractStatus, ContractType
from app.policies.rbac import ContractAction, Principal, require_allowed
from app.policies.scope_policy import branch_scope
from app.services.audit_service import RequestMeta
from app.services.contract_service import created_between
from app.services.export_contracts_service import ExportContractsService

router = APIRouter(prefix="/export")


@router.get("/contracts.csv")
async def export_contracts_csv(
    request: Request,
    branchId: Optional[int] = Query(None),
    dateFrom: Optional[date] = Query(None),
    dateTo: Optional[date] = Query(None),
    status: Optional[ContractStatus] = Query(None),
    contractType: Optional[ContractType] = Query(None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    if not principal.is_admin and branchId is not None and branchId != principal.branch_id:
        raise HTTPException(status_code=403, detail="Contracts of another branch cannot be exported.")
    try:
        created_between(dateFrom, dateTo)
        scope = branch_scope(principal, branchId)
        if not scope.allow_all:
            require_allowed(principal, ContractAction.EXPORT, scope.branch_id)
        svc = ExportContractsService()
        svc.record_export(
            db,
            actor=principal,
            scope=scope,
            date_from=dateFrom,
            date_to=dateTo,
            meta=RequestMeta.from_request(request),
        )
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    # read inside the request; the session is closed once the dependency exits
    rows = list(
        svc.iter_rows(
            db,
            scope=scope,
            date_from=dateFrom,
            date_to=dateTo,
            status=status,
            contract_type=contractType,
        )
    )
    filename = f"contracts_{scope.branch_id or 'all'}.csv"
    return StreamingResponse(
        csv_stream(rows, svc.fieldnames()),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
