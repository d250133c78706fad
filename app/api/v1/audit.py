from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.core.errors import WorkflowError
from app.db.session import get_db
from app.models.audit_log import AuditLog
from app.models.enums import AuditActionType
from app.policies.rbac import Principal
from app.schemas.audit import AuditLogListResponse
from app.services.audit_service import AuditRecorder

router = APIRouter(prefix="/audit")


def _to_resp(r: AuditLog) -> dict:
    return {
        "id": r.id,
        "createdAtIso": r.created_at.isoformat() if r.created_at else None,
        "userId": r.user_id,
        "actionType": r.action_type,
        "tableName": r.table_name,
        "recordId": r.record_id,
        "oldValues": r.old_values,
        "newValues": r.new_values,
        "branchId": r.branch_id,
        "ipAddress": r.ip_address,
        "userAgent": r.user_agent,
        "requestId": r.request_id,
        "description": r.description,
    }


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    branchId: Optional[int] = Query(None),
    actionType: Optional[AuditActionType] = Query(None),
    tableName: Optional[str] = Query(None, min_length=1),
    recordId: Optional[int] = Query(None),
    userId: Optional[int] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        rows = AuditRecorder().list_logs(
            db,
            actor=principal,
            branch_id=branchId,
            action_type=actionType,
            table_name=tableName,
            record_id=recordId,
            user_id=userId,
            limit=limit,
        )
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return {
        "branchId": branchId if principal.is_admin else principal.branch_id,
        "records": [_to_resp(r) for r in rows],
    }
