# app/api/v1/payments.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.core.errors import WorkflowError
from app.db.session import get_db
from app.models.enums import PaymentStatus
from app.models.payment import Payment
from app.policies.rbac import Principal
from app.schemas.payments import (
    MarkPaidRequest,
    OverdueRefreshResponse,
    PaymentCreateRequest,
    PaymentListResponse,
    PaymentResponse,
)
from app.schemas.pagination import page_meta
from app.services.audit_service import RequestMeta
from app.services.payment_service import PaymentService, effective_status

router = APIRouter(prefix="/payments")


def _to_resp(p: Payment) -> dict:
    return {
        "paymentId": p.id,
        "contractId": p.contract_id,
        "amount": p.amount,
        "dueDate": p.due_date,
        "paidDate": p.paid_date,
        "status": effective_status(p),
        "paymentMethod": p.payment_method,
        "notes": p.notes,
    }


@router.post("", response_model=PaymentResponse, status_code=201)
async def create_payment(
    req: PaymentCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        payment = PaymentService().create_payment(
            db,
            actor=principal,
            contract_id=req.contract_id,
            amount=req.amount,
            due_date=req.due_date,
            payment_method=req.payment_method,
            notes=req.notes,
            meta=RequestMeta.from_request(request),
        )
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _to_resp(payment)


@router.get("", response_model=PaymentListResponse)
async def list_payments(
    contractId: Optional[int] = Query(None),
    status: Optional[PaymentStatus] = Query(None),
    branchId: Optional[int] = Query(None),
    dueDateFrom: Optional[date] = Query(None),
    dueDateTo: Optional[date] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    filters = {
        "contract_id": contractId,
        "status": status,
        "branch_id": branchId,
        "due_from": dueDateFrom,
        "due_to": dueDateTo,
    }
    svc = PaymentService()
    try:
        total = svc.count_payments(db, actor=principal, **filters)
        rows = svc.list_payments(db, actor=principal, limit=limit, offset=offset, **filters)
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"payments": [_to_resp(p) for p in rows], **page_meta(total, limit, offset)}


@router.post("/refresh-overdue", response_model=OverdueRefreshResponse)
async def refresh_overdue(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Admin only.")
    updated = PaymentService().refresh_overdue(db, actor=principal, meta=RequestMeta.from_request(request))
    return {"updated": updated}


@router.post("/{paymentId}/pay", response_model=PaymentResponse)
async def mark_paid(
    paymentId: int,
    req: MarkPaidRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        payment = PaymentService().mark_paid(
            db,
            actor=principal,
            payment_id=paymentId,
            paid_date=req.paid_date,
            payment_method=req.payment_method,
            meta=RequestMeta.from_request(request),
        )
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _to_resp(payment)


@router.post("/notify-due")
async def notify_due(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Admin only.")
    return {"notified": PaymentService().notify_due_soon(db)}
