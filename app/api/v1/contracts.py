# app/api/v1/contracts.py
from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.core.errors import WorkflowError
from app.db.session import get_db
from app.models.contract import Contract
from app.models.enums import ContractStatus, ContractType
from app.models.signature import Signature
from app.policies.rbac import Principal
from app.schemas.contracts import (
    ContractCreateRequest,
    ContractListResponse,
    ContractResponse,
    ContractUpdateRequest,
    RollbackRequest,
    SignatureResponse,
    SignatureSubmitRequest,
    SigningLinkResponse,
    WorkflowProgressResponse,
)
from app.schemas.pagination import page_meta
from app.services.audit_service import RequestMeta
from app.services.contract_service import ContractService
from app.services.contract_workflow import ContractWorkflowService

router = APIRouter(prefix="/contracts")


def _iso(dt):
    return dt.isoformat() if dt else None


def _to_resp(c: Contract) -> dict:
    return {
        "contractId": c.id,
        "contractNumber": c.contract_number,
        "clientName": c.client_name,
        "clientPhone": c.client_phone,
        "clientEmail": c.client_email,
        "contractType": c.contract_type,
        "branchId": c.branch_id,
        "createdBy": c.created_by,
        "value": c.value,
        "durationMonths": c.duration_months,
        "status": c.status,
        "linkExpiresAtIso": _iso(c.link_expires_at),
        "clientSignedAtIso": _iso(c.client_signed_at),
        "employeeSignedAtIso": _iso(c.employee_signed_at),
        "managementApprovedAtIso": _iso(c.management_approved_at),
        "lockedAtIso": _iso(c.locked_at),
        "servicesDescription": c.services_description,
        "termsAndConditions": c.terms_and_conditions,
        "createdAtIso": _iso(c.created_at),
        "updatedAtIso": _iso(c.updated_at),
    }


def _signature_resp(s: Signature) -> dict:
    return {
        "signatureId": s.id,
        "contractId": s.contract_id,
        "userId": s.user_id,
        "signatureType": s.signature_type,
        "signedAtIso": _iso(s.signed_at),
        "ipAddress": s.ip_address,
        "revokedAtIso": _iso(s.revoked_at),
    }


@router.post("", response_model=ContractResponse, status_code=201)
async def create_contract(
    req: ContractCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    branch_id = req.branch_id if req.branch_id is not None else principal.branch_id
    if branch_id is None:
        raise HTTPException(status_code=422, detail="branch_id is required.")

    data = req.model_dump(exclude={"branch_id"}, exclude_none=True)
    try:
        contract = ContractService().create_contract(
            db,
            actor=principal,
            branch_id=branch_id,
            data=data,
            meta=RequestMeta.from_request(request),
        )
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _to_resp(contract)


@router.get("", response_model=ContractListResponse)
async def list_contracts(
    request: Request,
    branchId: Optional[int] = Query(None),
    status: Optional[ContractStatus] = Query(None),
    contractType: Optional[ContractType] = Query(None),
    clientName: Optional[str] = Query(None, min_length=1),
    contractNumber: Optional[str] = Query(None, min_length=1),
    createdBy: Optional[int] = Query(None),
    dateFrom: Optional[date] = Query(None),
    dateTo: Optional[date] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    filters = {
        "branch_id": branchId,
        "status": status,
        "contract_type": contractType,
        "client_name": clientName,
        "contract_number": contractNumber,
        "created_by": createdBy,
        "date_from": dateFrom,
        "date_to": dateTo,
    }
    svc = ContractService()
    try:
        total = svc.count_contracts(db, actor=principal, **filters)
        rows = svc.list_contracts(
            db,
            actor=principal,
            limit=limit,
            offset=offset,
            meta=RequestMeta.from_request(request),
            **filters,
        )
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return {
        "branchId": branchId if principal.is_admin else principal.branch_id,
        "contracts": [_to_resp(c) for c in rows],
        **page_meta(total, limit, offset),
    }


@router.get("/{contractId}", response_model=ContractResponse)
async def get_contract(
    contractId: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        contract = ContractService().get_visible_contract(db, actor=principal, contract_id=contractId)
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _to_resp(contract)


@router.patch("/{contractId}", response_model=ContractResponse)
async def update_contract(
    contractId: int,
    req: ContractUpdateRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        contract = ContractService().update_contract(
            db,
            actor=principal,
            contract_id=contractId,
            changes=req.model_dump(exclude_unset=True),
            meta=RequestMeta.from_request(request),
        )
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _to_resp(contract)


# ------------------------------------------------------------------
# WORKFLOW
# ------------------------------------------------------------------

@router.post("/{contractId}/request-signature", response_model=SigningLinkResponse)
async def request_signature(
    contractId: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        result = ContractWorkflowService().request_signature(
            db,
            actor=principal,
            contract_id=contractId,
            meta=RequestMeta.from_request(request),
        )
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return {
        "contractId": result.contract.id,
        "status": result.contract.status,
        "signingLink": result.signing_link,
        "expiresAtIso": result.expires_at.isoformat(),
    }


@router.post("/{contractId}/approve", response_model=ContractResponse)
async def approve_contract(
    contractId: int,
    req: SignatureSubmitRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        contract = ContractWorkflowService().approve_as_employee(
            db,
            actor=principal,
            contract_id=contractId,
            signature_data=req.signature_data,
            meta=RequestMeta.from_request(request),
        )
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _to_resp(contract)


@router.post("/{contractId}/seal", response_model=ContractResponse)
async def seal_contract(
    contractId: int,
    req: SignatureSubmitRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        contract = ContractWorkflowService().seal_as_management(
            db,
            actor=principal,
            contract_id=contractId,
            signature_data=req.signature_data,
            meta=RequestMeta.from_request(request),
        )
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _to_resp(contract)


@router.post("/{contractId}/archive", response_model=ContractResponse)
async def archive_contract(
    contractId: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        contract = ContractWorkflowService().archive_contract(
            db,
            actor=principal,
            contract_id=contractId,
            meta=RequestMeta.from_request(request),
        )
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _to_resp(contract)


@router.post("/{contractId}/rollback", response_model=ContractResponse)
async def rollback_contract(
    contractId: int,
    req: RollbackRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        contract = ContractWorkflowService().admin_rollback(
            db,
            actor=principal,
            contract_id=contractId,
            reason=req.reason,
            meta=RequestMeta.from_request(request),
        )
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _to_resp(contract)


@router.get("/{contractId}/signatures", response_model=List[SignatureResponse])
async def list_signatures(
    contractId: int,
    includeRevoked: bool = Query(False),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        rows = ContractWorkflowService().list_signatures(
            db, actor=principal, contract_id=contractId, include_revoked=includeRevoked
        )
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return [_signature_resp(s) for s in rows]


@router.get("/{contractId}/workflow", response_model=WorkflowProgressResponse)
async def get_workflow_progress(
    contractId: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        contract = ContractService().get_visible_contract(db, actor=principal, contract_id=contractId)
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return ContractWorkflowService().workflow_progress(db, contract)


@router.post("/notify-expiring-links")
async def notify_expiring_links(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Admin only.")
    return {"notified": ContractWorkflowService().notify_expiring_links(db)}
