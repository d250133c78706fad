# app/api/v1/signing.py
# Public client signing endpoints: the signing link is the only credential.
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Path, Request
from sqlalchemy.orm import Session

from app.core.errors import WorkflowError
from app.db.session import get_db
from app.models.contract import Contract
from app.schemas.contracts import ClientSignRequest, PublicContractResponse
from app.services.audit_service import RequestMeta
from app.services.contract_workflow import ContractWorkflowService

router = APIRouter(prefix="/sign")


def _public_resp(c: Contract) -> dict:
    return {
        "contractNumber": c.contract_number,
        "clientName": c.client_name,
        "contractType": c.contract_type,
        "value": c.value,
        "durationMonths": c.duration_months,
        "servicesDescription": c.services_description,
        "termsAndConditions": c.terms_and_conditions,
        "status": c.status,
        "linkExpiresAtIso": c.link_expires_at.isoformat() if c.link_expires_at else None,
    }


@router.get("/{signingLink}", response_model=PublicContractResponse)
async def view_contract_for_signing(
    signingLink: str = Path(..., min_length=32, max_length=32, pattern="^[A-Za-z0-9]+$"),
    db: Session = Depends(get_db),
):
    try:
        contract = ContractWorkflowService().get_by_signing_link(db, signingLink)
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _public_resp(contract)


@router.post("/{signingLink}", response_model=PublicContractResponse)
async def sign_contract(
    req: ClientSignRequest,
    request: Request,
    signingLink: str = Path(..., min_length=32, max_length=32, pattern="^[A-Za-z0-9]+$"),
    db: Session = Depends(get_db),
):
    try:
        contract = ContractWorkflowService().sign_as_client(
            db,
            signing_link=signingLink,
            signature_data=req.signature_data,
            meta=RequestMeta.from_request(request),
        )
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _public_resp(contract)
