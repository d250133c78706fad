from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field

from app.models.enums import ContractStatus, ContractType
from app.schemas.pagination import PageMeta


class ContractCreateRequest(BaseModel):
    # defaults to the caller's branch
    branch_id: Optional[int] = None
    client_name: str
    client_phone: Optional[str] = None
    client_email: Optional[str] = None
    contract_type: ContractType
    value: Decimal
    duration_months: int
    services_description: Optional[str] = None
    terms_and_conditions: Optional[str] = None


class ContractUpdateRequest(BaseModel):
    client_name: Optional[str] = None
    client_phone: Optional[str] = None
    client_email: Optional[str] = None
    contract_type: Optional[ContractType] = None
    value: Optional[Decimal] = None
    duration_months: Optional[int] = None
    services_description: Optional[str] = None
    terms_and_conditions: Optional[str] = None


class SignatureSubmitRequest(BaseModel):
    # omitted → the actor's stored signature is used
    signature_data: Optional[str] = None


class ClientSignRequest(BaseModel):
    signature_data: str = Field(..., min_length=1)


class RollbackRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class ContractResponse(BaseModel):
    contractId: int
    contractNumber: str
    clientName: str
    clientPhone: Optional[str] = None
    clientEmail: Optional[str] = None
    contractType: ContractType
    branchId: int
    createdBy: int
    value: Decimal
    durationMonths: int
    status: ContractStatus
    linkExpiresAtIso: Optional[str] = None
    clientSignedAtIso: Optional[str] = None
    employeeSignedAtIso: Optional[str] = None
    managementApprovedAtIso: Optional[str] = None
    lockedAtIso: Optional[str] = None
    servicesDescription: Optional[str] = None
    termsAndConditions: Optional[str] = None
    createdAtIso: Optional[str] = None
    updatedAtIso: Optional[str] = None


class ContractListResponse(PageMeta):
    branchId: Optional[int] = None
    contracts: List[ContractResponse]


class SigningLinkResponse(BaseModel):
    contractId: int
    status: ContractStatus
    signingLink: str
    expiresAtIso: str


class PublicContractResponse(BaseModel):
    """What the client sees behind a signing link: no internal ids."""
    contractNumber: str
    clientName: str
    contractType: ContractType
    value: Decimal
    durationMonths: int
    servicesDescription: Optional[str] = None
    termsAndConditions: Optional[str] = None
    status: ContractStatus
    linkExpiresAtIso: Optional[str] = None


class SignatureResponse(BaseModel):
    signatureId: int
    contractId: int
    userId: Optional[int] = None
    signatureType: str
    signedAtIso: str
    ipAddress: Optional[str] = None
    revokedAtIso: Optional[str] = None


class WorkflowStep(BaseModel):
    step: str
    completed: bool
    completedAt: Optional[str] = None
    completedBy: Optional[int] = None


class WorkflowProgressResponse(BaseModel):
    contractId: int
    status: ContractStatus
    steps: List[WorkflowStep]
    currentStep: int
    isComplete: bool
    locked: bool
