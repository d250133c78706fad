from __future__ import annotations
from datetime import date
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel

from app.models.enums import PaymentStatus
from app.schemas.pagination import PageMeta


class PaymentCreateRequest(BaseModel):
    contract_id: int
    amount: Decimal
    due_date: date
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class MarkPaidRequest(BaseModel):
    paid_date: Optional[date] = None
    payment_method: Optional[str] = None


class PaymentResponse(BaseModel):
    paymentId: int
    contractId: int
    amount: Decimal
    dueDate: date
    paidDate: Optional[date] = None
    # derived at read time, not the stored column
    status: PaymentStatus
    paymentMethod: Optional[str] = None
    notes: Optional[str] = None


class PaymentListResponse(PageMeta):
    payments: List[PaymentResponse]


class OverdueRefreshResponse(BaseModel):
    updated: int
