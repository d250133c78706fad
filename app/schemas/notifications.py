from __future__ import annotations
from typing import List, Optional
from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: int
    type: str
    title: str
    message: str
    contractId: Optional[int] = None
    paymentId: Optional[int] = None
    read: bool
    createdAtIso: Optional[str] = None


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
