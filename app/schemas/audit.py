from __future__ import annotations
from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class AuditLogResponse(BaseModel):
    id: int
    createdAtIso: Optional[str] = None
    userId: Optional[int] = None
    actionType: str
    tableName: str
    recordId: Optional[int] = None
    oldValues: Optional[Dict[str, Any]] = None
    newValues: Optional[Dict[str, Any]] = None
    branchId: Optional[int] = None
    ipAddress: Optional[str] = None
    userAgent: Optional[str] = None
    requestId: Optional[str] = None
    description: Optional[str] = None


class AuditLogListResponse(BaseModel):
    branchId: Optional[int] = None
    records: List[AuditLogResponse]
