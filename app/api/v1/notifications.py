from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.core.errors import WorkflowError
from app.db.session import get_db
from app.models.notification import Notification
from app.policies.rbac import Principal
from app.schemas.notifications import NotificationListResponse, NotificationResponse
from app.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications")


def _to_resp(n: Notification) -> dict:
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "contractId": n.contract_id,
        "paymentId": n.payment_id,
        "read": n.read,
        "createdAtIso": n.created_at.isoformat() if n.created_at else None,
    }


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    unreadOnly: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    rows = NotificationService().list_for_user(
        db, user_id=principal.user_id, unread_only=unreadOnly, limit=limit
    )
    return {"notifications": [_to_resp(n) for n in rows]}


@router.post("/{notificationId}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notificationId: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        row = NotificationService().mark_read(db, user_id=principal.user_id, notification_id=notificationId)
    except WorkflowError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return _to_resp(row)
