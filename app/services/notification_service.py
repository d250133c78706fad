from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select, update, desc
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.models.enums import NotificationType, UserRole
from app.models.notification import Notification
from app.models.user import User


class NotificationService:
    def notify(
        self,
        db: Session,
        *,
        user_id: int,
        type: NotificationType,
        title: str,
        message: str,
        contract_id: Optional[int] = None,
        payment_id: Optional[int] = None,
    ) -> Notification:
        # joins the caller's unit of work; no commit here
        row = Notification(
            user_id=user_id,
            type=type.value,
            title=title,
            message=message,
            contract_id=contract_id,
            payment_id=payment_id,
        )
        db.add(row)
        return row

    def notify_branch_managers(
        self,
        db: Session,
        *,
        branch_id: int,
        type: NotificationType,
        title: str,
        message: str,
        contract_id: Optional[int] = None,
    ) -> int:
        manager_ids = db.execute(
            select(User.id).where(
                User.branch_id == branch_id,
                User.role == UserRole.manager.value,
                User.is_active.is_(True),
            )
        ).scalars().all()
        for uid in manager_ids:
            self.notify(db, user_id=uid, type=type, title=title, message=message, contract_id=contract_id)
        return len(manager_ids)

    def list_for_user(self, db: Session, *, user_id: int, unread_only: bool = False, limit: int = 100) -> List[Notification]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.read.is_(False))
        stmt = stmt.order_by(desc(Notification.id)).limit(limit)
        return list(db.execute(stmt).scalars().all())

    def mark_read(self, db: Session, *, user_id: int, notification_id: int) -> Notification:
        result = db.execute(
            update(Notification)
            .where(Notification.id == notification_id, Notification.user_id == user_id)
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise NotFoundError("Notification not found.")
        db.commit()
        return db.get(Notification, notification_id)
