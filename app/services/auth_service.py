# app/services/auth_service.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.security import verify_password, hash_password
from app.db.session import unit_of_work
from app.models.enums import AuditActionType
from app.models.user import User
from app.policies.rbac import Principal
from app.services.audit_service import AuditRecorder, RequestMeta


def authenticate(db: Session, email: str, password: str, meta: Optional[RequestMeta] = None) -> Optional[Principal]:
    user = db.execute(
        select(User).where(
            User.email == email.strip().lower(),
            User.is_active.is_(True),
        )
    ).scalar_one_or_none()

    if not user:
        return None

    if not verify_password(password, user.password_hash):
        return None

    principal = Principal.from_user(user)
    with unit_of_work(db):
        AuditRecorder().record(
            db,
            actor=principal,
            action_type=AuditActionType.login,
            table_name="users",
            record_id=user.id,
            new_values={"email": user.email, "role": user.role},
            meta=meta,
            description=f"User login: {user.email}",
        )
    return principal


def record_logout(db: Session, principal: Principal, meta: Optional[RequestMeta] = None) -> None:
    with unit_of_work(db):
        AuditRecorder().record(
            db,
            actor=principal,
            action_type=AuditActionType.logout,
            table_name="users",
            record_id=principal.user_id,
            new_values={"email": principal.email},
            meta=meta,
            description=f"User logout: {principal.email}",
        )


def create_user(
    db: Session,
    *,
    email: str,
    password: str,
    role: str,
    branch_id: Optional[int],
    signature_data: Optional[str] = None,
) -> User:
    user = User(
        email=email.strip().lower(),
        password_hash=hash_password(password),
        role=role,
        branch_id=branch_id,
        signature_data=signature_data,
    )
    db.add(user)
    db.flush()
    return user
