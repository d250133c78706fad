from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, desc
from sqlalchemy.orm import Session
from starlette.requests import Request

from app.core.errors import ForbiddenError
from app.models.audit_log import AuditLog
from app.models.contract import Contract
from app.models.enums import AuditActionType
from app.policies.rbac import ContractAction, Principal, require_allowed
from app.policies.scope_policy import branch_scope


@dataclass(frozen=True)
class RequestMeta:
    """Network/client metadata copied into audit and signature rows."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestMeta":
        return cls(
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            request_id=getattr(request.state, "request_id", None),
        )


def _json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def snapshot(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _json_safe(v) for k, v in values.items()}


# signing_link is a capability token and never lands in the audit trail
CONTRACT_SNAPSHOT_FIELDS = (
    "contract_number",
    "client_name",
    "contract_type",
    "branch_id",
    "value",
    "duration_months",
    "status",
    "link_expires_at",
    "client_signed_at",
    "employee_signed_at",
    "management_approved_at",
    "locked_at",
)


def contract_snapshot(contract: Contract, fields: Iterable[str] = CONTRACT_SNAPSHOT_FIELDS) -> Dict[str, Any]:
    return snapshot({f: getattr(contract, f) for f in fields})


class AuditRecorder:
    def record(
        self,
        db: Session,
        *,
        actor: Optional[Principal],
        action_type: AuditActionType,
        table_name: str,
        record_id: Optional[int],
        new_values: Optional[Dict[str, Any]] = None,
        old_values: Optional[Dict[str, Any]] = None,
        branch_id: Optional[int] = None,
        meta: Optional[RequestMeta] = None,
        description: Optional[str] = None,
    ) -> AuditLog:
        """
        Append-only audit insert.

        Adds the row to the caller's unit of work and flushes, but never commits:
        the caller commits it together with the mutation it describes.
        """
        meta = meta or RequestMeta()
        row = AuditLog(
            user_id=actor.user_id if actor else None,
            action_type=action_type.value,
            table_name=table_name,
            record_id=record_id,
            old_values=snapshot(old_values) if old_values is not None else None,
            new_values=snapshot(new_values) if new_values is not None else None,
            branch_id=branch_id if branch_id is not None else (actor.branch_id if actor else None),
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            request_id=meta.request_id,
            description=description,
        )
        db.add(row)
        db.flush()
        return row

    def list_logs(
        self,
        db: Session,
        *,
        actor: Principal,
        branch_id: Optional[int] = None,
        action_type: Optional[AuditActionType] = None,
        table_name: Optional[str] = None,
        record_id: Optional[int] = None,
        user_id: Optional[int] = None,
        limit: int = 200,
    ) -> List[AuditLog]:
        scope = branch_scope(actor, branch_id)
        if not actor.is_admin:
            require_allowed(actor, ContractAction.VIEW_AUDIT, actor.branch_id)
            if branch_id is not None and branch_id != actor.branch_id:
                raise ForbiddenError("Audit trail of another branch is not visible.")

        stmt = select(AuditLog)
        if not scope.allow_all:
            stmt = stmt.where(AuditLog.branch_id == scope.branch_id)
        if action_type is not None:
            stmt = stmt.where(AuditLog.action_type == action_type.value)
        if table_name:
            stmt = stmt.where(AuditLog.table_name == table_name)
        if record_id is not None:
            stmt = stmt.where(AuditLog.record_id == record_id)
        if user_id is not None:
            stmt = stmt.where(AuditLog.user_id == user_id)

        stmt = stmt.order_by(desc(AuditLog.id)).limit(limit)
        return list(db.execute(stmt).scalars().all())
