from __future__ import annotations

import logging
import time
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import Select, func, select, update, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.db.session import unit_of_work
from app.models.branch import Branch
from app.models.contract import Contract
from app.models.enums import AuditActionType, ContractStatus, ContractType
from app.policies.rbac import ContractAction, Principal, require_allowed
from app.policies.scope_policy import BranchScope, branch_scope
from app.services.audit_service import AuditRecorder, RequestMeta, contract_snapshot

logger = logging.getLogger(__name__)

# fields an edit may touch; status and workflow stamps only move through ContractWorkflowService
EDITABLE_FIELDS = (
    "client_name",
    "client_phone",
    "client_email",
    "contract_type",
    "value",
    "duration_months",
    "services_description",
    "terms_and_conditions",
)

CONTRACT_NUMBER_CONSTRAINT = "uq_contracts_contract_number"


def _now():
    return datetime.now(timezone.utc)


def _is_number_collision(exc: IntegrityError) -> bool:
    # postgres names the constraint; sqlite only names the column
    diag = getattr(exc.orig, "diag", None)
    if getattr(diag, "constraint_name", None) == CONTRACT_NUMBER_CONSTRAINT:
        return True
    message = str(exc.orig)
    return CONTRACT_NUMBER_CONSTRAINT in message or "contracts.contract_number" in message


def created_between(date_from: Optional[date], date_to: Optional[date]) -> list:
    """
    created_at bounds for a calendar-day range, both ends inclusive, in UTC.
    """
    if date_from is not None and date_to is not None and date_from > date_to:
        raise ValidationError("date_from must not be after date_to.")
    clauses = []
    if date_from is not None:
        start = datetime.combine(date_from, datetime.min.time(), tzinfo=timezone.utc)
        clauses.append(Contract.created_at >= start)
    if date_to is not None:
        end = datetime.combine(date_to + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)
        clauses.append(Contract.created_at < end)
    return clauses


def generate_contract_number(branch_code: str, now: Optional[datetime] = None) -> str:
    """
    {branchCode}-{year}-{last 6 digits of epoch milliseconds}.
    Not collision-free; callers must retry on conflict.
    """
    now = now or _now()
    epoch_ms = int(now.timestamp() * 1000)
    return f"{branch_code}-{now.year}-{str(epoch_ms)[-6:]}"


def positive_decimal(raw: Any, field: str) -> Decimal:
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number.")
    if not value.is_finite() or value <= 0:
        raise ValidationError(f"{field} must be greater than zero.")
    return value


def positive_int(raw: Any, field: str) -> int:
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise ValidationError(f"{field} must be an integer.")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer.")
    if value <= 0:
        raise ValidationError(f"{field} must be greater than zero.")
    return value


def _contract_type(raw: Any) -> str:
    try:
        return ContractType(raw).value
    except ValueError:
        raise ValidationError(f"Unknown contract_type: {raw}")


def validate_contract_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize and validate contract fields. Only keys present in data are checked,
    so the same rules serve create (all fields) and partial edits.
    """
    unknown = set(data) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields not editable: {sorted(unknown)}")

    clean = dict(data)
    if "value" in clean:
        clean["value"] = positive_decimal(clean["value"], "value")
    if "duration_months" in clean:
        clean["duration_months"] = positive_int(clean["duration_months"], "duration_months")
    if "contract_type" in clean:
        clean["contract_type"] = _contract_type(clean["contract_type"])
    if "client_name" in clean:
        name = (clean["client_name"] or "").strip()
        if not name:
            raise ValidationError("client_name is required.")
        clean["client_name"] = name
    return clean


class ContractService:
    """
    Contract creation, edits and reads.
    Status transitions live in ContractWorkflowService.
    """

    def __init__(self):
        self.audit = AuditRecorder()

    # ---------------------------
    # READS
    # ---------------------------

    def get_contract(self, db: Session, contract_id: int) -> Contract:
        contract = db.get(Contract, contract_id)
        if not contract:
            raise NotFoundError("Contract not found.")
        return contract

    def get_visible_contract(self, db: Session, *, actor: Principal, contract_id: int) -> Contract:
        contract = self.get_contract(db, contract_id)
        require_allowed(actor, ContractAction.VIEW, contract.branch_id)
        return contract

    def _filtered(
        self,
        actor: Principal,
        *,
        branch_id: Optional[int] = None,
        status: Optional[ContractStatus] = None,
        contract_type: Optional[ContractType] = None,
        client_name: Optional[str] = None,
        contract_number: Optional[str] = None,
        created_by: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Tuple[Select, BranchScope]:
        if not actor.is_admin and branch_id is not None and branch_id != actor.branch_id:
            raise ForbiddenError("Contracts of another branch are not visible.")
        scope = branch_scope(actor, branch_id)

        stmt = select(Contract)
        if not scope.allow_all:
            stmt = stmt.where(Contract.branch_id == scope.branch_id)
        if status is not None:
            stmt = stmt.where(Contract.status == status.value)
        if contract_type is not None:
            stmt = stmt.where(Contract.contract_type == contract_type.value)
        if client_name:
            stmt = stmt.where(Contract.client_name.ilike(f"%{client_name}%"))
        if contract_number:
            stmt = stmt.where(Contract.contract_number.ilike(f"%{contract_number}%"))
        if created_by is not None:
            stmt = stmt.where(Contract.created_by == created_by)
        stmt = stmt.where(*created_between(date_from, date_to))
        return stmt, scope

    def count_contracts(self, db: Session, *, actor: Principal, **filters) -> int:
        """Total behind a paged listing; takes the same filters as list_contracts."""
        stmt, _ = self._filtered(actor, **filters)
        return db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()

    def list_contracts(
        self,
        db: Session,
        *,
        actor: Principal,
        branch_id: Optional[int] = None,
        status: Optional[ContractStatus] = None,
        contract_type: Optional[ContractType] = None,
        client_name: Optional[str] = None,
        contract_number: Optional[str] = None,
        created_by: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 100,
        offset: int = 0,
        meta: Optional[RequestMeta] = None,
    ) -> List[Contract]:
        """
        Branch-scoped listing: non-admins only ever see their own branch.
        date_from/date_to bound created_at, both days inclusive.
        """
        stmt, scope = self._filtered(
            actor,
            branch_id=branch_id,
            status=status,
            contract_type=contract_type,
            client_name=client_name,
            contract_number=contract_number,
            created_by=created_by,
            date_from=date_from,
            date_to=date_to,
        )
        stmt = stmt.order_by(desc(Contract.created_at), desc(Contract.id)).offset(offset).limit(limit)
        rows = list(db.execute(stmt).scalars().all())

        # free-text filters count as a search and are audited
        searched = {k: v for k, v in (("client_name", client_name), ("contract_number", contract_number)) if v}
        if searched:
            with unit_of_work(db):
                self.audit.record(
                    db,
                    actor=actor,
                    action_type=AuditActionType.search,
                    table_name="contracts",
                    record_id=None,
                    new_values={"filters": searched, "results": len(rows)},
                    branch_id=scope.branch_id,
                    meta=meta,
                    description="Contract search",
                )
        return rows

    # ---------------------------
    # MUTATIONS
    # ---------------------------

    def create_contract(
        self,
        db: Session,
        *,
        actor: Principal,
        branch_id: int,
        data: Dict[str, Any],
        meta: Optional[RequestMeta] = None,
    ) -> Contract:
        """
        Rules:
        - value > 0 and duration_months > 0, else ValidationError
        - non-admins create only in their own branch
        - contract_number collisions are retried with a fresh number;
          ConflictError only once the attempts are exhausted
        """
        required = ("client_name", "contract_type", "value", "duration_months")
        missing = [f for f in required if data.get(f) is None]
        if missing:
            raise ValidationError(f"Missing required fields: {missing}")
        fields = validate_contract_fields(data)

        branch = db.get(Branch, branch_id)
        if not branch:
            raise NotFoundError("Branch not found.")
        require_allowed(actor, ContractAction.CREATE, branch.id)
        branch_code = branch.code

        max_attempts = get_settings().contract_number_max_attempts
        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                # the suffix is millisecond based; let the clock move on
                time.sleep(0.001 * attempt)

            number = generate_contract_number(branch_code)
            taken = db.execute(
                select(Contract.id).where(Contract.contract_number == number)
            ).first()
            if taken:
                logger.warning(
                    "contract number collision",
                    extra={"contract_number": number, "attempt": attempt},
                )
                continue

            contract = Contract(
                contract_number=number,
                branch_id=branch_id,
                created_by=actor.user_id,
                status=ContractStatus.draft.value,
                **fields,
            )
            try:
                db.add(contract)
                db.flush()
                self.audit.record(
                    db,
                    actor=actor,
                    action_type=AuditActionType.create,
                    table_name="contracts",
                    record_id=contract.id,
                    new_values=contract_snapshot(contract),
                    branch_id=branch_id,
                    meta=meta,
                    description=f"Contract {number} created",
                )
                db.commit()
            except IntegrityError as e:
                db.rollback()
                if not _is_number_collision(e):
                    raise ConflictError("Contract conflicts with an existing record.") from e
                # lost the unique contract_number race to a concurrent insert
                logger.warning(
                    "contract number taken on insert",
                    extra={"contract_number": number, "attempt": attempt},
                )
                continue

            db.refresh(contract)
            logger.info(
                "contract created",
                extra={"contract_id": contract.id, "contract_number": number, "branch_id": branch_id},
            )
            return contract

        raise ConflictError("Could not allocate a unique contract number; retry later.")

    def update_contract(
        self,
        db: Session,
        *,
        actor: Principal,
        contract_id: int,
        changes: Dict[str, Any],
        meta: Optional[RequestMeta] = None,
    ) -> Contract:
        """
        Rules:
        - locked contracts reject every edit (admins included)
        - non-admins edit only drafts; admins may edit any unlocked, non-archived contract
        - the write is conditional on the observed status and on locked_at IS NULL
        """
        contract = self.get_contract(db, contract_id)
        require_allowed(
            actor,
            ContractAction.EDIT,
            contract.branch_id,
            is_creator=contract.created_by == actor.user_id,
        )

        if contract.locked_at is not None:
            raise ForbiddenError("Contract is locked; its terms can no longer be changed.")
        if contract.status == ContractStatus.archived.value:
            raise InvalidStateError("Archived contracts cannot be edited.")
        if not actor.is_admin and contract.status != ContractStatus.draft.value:
            raise InvalidStateError("Only draft contracts can be edited.")

        fields = validate_contract_fields(changes)
        if not fields:
            raise ValidationError("No changes supplied.")

        observed_status = contract.status
        old_values = contract_snapshot(contract, fields.keys())

        with unit_of_work(db):
            result = db.execute(
                update(Contract)
                .where(
                    Contract.id == contract.id,
                    Contract.status == observed_status,
                    Contract.locked_at.is_(None),
                )
                .values(**fields)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.refresh(contract)
                if contract.locked_at is not None:
                    raise ForbiddenError("Contract is locked; its terms can no longer be changed.")
                raise InvalidStateError("Contract changed concurrently; reload and retry.")

            self.audit.record(
                db,
                actor=actor,
                action_type=AuditActionType.update,
                table_name="contracts",
                record_id=contract.id,
                old_values=old_values,
                new_values=fields,
                branch_id=contract.branch_id,
                meta=meta,
                description="Contract terms edited",
            )

        db.refresh(contract)
        return contract
