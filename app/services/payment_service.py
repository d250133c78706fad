from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Select, and_, case, func, select, update
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from app.db.session import unit_of_work
from app.models.contract import Contract
from app.models.enums import AuditActionType, NotificationType, PaymentStatus
from app.models.notification import Notification
from app.models.payment import Payment
from app.policies.rbac import ContractAction, Principal, require_allowed
from app.policies.scope_policy import branch_scope
from app.services.audit_service import AuditRecorder, RequestMeta
from app.services.contract_service import positive_decimal
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


def _today() -> date:
    return datetime.now(timezone.utc).date()


def effective_status(payment: Payment, today: Optional[date] = None) -> PaymentStatus:
    """
    Derived status; the stored column is only a cache and can be stale.
    overdue iff today > due_date and nothing was paid.
    """
    today = today or _today()
    if payment.paid_date is not None:
        return PaymentStatus.paid
    if today > payment.due_date:
        return PaymentStatus.overdue
    return PaymentStatus.pending


def _status_expr(today: date):
    # SQL twin of effective_status, for filtering
    return case(
        (Payment.paid_date.is_not(None), PaymentStatus.paid.value),
        (Payment.due_date < today, PaymentStatus.overdue.value),
        else_=PaymentStatus.pending.value,
    )


class PaymentService:
    def __init__(self):
        self.audit = AuditRecorder()
        self.notifications = NotificationService()

    def _contract_for(self, db: Session, actor: Principal, contract_id: int) -> Contract:
        contract = db.get(Contract, contract_id)
        if not contract:
            raise NotFoundError("Contract not found.")
        require_allowed(actor, ContractAction.MANAGE_PAYMENTS, contract.branch_id)
        return contract

    def get_payment(self, db: Session, *, actor: Principal, payment_id: int) -> Payment:
        payment = db.get(Payment, payment_id)
        if not payment:
            raise NotFoundError("Payment not found.")
        self._contract_for(db, actor, payment.contract_id)
        return payment

    def create_payment(
        self,
        db: Session,
        *,
        actor: Principal,
        contract_id: int,
        amount,
        due_date: date,
        payment_method: Optional[str] = None,
        notes: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
    ) -> Payment:
        contract = self._contract_for(db, actor, contract_id)
        amount = positive_decimal(amount, "amount")
        if due_date is None:
            raise ValidationError("due_date is required.")

        payment = Payment(
            contract_id=contract.id,
            amount=amount,
            due_date=due_date,
            payment_method=payment_method,
            notes=notes,
        )
        payment.status = effective_status(payment).value

        with unit_of_work(db):
            db.add(payment)
            db.flush()
            self.audit.record(
                db,
                actor=actor,
                action_type=AuditActionType.create,
                table_name="payments",
                record_id=payment.id,
                new_values={
                    "contract_id": contract.id,
                    "amount": amount,
                    "due_date": due_date,
                    "status": payment.status,
                },
                branch_id=contract.branch_id,
                meta=meta,
                description=f"Installment added to contract {contract.contract_number}",
            )

        db.refresh(payment)
        return payment

    def mark_paid(
        self,
        db: Session,
        *,
        actor: Principal,
        payment_id: int,
        paid_date: Optional[date] = None,
        payment_method: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
    ) -> Payment:
        payment = self.get_payment(db, actor=actor, payment_id=payment_id)
        if payment.paid_date is not None:
            raise InvalidStateError("Payment is already paid.")

        paid_date = paid_date or _today()
        values = {"paid_date": paid_date, "status": PaymentStatus.paid.value}
        if payment_method:
            values["payment_method"] = payment_method
        old_status = effective_status(payment).value
        contract = db.get(Contract, payment.contract_id)

        with unit_of_work(db):
            result = db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.paid_date.is_(None))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidStateError("Payment was marked paid concurrently.")

            self.audit.record(
                db,
                actor=actor,
                action_type=AuditActionType.update,
                table_name="payments",
                record_id=payment.id,
                old_values={"status": old_status, "paid_date": None},
                new_values=values,
                branch_id=contract.branch_id,
                meta=meta,
                description="Installment marked paid",
            )

        db.refresh(payment)
        return payment

    def _filtered(
        self,
        actor: Principal,
        *,
        today: date,
        contract_id: Optional[int] = None,
        status: Optional[PaymentStatus] = None,
        branch_id: Optional[int] = None,
        due_from: Optional[date] = None,
        due_to: Optional[date] = None,
    ) -> Select:
        if not actor.is_admin and branch_id is not None and branch_id != actor.branch_id:
            raise ForbiddenError("Payments of another branch are not visible.")
        if due_from is not None and due_to is not None and due_from > due_to:
            raise ValidationError("due_date_from must not be after due_date_to.")
        scope = branch_scope(actor, branch_id)

        stmt = select(Payment).join(Contract, Contract.id == Payment.contract_id)
        if not scope.allow_all:
            stmt = stmt.where(Contract.branch_id == scope.branch_id)
        if contract_id is not None:
            stmt = stmt.where(Payment.contract_id == contract_id)
        if status is not None:
            stmt = stmt.where(_status_expr(today) == status.value)
        if due_from is not None:
            stmt = stmt.where(Payment.due_date >= due_from)
        if due_to is not None:
            stmt = stmt.where(Payment.due_date <= due_to)
        return stmt

    def count_payments(self, db: Session, *, actor: Principal, today: Optional[date] = None, **filters) -> int:
        stmt = self._filtered(actor, today=today or _today(), **filters)
        return db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()

    def list_payments(
        self,
        db: Session,
        *,
        actor: Principal,
        contract_id: Optional[int] = None,
        status: Optional[PaymentStatus] = None,
        branch_id: Optional[int] = None,
        due_from: Optional[date] = None,
        due_to: Optional[date] = None,
        today: Optional[date] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> List[Payment]:
        """
        Branch-scoped listing; the status filter applies to the derived status.
        due_from/due_to are inclusive.
        """
        stmt = self._filtered(
            actor,
            today=today or _today(),
            contract_id=contract_id,
            status=status,
            branch_id=branch_id,
            due_from=due_from,
            due_to=due_to,
        )
        stmt = stmt.order_by(Payment.due_date, Payment.id).offset(offset).limit(limit)
        return list(db.execute(stmt).scalars().all())

    def refresh_overdue(
        self,
        db: Session,
        *,
        actor: Optional[Principal] = None,
        today: Optional[date] = None,
        meta: Optional[RequestMeta] = None,
    ) -> int:
        """
        Rewrite stale 'pending' rows whose due date has passed to 'overdue' and
        notify each contract's creator. Returns how many rows changed.
        """
        today = today or _today()
        stale = and_(
            Payment.paid_date.is_(None),
            Payment.due_date < today,
            Payment.status != PaymentStatus.overdue.value,
        )
        rows = db.execute(
            select(Payment.id, Payment.due_date, Payment.amount, Contract.id, Contract.created_by, Contract.contract_number)
            .join(Contract, Contract.id == Payment.contract_id)
            .where(stale)
        ).all()
        if not rows:
            return 0

        ids = [r[0] for r in rows]
        with unit_of_work(db):
            # only rows this statement moved; a concurrent sweep or mark_paid may have taken others
            moved = set(
                db.execute(
                    update(Payment)
                    .where(Payment.id.in_(ids), stale)
                    .values(status=PaymentStatus.overdue.value)
                    .returning(Payment.id)
                    .execution_options(synchronize_session=False)
                ).scalars().all()
            )
            changed = len(moved)

            for payment_id, due, amount, cid, creator, number in rows:
                if payment_id not in moved:
                    continue
                self.notifications.notify(
                    db,
                    user_id=creator,
                    type=NotificationType.payment_overdue,
                    title="Installment overdue",
                    message=f"Installment of {Decimal(amount):.2f} on contract {number} was due {due.isoformat()}.",
                    contract_id=cid,
                    payment_id=payment_id,
                )

            if actor is not None:
                self.audit.record(
                    db,
                    actor=actor,
                    action_type=AuditActionType.update,
                    table_name="payments",
                    record_id=None,
                    new_values={"status": PaymentStatus.overdue.value, "payment_ids": sorted(moved)},
                    meta=meta,
                    description=f"{changed} installments marked overdue",
                )

        logger.info("overdue payments refreshed", extra={"count": changed})
        return changed

    def notify_due_soon(
        self,
        db: Session,
        *,
        today: Optional[date] = None,
        days_ahead: Optional[int] = None,
    ) -> int:
        """
        payment_due notification to the contract creator for each unpaid installment
        falling due within days_ahead. At most one per installment.
        """
        today = today or _today()
        if days_ahead is None:
            days_ahead = get_settings().payment_due_notice_days
        horizon = today + timedelta(days=days_ahead)

        already = select(Notification.payment_id).where(
            Notification.type == NotificationType.payment_due.value,
            Notification.payment_id.is_not(None),
        )
        rows = db.execute(
            select(Payment.id, Payment.due_date, Payment.amount, Contract.id, Contract.created_by, Contract.contract_number)
            .join(Contract, Contract.id == Payment.contract_id)
            .where(
                Payment.paid_date.is_(None),
                Payment.due_date >= today,
                Payment.due_date <= horizon,
                Payment.id.not_in(already),
            )
        ).all()
        if not rows:
            return 0

        with unit_of_work(db):
            for payment_id, due, amount, cid, creator, number in rows:
                self.notifications.notify(
                    db,
                    user_id=creator,
                    type=NotificationType.payment_due,
                    title="Installment due soon",
                    message=f"Installment of {Decimal(amount):.2f} on contract {number} is due {due.isoformat()}.",
                    contract_id=cid,
                    payment_id=payment_id,
                )

        logger.info("payment due notices sent", extra={"count": len(rows)})
        return len(rows)
