from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import event, select, update

from app.core.errors import ForbiddenError, InvalidStateError, ValidationError
from app.models.enums import NotificationType, PaymentStatus
from app.models.notification import Notification
from app.models.payment import Payment
from app.services.contract_service import ContractService
from app.services.payment_service import PaymentService, effective_status

TODAY = date(2026, 5, 1)


@pytest.fixture
def contract(db, branches, principals):
    return ContractService().create_contract(
        db,
        actor=principals["jed_employee"],
        branch_id=branches["JED"].id,
        data={
            "client_name": "Coastal Villas",
            "contract_type": "comprehensive_supervision",
            "value": "90000",
            "duration_months": 3,
        },
    )


def test_effective_status_is_derived():
    p = Payment(amount=Decimal("10"), due_date=TODAY - timedelta(days=1), paid_date=None, status="pending")
    assert effective_status(p, today=TODAY) == PaymentStatus.overdue

    p.due_date = TODAY
    assert effective_status(p, today=TODAY) == PaymentStatus.pending

    p.due_date = TODAY - timedelta(days=30)
    p.paid_date = TODAY - timedelta(days=29)
    assert effective_status(p, today=TODAY) == PaymentStatus.paid


def test_past_due_payment_reports_overdue_despite_stored_pending(db, principals, contract):
    svc = PaymentService()
    p = svc.create_payment(
        db, actor=principals["jed_employee"], contract_id=contract.id, amount="30000", due_date=TODAY + timedelta(days=10)
    )
    db.execute(update(Payment).where(Payment.id == p.id).values(due_date=TODAY - timedelta(days=3), status=PaymentStatus.pending.value))
    db.commit()
    db.refresh(p)

    assert p.status == PaymentStatus.pending.value
    assert effective_status(p, today=TODAY) == PaymentStatus.overdue

    overdue = svc.list_payments(db, actor=principals["jed_employee"], status=PaymentStatus.overdue, today=TODAY)
    assert [x.id for x in overdue] == [p.id]
    assert svc.list_payments(db, actor=principals["jed_employee"], status=PaymentStatus.pending, today=TODAY) == []


def test_create_payment_validates_amount(db, principals, contract):
    with pytest.raises(ValidationError):
        PaymentService().create_payment(
            db, actor=principals["jed_employee"], contract_id=contract.id, amount="0", due_date=TODAY
        )


def test_payments_are_branch_scoped(db, principals, contract):
    svc = PaymentService()
    with pytest.raises(ForbiddenError):
        svc.create_payment(db, actor=principals["mec_employee"], contract_id=contract.id, amount="10", due_date=TODAY)

    svc.create_payment(db, actor=principals["jed_employee"], contract_id=contract.id, amount="10", due_date=TODAY)
    assert svc.list_payments(db, actor=principals["mec_manager"], today=TODAY) == []
    assert len(svc.list_payments(db, actor=principals["admin"], today=TODAY)) == 1


def test_mark_paid_once(db, principals, contract):
    svc = PaymentService()
    p = svc.create_payment(
        db, actor=principals["jed_employee"], contract_id=contract.id, amount="45000", due_date=TODAY
    )

    p = svc.mark_paid(db, actor=principals["jed_employee2"], payment_id=p.id, paid_date=TODAY, payment_method="bank_transfer")
    assert p.paid_date == TODAY
    assert p.status == PaymentStatus.paid.value
    assert p.payment_method == "bank_transfer"
    assert effective_status(p, today=TODAY + timedelta(days=100)) == PaymentStatus.paid

    with pytest.raises(InvalidStateError):
        svc.mark_paid(db, actor=principals["jed_employee"], payment_id=p.id)


def test_refresh_overdue_updates_cache_and_notifies_creator(db, principals, users, contract):
    svc = PaymentService()
    late = svc.create_payment(
        db, actor=principals["jed_employee"], contract_id=contract.id, amount="30000", due_date=TODAY - timedelta(days=2)
    )
    svc.create_payment(
        db, actor=principals["jed_employee"], contract_id=contract.id, amount="30000", due_date=TODAY + timedelta(days=30)
    )
    db.execute(update(Payment).where(Payment.id == late.id).values(status=PaymentStatus.pending.value))
    db.commit()

    assert svc.refresh_overdue(db, actor=principals["admin"], today=TODAY) == 1
    db.refresh(late)
    assert late.status == PaymentStatus.overdue.value

    notes = db.execute(
        select(Notification).where(Notification.type == NotificationType.payment_overdue.value)
    ).scalars().all()
    assert [(n.user_id, n.payment_id) for n in notes] == [(users["jed_employee"].id, late.id)]

    # already marked; nothing left to do
    assert svc.refresh_overdue(db, actor=principals["admin"], today=TODAY) == 0


def test_due_soon_notices_are_sent_once(db, principals, users, contract):
    svc = PaymentService()
    soon = svc.create_payment(
        db, actor=principals["jed_employee"], contract_id=contract.id, amount="100", due_date=TODAY + timedelta(days=2)
    )
    svc.create_payment(
        db, actor=principals["jed_employee"], contract_id=contract.id, amount="100", due_date=TODAY + timedelta(days=20)
    )

    assert svc.notify_due_soon(db, today=TODAY, days_ahead=3) == 1
    assert svc.notify_due_soon(db, today=TODAY, days_ahead=3) == 0

    note = db.execute(
        select(Notification).where(Notification.type == NotificationType.payment_due.value)
    ).scalar_one()
    assert note.user_id == users["jed_employee"].id
    assert note.payment_id == soon.id


def test_due_date_range_filter_and_count(db, principals, contract):
    svc = PaymentService()
    for days in (0, 10, 20, 40):
        svc.create_payment(
            db, actor=principals["jed_employee"], contract_id=contract.id, amount="100", due_date=TODAY + timedelta(days=days)
        )

    actor = principals["jed_employee"]
    window = {"due_from": TODAY + timedelta(days=10), "due_to": TODAY + timedelta(days=20)}
    rows = svc.list_payments(db, actor=actor, today=TODAY, **window)
    assert [p.due_date for p in rows] == [TODAY + timedelta(days=10), TODAY + timedelta(days=20)]
    assert svc.count_payments(db, actor=actor, today=TODAY, **window) == 2

    assert svc.count_payments(db, actor=actor, today=TODAY, due_from=TODAY + timedelta(days=15)) == 2
    assert svc.count_payments(db, actor=actor, today=TODAY, due_to=TODAY) == 1

    page = svc.list_payments(db, actor=actor, today=TODAY, limit=2, offset=2)
    assert [p.due_date for p in page] == [TODAY + timedelta(days=20), TODAY + timedelta(days=40)]
    assert svc.count_payments(db, actor=actor, today=TODAY) == 4

    with pytest.raises(ValidationError):
        svc.list_payments(db, actor=actor, today=TODAY, due_from=TODAY, due_to=TODAY - timedelta(days=1))


def test_refresh_overdue_skips_rows_paid_in_between(db, principals, contract):
    svc = PaymentService()
    first = svc.create_payment(
        db, actor=principals["jed_employee"], contract_id=contract.id, amount="100", due_date=TODAY - timedelta(days=5)
    )
    second = svc.create_payment(
        db, actor=principals["jed_employee"], contract_id=contract.id, amount="200", due_date=TODAY - timedelta(days=3)
    )
    db.execute(update(Payment).where(Payment.id.in_([first.id, second.id])).values(status=PaymentStatus.pending.value))
    db.commit()

    # the second installment is paid after the sweep has selected it but before its UPDATE runs
    fired = []

    def pay_second_first(orm_state):
        if orm_state.is_update and not fired:
            fired.append(True)
            orm_state.session.connection().execute(
                update(Payment.__table__)
                .where(Payment.__table__.c.id == second.id)
                .values(paid_date=TODAY, status=PaymentStatus.paid.value)
            )

    event.listen(db, "do_orm_execute", pay_second_first)
    try:
        assert svc.refresh_overdue(db, today=TODAY) == 1
    finally:
        event.remove(db, "do_orm_execute", pay_second_first)

    notes = db.execute(
        select(Notification).where(Notification.type == NotificationType.payment_overdue.value)
    ).scalars().all()
    assert [n.payment_id for n in notes] == [first.id]
    db.refresh(second)
    assert second.status == PaymentStatus.paid.value
