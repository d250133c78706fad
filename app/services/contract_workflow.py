# app/services/contract_workflow.py
from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.contract_status_graph import TERMINAL_STATUSES, assert_transition
from app.core.errors import (
    ExpiredLinkError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    WorkflowError,
)
from app.db.session import unit_of_work
from app.models.contract import Contract
from app.models.enums import (
    AuditActionType,
    ContractStatus,
    NotificationType,
    SignatureType,
)
from app.models.notification import Notification
from app.models.signature import Signature
from app.models.user import User
from app.policies.rbac import ContractAction, Principal, require_allowed
from app.services.audit_service import AuditRecorder, RequestMeta, contract_snapshot
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

SIGNING_LINK_ALPHABET = string.ascii_letters + string.digits
SIGNING_LINK_LENGTH = 32

# stamps cleared by an admin rollback to draft
_WORKFLOW_STAMPS = (
    "signing_link",
    "link_expires_at",
    "client_signed_at",
    "employee_signed_at",
    "management_approved_at",
)


def _now():
    return datetime.now(timezone.utc)


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def generate_signing_link() -> str:
    """32 characters drawn uniformly from [A-Za-z0-9] with a CSPRNG."""
    return "".join(secrets.choice(SIGNING_LINK_ALPHABET) for _ in range(SIGNING_LINK_LENGTH))


@dataclass(frozen=True)
class SigningRequest:
    contract: Contract
    signing_link: str
    expires_at: datetime


class ContractWorkflowService:
    """
    Contract status state machine.

    draft → pending_client_signature → client_signed → employee_approved
          → fully_executed → archived

    Every transition is one conditional UPDATE (compare-and-set on status),
    committed in the same transaction as its Signature, AuditLog and
    Notification rows. A zero row count means another request won the race.
    """

    def __init__(self):
        self.audit = AuditRecorder()
        self.notifications = NotificationService()

    # ─────────────────────────────────────────────
    # INTERNAL HELPERS
    # ─────────────────────────────────────────────

    def _get_contract(self, db: Session, contract_id: int) -> Contract:
        contract = db.get(Contract, contract_id)
        if not contract:
            raise NotFoundError("Contract not found.")
        return contract

    def _compare_and_set(
        self,
        db: Session,
        contract: Contract,
        *,
        expected: ContractStatus,
        target: ContractStatus,
        values: Dict[str, Any],
        conditions=(),
    ) -> bool:
        result = db.execute(
            update(Contract)
            .where(
                Contract.id == contract.id,
                Contract.status == expected.value,
                Contract.branch_id == contract.branch_id,
                *conditions,
            )
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _lost_race(self, db: Session, contract: Contract, expected: ContractStatus) -> WorkflowError:
        db.refresh(contract)
        logger.warning(
            "contract transition lost race",
            extra={"contract_id": contract.id, "expected": expected.value, "actual": contract.status},
        )
        return InvalidStateError(
            f"Contract is {contract.status}, expected {expected.value}; it was changed concurrently."
        )

    def _resolve_signature(self, db: Session, actor: Principal, signature_data: Optional[str]) -> str:
        if signature_data:
            return signature_data
        stored = db.execute(
            select(User.signature_data).where(User.id == actor.user_id)
        ).scalar_one_or_none()
        if not stored:
            raise ValidationError("No signature supplied and no stored signature on file.")
        return stored

    def _log_transition(self, contract: Contract, source: ContractStatus, target: ContractStatus) -> None:
        logger.info(
            "contract transition",
            extra={"contract_id": contract.id, "from": source.value, "to": target.value},
        )

    # ─────────────────────────────────────────────
    # READS
    # ─────────────────────────────────────────────

    def get_by_signing_link(self, db: Session, signing_link: str) -> Contract:
        """
        Public lookup for the client signing page.
        Only a contract currently awaiting the client, with a live link, is exposed.
        """
        contract = db.execute(
            select(Contract).where(Contract.signing_link == signing_link)
        ).scalar_one_or_none()
        if not contract:
            raise NotFoundError("Signing link not found.")
        if contract.status != ContractStatus.pending_client_signature.value:
            raise InvalidStateError("Contract is not awaiting a client signature.")
        if contract.link_expires_at is None or _aware(contract.link_expires_at) <= _now():
            raise ExpiredLinkError("Signing link has expired.")
        return contract

    def list_signatures(self, db: Session, *, actor: Principal, contract_id: int, include_revoked: bool = False) -> List[Signature]:
        contract = self._get_contract(db, contract_id)
        require_allowed(actor, ContractAction.VIEW, contract.branch_id)
        stmt = select(Signature).where(Signature.contract_id == contract.id)
        if not include_revoked:
            stmt = stmt.where(Signature.revoked_at.is_(None))
        return list(db.execute(stmt.order_by(Signature.id)).scalars().all())

    def workflow_progress(self, db: Session, contract: Contract) -> Dict[str, Any]:
        """
        The three signing steps with when and by whom each was completed.
        completedBy is the signing user's id; the client step has none.
        """
        signed = {
            s.signature_type: s
            for s in db.execute(
                select(Signature).where(
                    Signature.contract_id == contract.id,
                    Signature.revoked_at.is_(None),
                )
            ).scalars()
        }
        steps = []
        for step, sig_type, stamp in (
            ("client_sign", SignatureType.client, contract.client_signed_at),
            ("employee_approve", SignatureType.employee, contract.employee_signed_at),
            ("management_seal", SignatureType.management_seal, contract.management_approved_at),
        ):
            sig = signed.get(sig_type.value)
            steps.append({
                "step": step,
                "completed": stamp is not None,
                "completedAt": _aware(stamp).isoformat() if stamp else None,
                "completedBy": sig.user_id if sig is not None and stamp is not None else None,
            })

        done = sum(1 for s in steps if s["completed"])
        return {
            "contractId": contract.id,
            "status": contract.status,
            "steps": steps,
            "currentStep": done,
            "isComplete": done == len(steps),
            "locked": contract.locked_at is not None,
        }

    # ─────────────────────────────────────────────
    # TRANSITIONS
    # ─────────────────────────────────────────────

    def request_signature(
        self,
        db: Session,
        *,
        actor: Principal,
        contract_id: int,
        meta: Optional[RequestMeta] = None,
    ) -> SigningRequest:
        """
        draft → pending_client_signature

        Rules:
        - creator, or manager/admin, of the contract's branch
        - value > 0 and duration_months > 0
        - issues a fresh 32-char signing link valid for signing_link_ttl_hours
        """
        contract = self._get_contract(db, contract_id)
        require_allowed(
            actor,
            ContractAction.REQUEST_SIGNATURE,
            contract.branch_id,
            is_creator=contract.created_by == actor.user_id,
        )
        source = assert_transition(contract.status, ContractStatus.pending_client_signature)
        if contract.value is None or contract.value <= 0 or contract.duration_months <= 0:
            raise ValidationError("Contract value and duration must be positive before requesting signatures.")

        now = _now()
        link = generate_signing_link()
        expires_at = now + timedelta(hours=get_settings().signing_link_ttl_hours)

        with unit_of_work(db):
            ok = self._compare_and_set(
                db,
                contract,
                expected=source,
                target=ContractStatus.pending_client_signature,
                values={"signing_link": link, "link_expires_at": expires_at},
                conditions=(
                    Contract.value > 0,
                    Contract.duration_months > 0,
                    Contract.locked_at.is_(None),
                ),
            )
            if not ok:
                raise self._lost_race(db, contract, source)

            self.audit.record(
                db,
                actor=actor,
                action_type=AuditActionType.update,
                table_name="contracts",
                record_id=contract.id,
                old_values={"status": source.value},
                new_values={
                    "status": ContractStatus.pending_client_signature.value,
                    "link_expires_at": expires_at,
                },
                branch_id=contract.branch_id,
                meta=meta,
                description="Client signature requested",
            )
            self.notifications.notify(
                db,
                user_id=contract.created_by,
                type=NotificationType.signature_required,
                title="Client signature requested",
                message=f"Contract {contract.contract_number} is awaiting the client's signature.",
                contract_id=contract.id,
            )

        db.refresh(contract)
        self._log_transition(contract, source, ContractStatus.pending_client_signature)
        return SigningRequest(contract=contract, signing_link=link, expires_at=expires_at)

    def sign_as_client(
        self,
        db: Session,
        *,
        signing_link: str,
        signature_data: str,
        meta: Optional[RequestMeta] = None,
    ) -> Contract:
        """
        pending_client_signature → client_signed

        Anyone holding the link may sign while it is live. An expired link
        always fails with ExpiredLinkError and never moves the status.
        """
        if not signature_data:
            raise ValidationError("signature_data is required.")

        contract = self.get_by_signing_link(db, signing_link)
        source = ContractStatus.pending_client_signature
        now = _now()
        meta = meta or RequestMeta()

        with unit_of_work(db):
            ok = self._compare_and_set(
                db,
                contract,
                expected=source,
                target=ContractStatus.client_signed,
                values={"client_signed_at": now},
                conditions=(
                    Contract.signing_link == signing_link,
                    Contract.link_expires_at > now,
                    Contract.client_signed_at.is_(None),
                ),
            )
            if not ok:
                db.refresh(contract)
                if (
                    contract.status == source.value
                    and (contract.link_expires_at is None or _aware(contract.link_expires_at) <= now)
                ):
                    raise ExpiredLinkError("Signing link has expired.")
                raise self._lost_race(db, contract, source)

            sig = Signature(
                contract_id=contract.id,
                user_id=None,
                signature_type=SignatureType.client.value,
                signature_data=signature_data,
                signed_at=now,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
            )
            db.add(sig)
            db.flush()

            self.audit.record(
                db,
                actor=None,
                action_type=AuditActionType.sign,
                table_name="contracts",
                record_id=contract.id,
                old_values={"status": source.value},
                new_values={
                    "status": ContractStatus.client_signed.value,
                    "client_signed_at": now,
                    "signature_id": sig.id,
                    "signature_type": SignatureType.client.value,
                },
                branch_id=contract.branch_id,
                meta=meta,
                description="Client signed via signing link",
            )
            self.notifications.notify(
                db,
                user_id=contract.created_by,
                type=NotificationType.contract_signed,
                title="Client signed",
                message=f"The client signed contract {contract.contract_number}; employee approval is next.",
                contract_id=contract.id,
            )

        db.refresh(contract)
        self._log_transition(contract, source, ContractStatus.client_signed)
        return contract

    def approve_as_employee(
        self,
        db: Session,
        *,
        actor: Principal,
        contract_id: int,
        signature_data: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
    ) -> Contract:
        """
        client_signed → employee_approved

        Gated by role and branch, not by the individual who requested the signature.
        """
        contract = self._get_contract(db, contract_id)
        require_allowed(actor, ContractAction.APPROVE_EMPLOYEE, contract.branch_id)
        source = assert_transition(contract.status, ContractStatus.employee_approved)
        payload = self._resolve_signature(db, actor, signature_data)
        now = _now()
        meta = meta or RequestMeta()

        with unit_of_work(db):
            ok = self._compare_and_set(
                db,
                contract,
                expected=source,
                target=ContractStatus.employee_approved,
                values={"employee_signed_at": now},
                conditions=(Contract.employee_signed_at.is_(None),),
            )
            if not ok:
                raise self._lost_race(db, contract, source)

            sig = Signature(
                contract_id=contract.id,
                user_id=actor.user_id,
                signature_type=SignatureType.employee.value,
                signature_data=payload,
                signed_at=now,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
            )
            db.add(sig)
            db.flush()

            self.audit.record(
                db,
                actor=actor,
                action_type=AuditActionType.approve,
                table_name="contracts",
                record_id=contract.id,
                old_values={"status": source.value},
                new_values={
                    "status": ContractStatus.employee_approved.value,
                    "employee_signed_at": now,
                    "signature_id": sig.id,
                    "signature_type": SignatureType.employee.value,
                },
                branch_id=contract.branch_id,
                meta=meta,
                description="Employee approval",
            )
            self.notifications.notify_branch_managers(
                db,
                branch_id=contract.branch_id,
                type=NotificationType.signature_required,
                title="Management seal required",
                message=f"Contract {contract.contract_number} is approved and awaiting the management seal.",
                contract_id=contract.id,
            )

        db.refresh(contract)
        self._log_transition(contract, source, ContractStatus.employee_approved)
        return contract

    def seal_as_management(
        self,
        db: Session,
        *,
        actor: Principal,
        contract_id: int,
        signature_data: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
    ) -> Contract:
        """
        employee_approved → fully_executed

        Manager of the branch or admin. Sets locked_at: terms are frozen from here on.
        """
        contract = self._get_contract(db, contract_id)
        require_allowed(actor, ContractAction.SEAL_MANAGEMENT, contract.branch_id)
        source = assert_transition(contract.status, ContractStatus.fully_executed)
        payload = self._resolve_signature(db, actor, signature_data)
        now = _now()
        meta = meta or RequestMeta()

        with unit_of_work(db):
            ok = self._compare_and_set(
                db,
                contract,
                expected=source,
                target=ContractStatus.fully_executed,
                values={"management_approved_at": now, "locked_at": now},
                conditions=(
                    Contract.management_approved_at.is_(None),
                    Contract.locked_at.is_(None),
                ),
            )
            if not ok:
                raise self._lost_race(db, contract, source)

            sig = Signature(
                contract_id=contract.id,
                user_id=actor.user_id,
                signature_type=SignatureType.management_seal.value,
                signature_data=payload,
                signed_at=now,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
            )
            db.add(sig)
            db.flush()

            self.audit.record(
                db,
                actor=actor,
                action_type=AuditActionType.approve,
                table_name="contracts",
                record_id=contract.id,
                old_values={"status": source.value},
                new_values={
                    "status": ContractStatus.fully_executed.value,
                    "management_approved_at": now,
                    "locked_at": now,
                    "signature_id": sig.id,
                    "signature_type": SignatureType.management_seal.value,
                },
                branch_id=contract.branch_id,
                meta=meta,
                description="Management seal affixed; contract locked",
            )
            self.notifications.notify(
                db,
                user_id=contract.created_by,
                type=NotificationType.contract_signed,
                title="Contract fully executed",
                message=f"Contract {contract.contract_number} carries all signatures and is now locked.",
                contract_id=contract.id,
            )

        db.refresh(contract)
        self._log_transition(contract, source, ContractStatus.fully_executed)
        return contract

    def archive_contract(
        self,
        db: Session,
        *,
        actor: Principal,
        contract_id: int,
        meta: Optional[RequestMeta] = None,
    ) -> Contract:
        """fully_executed → archived (terminal). Admin, or manager of the branch."""
        contract = self._get_contract(db, contract_id)
        require_allowed(actor, ContractAction.ARCHIVE, contract.branch_id)
        source = assert_transition(contract.status, ContractStatus.archived)

        with unit_of_work(db):
            ok = self._compare_and_set(
                db,
                contract,
                expected=source,
                target=ContractStatus.archived,
                values={},
            )
            if not ok:
                raise self._lost_race(db, contract, source)

            self.audit.record(
                db,
                actor=actor,
                action_type=AuditActionType.update,
                table_name="contracts",
                record_id=contract.id,
                old_values={"status": source.value},
                new_values={"status": ContractStatus.archived.value},
                branch_id=contract.branch_id,
                meta=meta,
                description="Contract archived",
            )

        db.refresh(contract)
        self._log_transition(contract, source, ContractStatus.archived)
        return contract

    # ─────────────────────────────────────────────
    # ADMIN OVERRIDE
    # ─────────────────────────────────────────────

    def admin_rollback(
        self,
        db: Session,
        *,
        actor: Principal,
        contract_id: int,
        reason: str,
        meta: Optional[RequestMeta] = None,
    ) -> Contract:
        """
        Escape hatch: any unlocked, non-archived, non-draft contract back to draft.

        - admin only, fully audited with before/after snapshots
        - the signing link and workflow stamps are cleared
        - existing signatures are kept but stamped revoked_at
        - locked contracts are refused: rolling back would reopen frozen terms
        """
        contract = self._get_contract(db, contract_id)
        require_allowed(actor, ContractAction.OVERRIDE, contract.branch_id)

        if not reason or not reason.strip():
            raise ValidationError("A reason is required for an admin rollback.")
        source = ContractStatus(contract.status)
        if source in TERMINAL_STATUSES or source == ContractStatus.draft:
            raise InvalidStateError(f"Contract in status {source.value} cannot be rolled back.")
        if contract.locked_at is not None:
            raise ForbiddenError("Contract is locked; rollback would reopen executed terms.")

        now = _now()
        old_values = contract_snapshot(contract)

        with unit_of_work(db):
            ok = self._compare_and_set(
                db,
                contract,
                expected=source,
                target=ContractStatus.draft,
                values={f: None for f in _WORKFLOW_STAMPS},
                conditions=(Contract.locked_at.is_(None),),
            )
            if not ok:
                raise self._lost_race(db, contract, source)

            revoked = db.execute(
                update(Signature)
                .where(Signature.contract_id == contract.id, Signature.revoked_at.is_(None))
                .values(revoked_at=now)
                .execution_options(synchronize_session=False)
            ).rowcount

            new_values = dict(old_values)
            new_values.update({f: None for f in _WORKFLOW_STAMPS if f != "signing_link"})
            new_values.update({"status": ContractStatus.draft.value, "revoked_signatures": revoked})

            self.audit.record(
                db,
                actor=actor,
                action_type=AuditActionType.update,
                table_name="contracts",
                record_id=contract.id,
                old_values=old_values,
                new_values=new_values,
                branch_id=contract.branch_id,
                meta=meta,
                description=f"Admin rollback to draft: {reason.strip()}",
            )

        db.refresh(contract)
        logger.warning(
            "contract rolled back by admin",
            extra={"contract_id": contract.id, "from": source.value, "actor_id": actor.user_id},
        )
        return contract

    # ─────────────────────────────────────────────
    # SWEEPS
    # ─────────────────────────────────────────────

    def notify_expiring_links(
        self,
        db: Session,
        *,
        now: Optional[datetime] = None,
        within_hours: Optional[int] = None,
    ) -> int:
        """
        contract_expiring notification to the creator of each contract whose client
        signing link runs out within within_hours. At most one per contract and link.
        """
        now = now or _now()
        if within_hours is None:
            within_hours = get_settings().link_expiry_notice_hours
        horizon = now + timedelta(hours=within_hours)

        contracts = db.execute(
            select(Contract).where(
                Contract.status == ContractStatus.pending_client_signature.value,
                Contract.link_expires_at > now,
                Contract.link_expires_at <= horizon,
            )
        ).scalars().all()

        sent = 0
        with unit_of_work(db):
            for contract in contracts:
                # every issued link leaves a signature_required notice; count only notices after the latest
                issued = (
                    select(func.max(Notification.id))
                    .where(
                        Notification.type == NotificationType.signature_required.value,
                        Notification.contract_id == contract.id,
                        Notification.user_id == contract.created_by,
                    )
                    .scalar_subquery()
                )
                already = db.execute(
                    select(Notification.id).where(
                        Notification.type == NotificationType.contract_expiring.value,
                        Notification.contract_id == contract.id,
                        Notification.id > func.coalesce(issued, 0),
                    )
                ).first()
                if already:
                    continue
                self.notifications.notify(
                    db,
                    user_id=contract.created_by,
                    type=NotificationType.contract_expiring,
                    title="Signing link expiring",
                    message=(
                        f"The client has not signed contract {contract.contract_number}; "
                        f"the signing link expires {_aware(contract.link_expires_at).isoformat()}."
                    ),
                    contract_id=contract.id,
                )
                sent += 1

        logger.info("expiring link notices sent", extra={"count": sent})
        return sent
