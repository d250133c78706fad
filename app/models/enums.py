#app/models/enums.py
from __future__ import annotations
from enum import Enum
from typing import Type


class UserRole(str, Enum):
    employee = "employee"
    manager = "manager"
    admin = "admin"


class ContractType(str, Enum):
    agreement = "agreement"
    concrete_supervision = "concrete_supervision"
    comprehensive_supervision = "comprehensive_supervision"


class ContractStatus(str, Enum):
    # signature lifecycle, forward only
    draft = "draft"
    pending_client_signature = "pending_client_signature"
    client_signed = "client_signed"
    employee_approved = "employee_approved"
    fully_executed = "fully_executed"
    archived = "archived"


class SignatureType(str, Enum):
    client = "client"
    employee = "employee"
    management_seal = "management_seal"


class PaymentStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    overdue = "overdue"


class AuditActionType(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"
    login = "login"
    logout = "logout"
    sign = "sign"
    approve = "approve"
    export = "export"
    search = "search"


class NotificationType(str, Enum):
    payment_due = "payment_due"
    contract_expiring = "contract_expiring"
    signature_required = "signature_required"
    contract_signed = "contract_signed"
    payment_overdue = "payment_overdue"


def sql_in(column: str, enum_cls: Type[Enum]) -> str:
    """CHECK constraint body restricting column to the enum's values."""
    values = ", ".join(f"'{m.value}'" for m in enum_cls)
    return f"{column} IN ({values})"
