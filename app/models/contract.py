#app/models/contract.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    String,
    DateTime,
    Integer,
    Numeric,
    Text,
    ForeignKey,
    CheckConstraint,
    UniqueConstraint,
    Index,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.enums import ContractStatus, ContractType, sql_in


class Contract(Base):
    """
    Central workflow row.

    Lock rule:
      - once locked_at is set (fully_executed) commercial terms and free text never change.
      - only the forward status edge to archived remains.
    """

    __tablename__ = "contracts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # {branchCode}-{year}-{6 digit ms suffix}
    contract_number: Mapped[str] = mapped_column(String(32), nullable=False)

    client_name: Mapped[str] = mapped_column(String(256), nullable=False)
    client_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    client_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    contract_type: Mapped[str] = mapped_column(String(32), nullable=False)

    branch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("branches.id"), nullable=False
    )
    created_by: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )

    value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    duration_months: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(32), nullable=False, server_default=text(f"'{ContractStatus.draft.value}'")
    )

    # capability token for the unauthenticated client signature step
    signing_link: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, unique=True)
    link_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # workflow stamps, each written once on its forward edge
    client_signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    employee_signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    management_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    services_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    terms_and_conditions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    branch = relationship("Branch")

    signatures: Mapped[List["Signature"]] = relationship(
        "Signature",
        back_populates="contract",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Signature.id",
    )
    payments: Mapped[List["Payment"]] = relationship(
        "Payment",
        back_populates="contract",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Payment.due_date",
    )

    __table_args__ = (
        UniqueConstraint("contract_number", name="uq_contracts_contract_number"),
        CheckConstraint(sql_in("status", ContractStatus), name="ck_contracts_status"),
        CheckConstraint(sql_in("contract_type", ContractType), name="ck_contracts_type"),
        CheckConstraint("value >= 0", name="ck_contracts_value_nonnegative"),
        CheckConstraint("duration_months > 0", name="ck_contracts_duration_positive"),
        Index("ix_contracts_branch_id", "branch_id"),
        Index("ix_contracts_status", "status"),
        Index("ix_contracts_created_by", "created_by"),
    )
