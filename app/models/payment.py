from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Date, DateTime, Integer, Numeric, Text, ForeignKey, CheckConstraint, Index, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.enums import PaymentStatus, sql_in


class Payment(Base):
    """
    Installment record. The stored status can go stale; readers should use
    PaymentService.effective_status rather than trusting this column.
    """
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    contract_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    paid_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default=text(f"'{PaymentStatus.pending.value}'")
    )
    payment_method: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    contract = relationship("Contract", back_populates="payments")

    __table_args__ = (
        CheckConstraint(sql_in("status", PaymentStatus), name="ck_payments_status"),
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        Index("ix_payments_contract_id", "contract_id"),
        Index("ix_payments_due_date", "due_date"),
        Index("ix_payments_status", "status"),
    )
