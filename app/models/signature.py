from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, Integer, Text, ForeignKey, CheckConstraint, Index, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.enums import SignatureType, sql_in


class Signature(Base):
    """
    Append-only signature record.
    An admin rollback never deletes rows; it stamps revoked_at instead.
    At most one non-revoked signature per (contract, type).
    """
    __tablename__ = "signatures"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    contract_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False
    )
    # null for link-based client signatures
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)

    signature_type: Mapped[str] = mapped_column(String(32), nullable=False)
    signature_data: Mapped[str] = mapped_column(Text, nullable=False)

    signed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    contract = relationship("Contract", back_populates="signatures")

    __table_args__ = (
        CheckConstraint(sql_in("signature_type", SignatureType), name="ck_signatures_type"),
        Index("ix_signatures_contract_id", "contract_id"),
        Index(
            "uq_signatures_active_type",
            "contract_id",
            "signature_type",
            unique=True,
            sqlite_where=text("revoked_at IS NULL"),
            postgresql_where=text("revoked_at IS NULL"),
        ),
    )
