from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import String, DateTime, Integer, Text, ForeignKey, CheckConstraint, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType
from app.models.enums import AuditActionType, sql_in


class AuditLog(Base):
    """
    Comprehensive audit trail record.
    - Append-only (never UPDATE, never DELETE)
    - Written in the same transaction as the change it describes.
    """
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Actor (null only for anonymous link-based client signing)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)

    # What happened
    action_type: Mapped[str] = mapped_column(String(16), nullable=False)
    table_name: Mapped[str] = mapped_column(String(64), nullable=False)
    record_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Snapshots
    old_values: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    branch_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("branches.id"), nullable=True)

    # Correlation / client metadata
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(sql_in("action_type", AuditActionType), name="ck_audit_logs_action_type"),
        Index("ix_audit_logs_user_id", "user_id"),
        Index("ix_audit_logs_created_at", "created_at"),
        Index("ix_audit_logs_record", "table_name", "record_id"),
    )
