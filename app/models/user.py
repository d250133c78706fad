# app/models/user.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import String, DateTime, Integer, ForeignKey, CheckConstraint, Index, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.enums import UserRole, sql_in


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # 🔐 AUTH
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=True, server_default=sa.true()
    )

    role: Mapped[str] = mapped_column(String(16), nullable=False)
    branch_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("branches.id"), nullable=True
    )

    # stored signature image, used as the default payload for employee / seal steps
    signature_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    branch = relationship("Branch")

    __table_args__ = (
        CheckConstraint(sql_in("role", UserRole), name="ck_users_role"),
        Index("ix_users_branch_role", "branch_id", "role"),
    )
