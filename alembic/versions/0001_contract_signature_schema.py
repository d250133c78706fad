"""branches, users, contracts, signatures, payments, audit logs, notifications

Revision ID: 0001_contract_signature_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from app.models.enums import (
    AuditActionType,
    ContractStatus,
    ContractType,
    NotificationType,
    PaymentStatus,
    SignatureType,
    UserRole,
    sql_in,
)

# revision identifiers, used by Alembic.
revision: str = '0001_contract_signature_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _created_at():
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade():
    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=8), nullable=False, unique=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("address", sa.String(length=256), nullable=True),
        _created_at(),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=256), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        sa.Column("signature_data", sa.Text(), nullable=True),
        _created_at(),
        sa.CheckConstraint(sql_in("role", UserRole), name="ck_users_role"),
    )
    op.create_index("ix_users_branch_role", "users", ["branch_id", "role"])

    op.create_table(
        "contracts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("contract_number", sa.String(length=32), nullable=False),
        sa.Column("client_name", sa.String(length=256), nullable=False),
        sa.Column("client_phone", sa.String(length=32), nullable=True),
        sa.Column("client_email", sa.String(length=255), nullable=True),
        sa.Column("contract_type", sa.String(length=32), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("value", sa.Numeric(12, 2), nullable=False),
        sa.Column("duration_months", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.String(length=32),
            nullable=False,
            server_default=sa.text(f"'{ContractStatus.draft.value}'"),
        ),
        sa.Column("signing_link", sa.String(length=32), nullable=True, unique=True),
        sa.Column("link_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("client_signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("employee_signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("management_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("services_description", sa.Text(), nullable=True),
        sa.Column("terms_and_conditions", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("contract_number", name="uq_contracts_contract_number"),
        sa.CheckConstraint(sql_in("status", ContractStatus), name="ck_contracts_status"),
        sa.CheckConstraint(sql_in("contract_type", ContractType), name="ck_contracts_type"),
        sa.CheckConstraint("value >= 0", name="ck_contracts_value_nonnegative"),
        sa.CheckConstraint("duration_months > 0", name="ck_contracts_duration_positive"),
    )
    op.create_index("ix_contracts_branch_id", "contracts", ["branch_id"])
    op.create_index("ix_contracts_status", "contracts", ["status"])
    op.create_index("ix_contracts_created_by", "contracts", ["created_by"])

    op.create_table(
        "signatures",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "contract_id",
            sa.Integer(),
            sa.ForeignKey("contracts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("signature_type", sa.String(length=32), nullable=False),
        sa.Column("signature_data", sa.Text(), nullable=False),
        sa.Column("signed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(sql_in("signature_type", SignatureType), name="ck_signatures_type"),
    )
    op.create_index("ix_signatures_contract_id", "signatures", ["contract_id"])
    op.create_index(
        "uq_signatures_active_type",
        "signatures",
        ["contract_id", "signature_type"],
        unique=True,
        postgresql_where=sa.text("revoked_at IS NULL"),
        sqlite_where=sa.text("revoked_at IS NULL"),
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "contract_id",
            sa.Integer(),
            sa.ForeignKey("contracts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("paid_date", sa.Date(), nullable=True),
        sa.Column(
            "status",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text(f"'{PaymentStatus.pending.value}'"),
        ),
        sa.Column("payment_method", sa.String(length=64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(sql_in("status", PaymentStatus), name="ck_payments_status"),
        sa.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )
    op.create_index("ix_payments_contract_id", "payments", ["contract_id"])
    op.create_index("ix_payments_due_date", "payments", ["due_date"])
    op.create_index("ix_payments_status", "payments", ["status"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action_type", sa.String(length=16), nullable=False),
        sa.Column("table_name", sa.String(length=64), nullable=False),
        sa.Column("record_id", sa.Integer(), nullable=True),
        sa.Column("old_values", JSON, nullable=True),
        sa.Column("new_values", JSON, nullable=True),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        _created_at(),
        sa.CheckConstraint(sql_in("action_type", AuditActionType), name="ck_audit_logs_action_type"),
    )
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])
    op.create_index("ix_audit_logs_record", "audit_logs", ["table_name", "record_id"])

    if op.get_bind().dialect.name == "postgresql":
        # --- DB-level immutability: audit rows are append-only ---
        op.execute(
            """
            CREATE OR REPLACE FUNCTION prevent_audit_log_changes()
            RETURNS trigger AS $$
            BEGIN
                RAISE EXCEPTION 'audit_logs is append-only.';
            END;
            $$ LANGUAGE plpgsql;

            DROP TRIGGER IF EXISTS trg_audit_logs_append_only ON audit_logs;
            CREATE TRIGGER trg_audit_logs_append_only
            BEFORE UPDATE OR DELETE ON audit_logs
            FOR EACH ROW
            EXECUTE FUNCTION prevent_audit_log_changes();
            """
        )

        # --- locked contracts: terms frozen, only status may still move ---
        op.execute(
            """
            CREATE OR REPLACE FUNCTION prevent_update_locked_contracts()
            RETURNS trigger AS $$
            BEGIN
                IF OLD.locked_at IS NOT NULL AND (
                    NEW.client_name IS DISTINCT FROM OLD.client_name
                    OR NEW.client_phone IS DISTINCT FROM OLD.client_phone
                    OR NEW.client_email IS DISTINCT FROM OLD.client_email
                    OR NEW.contract_type IS DISTINCT FROM OLD.contract_type
                    OR NEW.value IS DISTINCT FROM OLD.value
                    OR NEW.duration_months IS DISTINCT FROM OLD.duration_months
                    OR NEW.services_description IS DISTINCT FROM OLD.services_description
                    OR NEW.terms_and_conditions IS DISTINCT FROM OLD.terms_and_conditions
                    OR NEW.locked_at IS DISTINCT FROM OLD.locked_at
                ) THEN
                    RAISE EXCEPTION 'Locked contracts are immutable.';
                END IF;
                NEW.updated_at = now();
                RETURN NEW;
            END;
            $$ LANGUAGE plpgsql;

            DROP TRIGGER IF EXISTS trg_prevent_update_locked_contracts ON contracts;
            CREATE TRIGGER trg_prevent_update_locked_contracts
            BEFORE UPDATE ON contracts
            FOR EACH ROW
            EXECUTE FUNCTION prevent_update_locked_contracts();
            """
        )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=256), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "contract_id",
            sa.Integer(),
            sa.ForeignKey("contracts.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "payment_id",
            sa.Integer(),
            sa.ForeignKey("payments.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        sa.CheckConstraint(sql_in("type", NotificationType), name="ck_notifications_type"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_read", "notifications", ["read"])


def downgrade():
    op.drop_table("notifications")
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TRIGGER IF EXISTS trg_audit_logs_append_only ON audit_logs;")
        op.execute("DROP FUNCTION IF EXISTS prevent_audit_log_changes();")
        op.execute("DROP TRIGGER IF EXISTS trg_prevent_update_locked_contracts ON contracts;")
        op.execute("DROP FUNCTION IF EXISTS prevent_update_locked_contracts();")
    op.drop_table("audit_logs")
    op.drop_table("payments")
    op.drop_table("signatures")
    op.drop_table("contracts")
    op.drop_table("users")
    op.drop_table("branches")
