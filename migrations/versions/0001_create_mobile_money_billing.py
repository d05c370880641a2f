"""create users, payment attempts and credit ledger tables

Revision ID: 0001_create_mobile_money_billing
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_create_mobile_money_billing"
down_revision = None
branch_labels = None
depends_on = None


def _uuid() -> sa.types.TypeEngine:
    return sa.Uuid(as_uuid=True).with_variant(sa.CHAR(36), "sqlite")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    bigint_pk = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
    json_type = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

    product_kind = sa.Enum(
        "plan", "credits", name="payment_product_kind", native_enum=False, length=32
    )
    billing_period = sa.Enum(
        "monthly",
        "yearly",
        name="payment_billing_period",
        native_enum=False,
        length=32,
    )
    attempt_status = sa.Enum(
        "pending",
        "completed",
        "failed",
        name="payment_attempt_status",
        native_enum=False,
        length=32,
    )
    event_type = sa.Enum(
        "request",
        "poll",
        "webhook",
        "system",
        name="payment_event_type",
        native_enum=False,
        length=32,
    )
    plan_tier = sa.Enum(
        "free",
        "student",
        "pro",
        "max",
        name="ledger_plan_tier",
        native_enum=False,
        length=32,
    )
    entry_plan_tier = sa.Enum(
        "free",
        "student",
        "pro",
        "max",
        name="ledger_entry_plan_tier",
        native_enum=False,
        length=32,
    )
    entry_type = sa.Enum(
        "credit_purchase",
        "subscription_activation",
        name="ledger_entry_type",
        native_enum=False,
        length=32,
    )

    op.create_table(
        "users",
        sa.Column("id", bigint_pk, nullable=False, autoincrement=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column(
            "is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")
        ),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "payment_attempts",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("provider_reference", sa.String(length=128), nullable=True),
        sa.Column("idempotency_key", sa.String(length=64), nullable=False),
        sa.Column("product_kind", product_kind, nullable=False),
        sa.Column("product_code", sa.String(length=64), nullable=False),
        sa.Column("billing_period", billing_period, nullable=True),
        sa.Column(
            "credits", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column(
            "currency",
            sa.String(length=3),
            nullable=False,
            server_default=sa.text("'TZS'"),
        ),
        sa.Column("phone_number", sa.String(length=16), nullable=False),
        sa.Column(
            "status",
            attempt_status,
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column("transaction_id", sa.String(length=128), nullable=True),
        sa.Column("mobile_provider", sa.String(length=64), nullable=True),
        sa.Column("failure_reason", sa.String(length=255), nullable=True),
        sa.Column("provider_response", json_type, nullable=True),
        sa.Column(
            "metadata", json_type, nullable=False, server_default=sa.text("'{}'")
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_payment_attempts"),
        sa.UniqueConstraint(
            "idempotency_key", name="uq_payment_attempts_idempotency_key"
        ),
        sa.UniqueConstraint(
            "provider_reference", name="uq_payment_attempts_provider_reference"
        ),
        sa.CheckConstraint("amount > 0", name="ck_payment_attempts_amount_positive"),
        sa.CheckConstraint(
            "credits >= 0", name="ck_payment_attempts_credits_non_negative"
        ),
    )
    op.create_index(
        "ix_payment_attempts_user_id", "payment_attempts", ["user_id"]
    )
    op.create_index("ix_payment_attempts_status", "payment_attempts", ["status"])

    op.create_table(
        "payment_events",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("payment_id", _uuid(), nullable=False),
        sa.Column("event_type", event_type, nullable=False),
        sa.Column("provider_status", sa.String(length=64), nullable=True),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("data", json_type, nullable=False, server_default=sa.text("'{}'")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_payment_events"),
        sa.ForeignKeyConstraint(
            ["payment_id"],
            ["payment_attempts.id"],
            name="fk_payment_events_payment_id_payment_attempts",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_payment_events_payment_id", "payment_events", ["payment_id"]
    )

    op.create_table(
        "ledger_accounts",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column(
            "credit_balance", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column(
            "plan_tier", plan_tier, nullable=False, server_default=sa.text("'free'")
        ),
        sa.Column("renewal_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_ledger_accounts"),
        sa.UniqueConstraint("user_id", name="uq_ledger_accounts_user_id"),
        sa.CheckConstraint(
            "credit_balance >= 0",
            name="ck_ledger_accounts_credit_balance_non_negative",
        ),
    )

    op.create_table(
        "ledger_entries",
        sa.Column("id", _uuid(), nullable=False),
        sa.Column("payment_attempt_id", _uuid(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("entry_type", entry_type, nullable=False),
        sa.Column(
            "credits", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("plan_tier", entry_plan_tier, nullable=True),
        sa.Column("renewal_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "metadata", json_type, nullable=False, server_default=sa.text("'{}'")
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_ledger_entries"),
        sa.UniqueConstraint(
            "payment_attempt_id", name="uq_ledger_entries_payment_attempt_id"
        ),
        sa.ForeignKeyConstraint(
            ["payment_attempt_id"],
            ["payment_attempts.id"],
            name="fk_ledger_entries_payment_attempt_id_payment_attempts",
            ondelete="RESTRICT",
        ),
    )
    op.create_index("ix_ledger_entries_user_id", "ledger_entries", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_ledger_entries_user_id", table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_table("ledger_accounts")
    op.drop_index("ix_payment_events_payment_id", table_name="payment_events")
    op.drop_table("payment_events")
    op.drop_index("ix_payment_attempts_status", table_name="payment_attempts")
    op.drop_index("ix_payment_attempts_user_id", table_name="payment_attempts")
    op.drop_table("payment_attempts")
    op.drop_table("users")
