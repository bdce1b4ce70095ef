"""referral payouts schema

Revision ID: 0001_referral_payouts
Revises:
Create Date: 2026-10-18 09:30:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_referral_payouts"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS app")

    op.create_table(
        "payout_requests",
        sa.Column("id", sa.UUID(), primary_key=True, nullable=False),
        sa.Column("owner_id", sa.UUID(), nullable=False),
        sa.Column("amount_kobo", sa.BigInteger(), nullable=False),
        sa.Column("account_name", sa.Text(), nullable=False),
        sa.Column("account_number", sa.Text(), nullable=False),
        sa.Column("bank_code", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("payment_status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("paystack_reference", sa.Text(), nullable=True),
        sa.Column("transfer_code", sa.Text(), nullable=True),
        sa.Column("manual_reference", sa.Text(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("earning_ids", postgresql.ARRAY(sa.UUID()), nullable=False, server_default=sa.text("'{}'::uuid[]")),
        sa.Column("requested_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("amount_kobo > 0", name="ck_payout_requests_amount_positive"),
        sa.CheckConstraint(
            "status IN ('pending','processing','otp','completed','failed','cancelled')",
            name="ck_payout_requests_status",
        ),
        sa.CheckConstraint(
            "payment_status IN ('pending','processing','success','failed')",
            name="ck_payout_requests_payment_status",
        ),
        sa.CheckConstraint(
            "(processed_at IS NOT NULL) = (status IN ('completed','failed'))",
            name="ck_payout_requests_processed_at",
        ),
        schema="app",
    )
    op.create_index("ix_payout_requests_owner_status", "payout_requests", ["owner_id", "status"], schema="app")
    op.create_index("ix_payout_requests_requested_at", "payout_requests", ["requested_at"], schema="app")
    op.create_index(
        "ux_payout_requests_paystack_reference",
        "payout_requests",
        ["paystack_reference"],
        unique=True,
        schema="app",
        postgresql_where=sa.text("paystack_reference IS NOT NULL"),
    )

    op.create_table(
        "payout_attempts",
        sa.Column("payout_id", sa.UUID(), sa.ForeignKey("app.payout_requests.id", ondelete="CASCADE"), nullable=False),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.Column("reference", sa.Text(), nullable=True),
        sa.Column("transfer_code", sa.Text(), nullable=True),
        sa.Column("requires_otp", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("outcome", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("payout_id", "number", name="pk_payout_attempts"),
        schema="app",
    )
    op.create_index("ix_payout_attempts_reference", "payout_attempts", ["reference"], schema="app")

    op.create_table(
        "payout_events",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column("payout_id", sa.UUID(), sa.ForeignKey("app.payout_requests.id", ondelete="CASCADE"), nullable=False),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("actor", sa.Text(), nullable=True),
        sa.Column("from_status", sa.Text(), nullable=True),
        sa.Column("to_status", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("request_id", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        schema="app",
    )
    op.create_index("ix_payout_events_payout_id", "payout_events", ["payout_id", "created_at"], schema="app")

    op.create_table(
        "referral_earnings",
        sa.Column("id", sa.UUID(), primary_key=True, nullable=False),
        sa.Column("referrer_id", sa.UUID(), nullable=False),
        sa.Column("referred_user_id", sa.UUID(), nullable=False),
        sa.Column("order_id", sa.Text(), nullable=False),
        sa.Column("order_total_kobo", sa.BigInteger(), nullable=False),
        sa.Column("percentage", sa.Numeric(6, 3), nullable=False),
        sa.Column("amount_kobo", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("payment_status", sa.Text(), nullable=False, server_default="unpaid"),
        sa.Column("payout_id", sa.UUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("referrer_id", "order_id", name="uq_referral_earnings_referrer_order"),
        schema="app",
    )
    op.create_index(
        "ix_referral_earnings_referrer_status",
        "referral_earnings",
        ["referrer_id", "status", "payment_status"],
        schema="app",
    )
    op.create_index("ix_referral_earnings_payout_id", "referral_earnings", ["payout_id"], schema="app")

    op.create_table(
        "referrer_accounts",
        sa.Column("owner_id", sa.UUID(), primary_key=True, nullable=False),
        sa.Column("account_name", sa.Text(), nullable=False),
        sa.Column("account_number", sa.Text(), nullable=False),
        sa.Column("bank_code", sa.Text(), nullable=False),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        schema="app",
    )

    op.create_table(
        "referral_settings",
        sa.Column("id", sa.SmallInteger(), primary_key=True, nullable=False),
        sa.Column("min_payout_kobo", sa.BigInteger(), nullable=False),
        sa.Column("referral_percentage", sa.Numeric(6, 3), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.CheckConstraint("id = 1", name="ck_referral_settings_single_row"),
        sa.CheckConstraint("min_payout_kobo >= 10000", name="ck_referral_settings_min_payout"),
        sa.CheckConstraint(
            "referral_percentage >= 0 AND referral_percentage <= 100",
            name="ck_referral_settings_percentage",
        ),
        schema="app",
    )


def downgrade() -> None:
    op.drop_table("referral_settings", schema="app")
    op.drop_table("referrer_accounts", schema="app")
    op.drop_index("ix_referral_earnings_payout_id", table_name="referral_earnings", schema="app")
    op.drop_index("ix_referral_earnings_referrer_status", table_name="referral_earnings", schema="app")
    op.drop_table("referral_earnings", schema="app")
    op.drop_index("ix_payout_events_payout_id", table_name="payout_events", schema="app")
    op.drop_table("payout_events", schema="app")
    op.drop_index("ix_payout_attempts_reference", table_name="payout_attempts", schema="app")
    op.drop_table("payout_attempts", schema="app")
    op.drop_index("ux_payout_requests_paystack_reference", table_name="payout_requests", schema="app")
    op.drop_index("ix_payout_requests_requested_at", table_name="payout_requests", schema="app")
    op.drop_index("ix_payout_requests_owner_status", table_name="payout_requests", schema="app")
    op.drop_table("payout_requests", schema="app")
