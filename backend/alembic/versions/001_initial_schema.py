"""Initial schema: users, matches, payout history, bookings, payments.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "matches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("team_id", sa.String(100), nullable=False, unique=True),
        sa.Column("organizer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("pitch_name", sa.String(255), nullable=False),
        sa.Column("match_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("spots", sa.Integer(), nullable=False),
        sa.Column("booked_spots", sa.JSON(), nullable=False),
        sa.Column("spots_booked", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("blacklist", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("base_price_per_spot", sa.Numeric(10, 2), nullable=False),
        sa.Column("platform_fee_per_spot", sa.Numeric(10, 2), nullable=False),
        sa.Column("gateway_fee_per_spot", sa.Numeric(10, 2), nullable=False),
        sa.Column("final_price_per_spot", sa.Numeric(10, 2), nullable=False),
        sa.Column("platform_fee_rate", sa.Numeric(6, 4), nullable=False),
        sa.Column("gateway_fee_rate", sa.Numeric(6, 4), nullable=False),
        sa.Column("gateway_fixed_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_expected", sa.Numeric(10, 2), nullable=False),
        sa.Column("account_name", sa.String(255), nullable=False),
        sa.Column("account_number", sa.String(50), nullable=False),
        sa.Column("bank_name", sa.String(255), nullable=False),
        sa.Column("sort_code", sa.String(20), nullable=True),
        sa.Column("stripe_account_id", sa.String(100), nullable=True),
        sa.Column("connected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_payout", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("payout_initiated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("payout_ref", sa.String(100), nullable=True),
        sa.Column("payout_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("platform_fee", sa.Numeric(10, 2), nullable=True),
        sa.Column("payout_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("spots > 0", name="check_match_spots_positive"),
        sa.CheckConstraint("spots_booked >= 0", name="check_spots_booked_non_negative"),
        # Paid counter can never pass capacity, whatever the application does
        sa.CheckConstraint("spots_booked <= spots", name="check_spots_booked_lte_spots"),
    )
    op.create_index("ix_matches_id", "matches", ["id"])
    op.create_index("ix_matches_organizer_id", "matches", ["organizer_id"])
    op.create_index("ix_matches_date", "matches", ["match_date"])
    # Public listing: WHERE status = 'ACTIVE' AND match_date >= now() ORDER BY match_date
    op.create_index("ix_matches_status_date", "matches", ["status", "match_date"])

    op.create_table(
        "payout_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("match_id", sa.Integer(), sa.ForeignKey("matches.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("payout_ref", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_payout_history_id", "payout_history", ["id"])
    op.create_index("ix_payout_history_match_id", "payout_history", ["match_id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("match_id", sa.Integer(), sa.ForeignKey("matches.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("amount_paid", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("spot_booked", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("match_id", "user_id", name="uq_match_user_booking"),
        sa.CheckConstraint("amount_paid >= 0", name="check_booking_amount_non_negative"),
        sa.CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'CANCELLED')", name="check_booking_status"
        ),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_match_id", "bookings", ["match_id"])
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("match_id", sa.Integer(), sa.ForeignKey("matches.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("transaction_ref", sa.String(100), nullable=False, unique=True),
        sa.Column("gateway_intent_id", sa.String(100), nullable=True, unique=True),
        sa.Column("gateway_charge_id", sa.String(100), nullable=True),
        sa.Column("spot_booked", sa.JSON(), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="check_payment_amount_non_negative"),
    )
    op.create_index("ix_payments_id", "payments", ["id"])
    op.create_index("ix_payments_booking_id", "payments", ["booking_id"])
    op.create_index("ix_payments_user_id", "payments", ["user_id"])
    # Staleness sweep and settlement totals: WHERE match_id = ? AND status = ?
    op.create_index("ix_payments_match_status", "payments", ["match_id", "status"])


def downgrade() -> None:
    op.drop_table("payments")
    op.drop_table("bookings")
    op.drop_table("payout_history")
    op.drop_table("matches")
    op.drop_table("users")
