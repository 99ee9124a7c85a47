"""
Payment model: one attempt to pay for a specific set of spot numbers.

Rows are never deleted; they are the audit trail tying a spot request to a
gateway transaction. Status moves out of PENDING through conditional
updates only (see app.services.settlement_service).
"""

import enum

from sqlalchemy import Column, Integer, String, ForeignKey, JSON, Numeric, Text, Index, CheckConstraint

from app.db.base import Base, TimestampMixin


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    REFUNDED = "REFUNDED"


class Payment(Base, TimestampMixin):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    transaction_ref = Column(String(100), nullable=False, unique=True)
    gateway_intent_id = Column(String(100), nullable=True, unique=True)
    gateway_charge_id = Column(String(100), nullable=True)
    spot_booked = Column(JSON, nullable=False, default=list)
    failure_reason = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_payment_amount_non_negative"),
        # Staleness sweep and settlement totals both filter by match and status
        Index("ix_payments_match_status", "match_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, match={self.match_id}, status={self.status}, amount={self.amount})>"
