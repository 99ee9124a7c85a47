"""
Match model: a bookable pickup match with numbered spots.

Key design decisions:
- `booked_spots` holds every spot number currently claimed, paid or still in
  checkout. It is the single source of truth for "is this spot taken".
- `spots_booked` counts confirmed-paid spots only.
- `version` is bumped on every booked_spots write; reservations and releases
  are compare-and-set updates against it.
- Price breakdown and payout destination are flattened onto the row; the
  payout log lives in `payout_history`.
"""

import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin, utcnow


class MatchStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    FULLY_BOOKED = "FULLY_BOOKED"
    PAID_UP = "PAID_UP"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PayoutHistoryStatus(str, enum.Enum):
    INITIATED = "INITIATED"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    DISCREPANCY = "DISCREPANCY"


class Match(Base, TimestampMixin):
    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(String(100), unique=True, nullable=False)
    organizer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    pitch_name = Column(String(255), nullable=False)
    match_date = Column(DateTime(timezone=True), nullable=False)
    hashed_password = Column(String(255), nullable=False)

    # Spot inventory
    spots = Column(Integer, nullable=False)
    booked_spots = Column(JSON, nullable=False, default=list)
    spots_booked = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=MatchStatus.ACTIVE.value)
    blacklist = Column(JSON, nullable=False, default=list)
    version = Column(Integer, nullable=False, default=1)

    # Pricing
    total_amount = Column(Numeric(10, 2), nullable=False)
    base_price_per_spot = Column(Numeric(10, 2), nullable=False)
    platform_fee_per_spot = Column(Numeric(10, 2), nullable=False)
    gateway_fee_per_spot = Column(Numeric(10, 2), nullable=False)
    final_price_per_spot = Column(Numeric(10, 2), nullable=False)
    platform_fee_rate = Column(Numeric(6, 4), nullable=False)
    gateway_fee_rate = Column(Numeric(6, 4), nullable=False)
    gateway_fixed_fee = Column(Numeric(10, 2), nullable=False)
    total_expected = Column(Numeric(10, 2), nullable=False)

    # Payout destination
    account_name = Column(String(255), nullable=False)
    account_number = Column(String(50), nullable=False)
    bank_name = Column(String(255), nullable=False)
    sort_code = Column(String(20), nullable=True)
    stripe_account_id = Column(String(100), nullable=True)
    connected_at = Column(DateTime(timezone=True), nullable=True)

    # Payout bookkeeping
    auto_payout = Column(Boolean, nullable=False, default=False)
    payout_initiated = Column(Boolean, nullable=False, default=False)
    payout_ref = Column(String(100), nullable=True)
    payout_amount = Column(Numeric(10, 2), nullable=True)
    platform_fee = Column(Numeric(10, 2), nullable=True)
    payout_date = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    organizer = relationship("User", back_populates="matches")
    bookings = relationship("Booking", back_populates="match")
    payout_history = relationship(
        "PayoutHistory",
        back_populates="match",
        order_by="PayoutHistory.id",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("spots > 0", name="check_match_spots_positive"),
        CheckConstraint("spots_booked >= 0", name="check_spots_booked_non_negative"),
        CheckConstraint("spots_booked <= spots", name="check_spots_booked_lte_spots"),
        Index("ix_matches_date", "match_date"),
        Index("ix_matches_status_date", "status", "match_date"),
    )

    @property
    def available_spots(self) -> int:
        return self.spots - self.spots_booked

    def __repr__(self) -> str:
        return f"<Match(id={self.id}, team={self.team_id}, status={self.status}, paid={self.spots_booked}/{self.spots})>"


class PayoutHistory(Base):
    __tablename__ = "payout_history"

    id = Column(Integer, primary_key=True, index=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    message = Column(Text, nullable=True)
    payout_ref = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    match = relationship("Match", back_populates="payout_history")

    def __repr__(self) -> str:
        return f"<PayoutHistory(match={self.match_id}, status={self.status})>"
