"""
Booking model representing one user's place in one match.

Key design decisions:
- Unique constraint on (match_id, user_id): one booking per user per match
- `spot_booked` mirrors the spot numbers this user has paid for; it is only
  written inside the settlement transaction
- Status field tracks PENDING (joined, nothing paid) and CONFIRMED
"""

import enum

from sqlalchemy import Column, Integer, String, ForeignKey, JSON, Numeric, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)
    amount_paid = Column(Numeric(10, 2), nullable=False, default=0)
    spot_booked = Column(JSON, nullable=False, default=list)

    # Relationships
    user = relationship("User", back_populates="bookings")
    match = relationship("Match", back_populates="bookings")

    __table_args__ = (
        UniqueConstraint("match_id", "user_id", name="uq_match_user_booking"),
        CheckConstraint("amount_paid >= 0", name="check_booking_amount_non_negative"),
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'CANCELLED')", name="check_booking_status"
        ),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, user={self.user_id}, match={self.match_id}, status={self.status})>"
