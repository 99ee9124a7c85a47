from app.models.user import User
from app.models.match import Match, MatchStatus, PayoutHistory, PayoutHistoryStatus
from app.models.booking import Booking, BookingStatus
from app.models.payment import Payment, PaymentStatus

__all__ = [
    "User",
    "Match", "MatchStatus", "PayoutHistory", "PayoutHistoryStatus",
    "Booking", "BookingStatus",
    "Payment", "PaymentStatus",
]
