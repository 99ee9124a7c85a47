from app.schemas.match import (
    AccountDetails, MatchCreate, MatchUpdate, MatchResponse, MatchListResponse, PlayerRemovalResponse,
)
from app.schemas.booking import JoinMatchRequest, BookingResponse, MatchSpotResponse
from app.schemas.payment import (
    PaymentInitiateRequest, PaymentInitiateResponse, PaymentResponse, PaymentCancelResponse,
    WebhookResponse, PayoutResponse, PayoutAccountResponse, PayoutHistoryResponse, MatchFinancesResponse,
)

__all__ = [
    "AccountDetails", "MatchCreate", "MatchUpdate", "MatchResponse", "MatchListResponse",
    "PlayerRemovalResponse",
    "JoinMatchRequest", "BookingResponse", "MatchSpotResponse",
    "PaymentInitiateRequest", "PaymentInitiateResponse", "PaymentResponse", "PaymentCancelResponse",
    "WebhookResponse", "PayoutResponse", "PayoutAccountResponse", "PayoutHistoryResponse",
    "MatchFinancesResponse",
]
