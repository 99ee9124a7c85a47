"""
Pydantic schemas for payment, webhook and payout responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class PaymentInitiateRequest(BaseModel):
    match_id: int
    spot_booked: list[int] = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=128)
    team_id: str = Field(..., min_length=1, max_length=100)


class PaymentInitiateResponse(BaseModel):
    success: bool = True
    payment_id: int
    client_secret: str
    amount: Decimal
    spot_booked: list[int]


class PaymentResponse(BaseModel):
    id: int
    match_id: int
    booking_id: int
    user_id: int
    amount: Decimal
    status: str
    transaction_ref: str
    spot_booked: list[int]
    failure_reason: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentCancelResponse(BaseModel):
    success: bool = True
    payment_id: int
    status: str


class WebhookResponse(BaseModel):
    received: bool = True
    success: bool
    message: str


class PayoutResponse(BaseModel):
    success: bool = True
    message: str
    payout_id: str
    amount: Decimal


class PayoutAccountResponse(BaseModel):
    success: bool = True
    stripe_account_id: str
    onboarding_url: str


class PayoutHistoryResponse(BaseModel):
    status: str
    message: Optional[str]
    payout_ref: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class MatchFinancesResponse(BaseModel):
    total_spots: int
    spots_booked: int
    final_price_per_spot: Decimal
    total_expected: Decimal
    total_collected: Decimal
    platform_fee: Decimal
    expected_payout: Decimal
    payout_status: str
    payout_ref: Optional[str]
    payout_history: list[PayoutHistoryResponse]
    payments: list[PaymentResponse]
