"""
Pydantic schemas for match-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class AccountDetails(BaseModel):
    account_name: str = Field(..., min_length=1, max_length=255)
    account_number: str = Field(..., min_length=4, max_length=50)
    bank_name: str = Field(..., min_length=1, max_length=255)
    sort_code: Optional[str] = Field(None, max_length=20)


class MatchCreate(BaseModel):
    team_id: str = Field(..., min_length=1, max_length=100)
    pitch_name: str = Field(..., min_length=1, max_length=255)
    match_date: datetime
    spots: int = Field(..., gt=0, le=100)
    total_amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    password: str = Field(..., min_length=4, max_length=128)
    account_details: AccountDetails
    auto_payout: bool = False


class MatchUpdate(BaseModel):
    pitch_name: Optional[str] = Field(None, min_length=1, max_length=255)
    match_date: Optional[datetime] = None
    spots: Optional[int] = Field(None, gt=0, le=100)
    total_amount: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    password: Optional[str] = Field(None, min_length=4, max_length=128)
    auto_payout: Optional[bool] = None


class MatchResponse(BaseModel):
    id: int
    team_id: str
    organizer_id: int
    pitch_name: str
    match_date: datetime
    spots: int
    spots_booked: int
    booked_spots: list[int]
    available_spots: int
    status: str
    base_price_per_spot: Decimal
    platform_fee_per_spot: Decimal
    gateway_fee_per_spot: Decimal
    final_price_per_spot: Decimal
    total_expected: Decimal
    auto_payout: bool
    payout_initiated: bool
    payout_ref: Optional[str]
    payout_amount: Optional[Decimal]
    payout_date: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class MatchListResponse(BaseModel):
    matches: list[MatchResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False


class PlayerRemovalResponse(BaseModel):
    message: str
    match_id: int
    user_id: int
    blacklisted: bool
