"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field


class JoinMatchRequest(BaseModel):
    team_id: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=128)


class BookingResponse(BaseModel):
    id: int
    match_id: int
    user_id: int
    status: str
    amount_paid: Decimal
    spot_booked: list[int]
    created_at: datetime

    model_config = {"from_attributes": True}


class MatchSpotResponse(BaseModel):
    """A player's place in a match, as shown on the spot picker."""

    user_id: int
    first_name: str
    last_name: str
    status: str
    spot_booked: list[int]
