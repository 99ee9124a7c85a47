"""
Booking endpoints: the caller's own bookings and joined matches.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.booking import BookingResponse
from app.schemas.match import MatchResponse
from app.services.booking_service import get_user_bookings, get_user_upcoming_matches
from app.core.security import get_current_user_id

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.get("/joined", response_model=list[MatchResponse])
async def list_joined_matches(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Upcoming ACTIVE matches the caller has joined."""
    return await get_user_upcoming_matches(db, user_id)


@router.get("/", response_model=list[BookingResponse])
async def list_user_bookings(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Get all bookings for the authenticated user."""
    bookings = await get_user_bookings(db, user_id)
    return bookings
