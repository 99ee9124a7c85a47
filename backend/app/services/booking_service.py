"""
Booking ledger: one booking per user per match.

A booking is created PENDING when a player first joins, and only the
settlement transaction moves it to CONFIRMED and adds spot numbers to it.
The organizer can remove a player (optionally blacklisting them) as long as
that player has nothing paid.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import Conflict, Forbidden, NotFound, ValidationError
from app.core.logging import get_logger
from app.core.security import verify_password
from app.models.booking import Booking, BookingStatus
from app.models.match import Match, MatchStatus
from app.models.payment import Payment, PaymentStatus
from app.models.user import User
from app.services import match_service

logger = get_logger(__name__)


def check_match_access(match: Match, user_id: int, password: str, team_id: str) -> None:
    """
    Gatekeeping shared by join and payment initiation, in this order:
    blacklist, match status, access password, team id.
    """
    if user_id in (match.blacklist or []):
        logger.warning("blacklisted_user_rejected", match_id=match.id, user_id=user_id)
        raise Forbidden("You have been removed from this match")

    if match.status != MatchStatus.ACTIVE.value:
        raise ValidationError("Match not active")

    if not verify_password(password, match.hashed_password):
        logger.warning("invalid_match_password", match_id=match.id, user_id=user_id)
        raise Forbidden("Invalid password")

    if match.team_id != team_id:
        raise ValidationError("Invalid team ID for this match")


async def get_booking(db: AsyncSession, match_id: int, user_id: int) -> Optional[Booking]:
    result = await db.execute(
        select(Booking)
        .where(Booking.match_id == match_id, Booking.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_booking(db: AsyncSession, match_id: int, user_id: int) -> Booking:
    booking = await get_booking(db, match_id, user_id)
    if booking:
        if booking.status == BookingStatus.CANCELLED.value:
            # Removed earlier without a blacklist; rejoining reopens it
            booking.status = BookingStatus.PENDING.value
            await db.flush()
        return booking

    booking = Booking(
        match_id=match_id,
        user_id=user_id,
        status=BookingStatus.PENDING.value,
        amount_paid=0,
        spot_booked=[],
    )
    db.add(booking)
    try:
        await db.flush()
    except IntegrityError:
        # A concurrent request from the same user created it first
        await db.rollback()
        booking = await get_booking(db, match_id, user_id)
        if booking is None:
            raise
        return booking

    await db.refresh(booking)
    logger.info("booking_created", booking_id=booking.id, match_id=match_id, user_id=user_id)
    return booking


async def join_match(
    db: AsyncSession,
    user_id: int,
    match_id: int,
    password: str,
    team_id: str,
) -> Booking:
    """Join a match as a player. Creates a PENDING booking with no spots."""
    match = await match_service.get_match(db, match_id)
    check_match_access(match, user_id, password, team_id)

    existing = await get_booking(db, match_id, user_id)
    if existing and existing.status != BookingStatus.CANCELLED.value:
        raise Conflict("You have already joined this match")

    if match.spots_booked >= match.spots:
        raise ValidationError("No spots available")

    return await get_or_create_booking(db, match_id, user_id)


async def remove_player(
    db: AsyncSession,
    organizer_id: int,
    match_id: int,
    user_id: int,
    blacklist: bool = False,
) -> None:
    """
    Organizer-only forced removal.

    Cancels the booking while nothing has been paid; optionally bars the
    user from rejoining. A player with a settled or in-flight payment cannot
    be removed (refunds are not supported).
    """
    match = await match_service.get_organizer_match(db, match_id, organizer_id)
    if user_id == organizer_id:
        raise ValidationError("Organizers cannot remove themselves")

    booking = await get_booking(db, match_id, user_id)
    if booking and booking.status != BookingStatus.CANCELLED.value:
        if booking.status == BookingStatus.CONFIRMED.value or booking.amount_paid > 0:
            raise Conflict("Player has already paid and cannot be removed")

        in_flight = await db.execute(
            select(Payment.id).where(
                Payment.booking_id == booking.id,
                Payment.status.in_([PaymentStatus.PENDING.value, PaymentStatus.SUCCESS.value]),
            )
        )
        if in_flight.first():
            raise Conflict("Player has a payment in progress and cannot be removed")

        booking.status = BookingStatus.CANCELLED.value
        await db.flush()
        logger.info("booking_removed", match_id=match_id, user_id=user_id)
    elif not blacklist:
        raise NotFound("Player has not joined this match")

    if blacklist:
        await match_service.blacklist_user(db, match.id, user_id)


async def list_match_spots(db: AsyncSession, match_id: int) -> list[dict]:
    """Players in a match with the spot numbers they hold."""
    await match_service.get_match(db, match_id)
    result = await db.execute(
        select(Booking, User.first_name, User.last_name)
        .join(User, User.id == Booking.user_id)
        .where(Booking.match_id == match_id, Booking.status != BookingStatus.CANCELLED.value)
        .order_by(Booking.created_at.asc())
    )
    return [
        {
            "user_id": booking.user_id,
            "first_name": first_name,
            "last_name": last_name,
            "status": booking.status,
            "spot_booked": booking.spot_booked or [],
        }
        for booking, first_name, last_name in result.all()
    ]


async def get_user_bookings(db: AsyncSession, user_id: int) -> list[Booking]:
    """Get all bookings for a user."""
    result = await db.execute(
        select(Booking)
        .where(Booking.user_id == user_id)
        .order_by(Booking.created_at.desc())
    )
    return list(result.scalars().all())


async def get_user_upcoming_matches(db: AsyncSession, user_id: int) -> list[Match]:
    """ACTIVE matches the user has joined that have not kicked off yet, nearest first."""
    result = await db.execute(
        select(Match)
        .join(Booking, Booking.match_id == Match.id)
        .where(
            Booking.user_id == user_id,
            Booking.status != BookingStatus.CANCELLED.value,
            Match.status == MatchStatus.ACTIVE.value,
            Match.match_date >= datetime.now(timezone.utc),
        )
        .order_by(Match.match_date.asc())
    )
    return list(result.scalars().all())
