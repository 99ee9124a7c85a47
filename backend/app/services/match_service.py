"""
Match registry: match lifecycle and the spot inventory.

CONCURRENCY STRATEGY: Compare-and-set on Match.version
======================================================

Problem:
  Two players pick overlapping spot numbers at the same moment. Both read
  booked_spots=[1, 2], both see spot 3 free, both append it.
  Result: two people paying for spot 3.

Solution:
  Every write to booked_spots (and to the blacklist or the editable match
  fields) is a single conditional UPDATE against the version the writer read:

  1. Read the match and its current version
  2. Reject if any requested spot is already in booked_spots
  3. UPDATE matches SET booked_spots = :new, version = version + 1
     WHERE id = :match_id AND version = :read_version
  4. If rows_affected == 0, another writer got there first -> re-read, retry

  The retry re-checks overlap against the winner's spots, so overlapping
  requests end with one winner and one SpotConflict, and disjoint requests
  both land. Counter updates (spots_booked) and status promotions are
  single conditional UPDATEs that need no version.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import (
    Conflict,
    Forbidden,
    Internal,
    NotFound,
    Overbooking,
    SpotConflict,
    ValidationError,
)
from app.core.logging import get_logger
from app.core.metrics import db_retries
from app.core.security import hash_password
from app.models.match import Match, MatchStatus
from app.schemas.match import MatchCreate, MatchUpdate
from app.services.pricing import calculate_pricing

logger = get_logger(__name__)

OPEN_STATUSES = (MatchStatus.ACTIVE.value, MatchStatus.FULLY_BOOKED.value)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _pricing_values(total_amount, spots: int, match: Optional[Match] = None) -> dict:
    if match is None:
        pricing = calculate_pricing(total_amount, spots)
    else:
        # Keep the rates the match was created with
        pricing = calculate_pricing(
            total_amount,
            spots,
            platform_rate=match.platform_fee_rate,
            gateway_rate=match.gateway_fee_rate,
            fixed_fee=match.gateway_fixed_fee,
        )
    return {
        "total_amount": total_amount,
        "base_price_per_spot": pricing.base_price_per_spot,
        "platform_fee_per_spot": pricing.platform_fee_per_spot,
        "gateway_fee_per_spot": pricing.gateway_fee_per_spot,
        "final_price_per_spot": pricing.final_price_per_spot,
        "platform_fee_rate": pricing.platform_fee_rate,
        "gateway_fee_rate": pricing.gateway_fee_rate,
        "gateway_fixed_fee": pricing.gateway_fixed_fee,
        "total_expected": pricing.total_expected,
    }


async def load_match(db: AsyncSession, match_id: int) -> Optional[Match]:
    """Read the current row, overwriting any stale copy held by the session."""
    result = await db.execute(
        select(Match)
        .where(Match.id == match_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_match(db: AsyncSession, match_id: int) -> Match:
    match = await load_match(db, match_id)
    if not match:
        raise NotFound(f"Match {match_id} not found")
    return match


async def get_organizer_match(db: AsyncSession, match_id: int, organizer_id: int) -> Match:
    match = await load_match(db, match_id)
    if not match or match.organizer_id != organizer_id:
        raise NotFound("Match not found or unauthorized")
    return match


async def create_match(db: AsyncSession, organizer_id: int, data: MatchCreate) -> Match:
    """Create a new ACTIVE match priced from the organizer's payout target."""
    settings = get_settings()

    if _as_utc(data.match_date) <= datetime.now(timezone.utc):
        raise ValidationError("Match date must be in the future")

    active_count = (
        await db.execute(
            select(func.count())
            .select_from(Match)
            .where(
                Match.organizer_id == organizer_id,
                Match.status == MatchStatus.ACTIVE.value,
            )
        )
    ).scalar()
    if active_count >= settings.MAX_ACTIVE_MATCHES:
        logger.warning("match_limit_reached", organizer_id=organizer_id, active=active_count)
        raise ValidationError(
            f"You can have at most {settings.MAX_ACTIVE_MATCHES} active matches"
        )

    existing = await db.execute(select(Match.id).where(Match.team_id == data.team_id))
    if existing.scalar_one_or_none():
        raise Conflict("Team ID already in use. Choose another.")

    match = Match(
        team_id=data.team_id,
        organizer_id=organizer_id,
        pitch_name=data.pitch_name,
        match_date=_as_utc(data.match_date),
        hashed_password=hash_password(data.password),
        spots=data.spots,
        booked_spots=[],
        spots_booked=0,
        status=MatchStatus.ACTIVE.value,
        blacklist=[],
        auto_payout=data.auto_payout,
        account_name=data.account_details.account_name,
        account_number=data.account_details.account_number,
        bank_name=data.account_details.bank_name,
        sort_code=data.account_details.sort_code,
        **_pricing_values(data.total_amount, data.spots),
    )
    db.add(match)
    try:
        await db.flush()
    except IntegrityError:
        # Lost a race on the unique team_id
        await db.rollback()
        raise Conflict("Team ID already in use. Choose another.")
    await db.refresh(match)

    logger.info(
        "match_created",
        match_id=match.id,
        team_id=match.team_id,
        spots=match.spots,
        final_price=str(match.final_price_per_spot),
    )
    return match


async def _compare_and_set(db: AsyncSession, match_id: int, expected_version: int, **values) -> bool:
    result = await db.execute(
        update(Match)
        .where(Match.id == match_id, Match.version == expected_version)
        .values(version=Match.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def update_match(
    db: AsyncSession,
    match_id: int,
    organizer_id: int,
    data: MatchUpdate,
) -> Match:
    settings = get_settings()

    for attempt in range(1, settings.MAX_RESERVATION_RETRIES + 1):
        match = await get_match(db, match_id)
        if match.organizer_id != organizer_id:
            raise Forbidden("Not authorized to update this match")
        if match.status != MatchStatus.ACTIVE.value:
            raise ValidationError("Only active matches can be updated")

        values = {}
        if data.pitch_name:
            values["pitch_name"] = data.pitch_name
        if data.match_date:
            if _as_utc(data.match_date) <= datetime.now(timezone.utc):
                raise ValidationError("Match date must be in the future")
            values["match_date"] = _as_utc(data.match_date)
        if data.password:
            values["hashed_password"] = hash_password(data.password)
        if data.auto_payout is not None:
            values["auto_payout"] = data.auto_payout

        if data.spots is not None or data.total_amount is not None:
            spots = data.spots if data.spots is not None else match.spots
            total = data.total_amount if data.total_amount is not None else match.total_amount
            if spots != match.spots or total != match.total_amount:
                # Collected payments were priced at the current final price
                if match.booked_spots or match.spots_booked:
                    raise ValidationError(
                        "Spots and price cannot change once spots are reserved or paid"
                    )
                values["spots"] = spots
                values.update(_pricing_values(total, spots, match))

        if not values:
            return match

        if await _compare_and_set(db, match.id, match.version, **values):
            await _promote_if_full(db, match.id)
            logger.info("match_updated", match_id=match.id, fields=sorted(values))
            return await get_match(db, match_id)

        db_retries.inc()
        logger.info("match_update_retry", match_id=match_id, attempt=attempt)

    raise Conflict("Match was modified concurrently. Please try again.")


async def list_upcoming_matches(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Match], int]:
    """Public listing: ACTIVE matches that have not kicked off yet."""
    query = select(Match).where(
        Match.status == MatchStatus.ACTIVE.value,
        Match.match_date >= datetime.now(timezone.utc),
    )

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    matches_query = (
        query
        .order_by(Match.match_date.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(matches_query)
    return list(result.scalars().all()), total


async def list_organizer_matches(db: AsyncSession, organizer_id: int) -> list[Match]:
    result = await db.execute(
        select(Match)
        .where(
            Match.organizer_id == organizer_id,
            Match.match_date >= datetime.now(timezone.utc),
        )
        .order_by(Match.match_date.asc())
    )
    return list(result.scalars().all())


async def reserve_spots(
    db: AsyncSession,
    match_id: int,
    spot_numbers: Iterable[int],
    user_id: Optional[int] = None,
) -> Match:
    """
    Claim spot numbers on a match, all or nothing.

    Raises:
        SpotConflict: any requested number is already claimed, or the
            version race could not be won within MAX_RESERVATION_RETRIES
        Forbidden: user_id is blacklisted on this match
    """
    settings = get_settings()
    requested = set(spot_numbers)

    for attempt in range(1, settings.MAX_RESERVATION_RETRIES + 1):
        match = await get_match(db, match_id)
        if user_id is not None and user_id in (match.blacklist or []):
            raise Forbidden("You have been removed from this match")

        current = set(match.booked_spots or [])
        taken = sorted(current & requested)
        if taken:
            logger.info("spot_conflict", match_id=match_id, taken=taken)
            raise SpotConflict(f"Spots {taken} are already taken", spots=taken)

        new_spots = sorted(current | requested)
        if len(new_spots) > match.spots:
            raise SpotConflict("Not enough spots left on this match")

        if await _compare_and_set(db, match.id, match.version, booked_spots=new_spots):
            logger.info(
                "spots_reserved",
                match_id=match_id,
                spots=sorted(requested),
                attempt=attempt,
            )
            return await get_match(db, match_id)

        db_retries.inc()
        logger.info(
            "reservation_retry",
            match_id=match_id,
            attempt=attempt,
            reason="version_conflict",
        )

    raise SpotConflict("Spots could not be reserved due to high demand. Please try again.")


async def release_spots(db: AsyncSession, match_id: int, spot_numbers: Iterable[int]) -> Match:
    """Remove spot numbers from the claimed set. Numbers not present are ignored."""
    settings = get_settings()
    released = set(spot_numbers)

    for attempt in range(1, settings.MAX_RESERVATION_RETRIES + 1):
        match = await get_match(db, match_id)
        current = set(match.booked_spots or [])
        if not current & released:
            return match

        new_spots = sorted(current - released)
        if await _compare_and_set(db, match.id, match.version, booked_spots=new_spots):
            logger.info("spots_released", match_id=match_id, spots=sorted(current & released))
            return await get_match(db, match_id)

        db_retries.inc()
        logger.info("release_retry", match_id=match_id, attempt=attempt)

    raise Internal(f"Could not release spots on match {match_id}")


async def _promote_if_full(db: AsyncSession, match_id: int) -> bool:
    result = await db.execute(
        update(Match)
        .where(
            Match.id == match_id,
            Match.status == MatchStatus.ACTIVE.value,
            Match.spots_booked >= Match.spots,
        )
        .values(status=MatchStatus.FULLY_BOOKED.value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        logger.info("match_fully_booked", match_id=match_id)
        return True
    return False


async def confirm_spots_paid(db: AsyncSession, match_id: int, count: int) -> Match:
    """
    Add settled spots to the confirmed-paid counter.

    The increment is guarded in SQL so the counter can never pass the
    match capacity. Reaching capacity promotes ACTIVE -> FULLY_BOOKED.
    """
    result = await db.execute(
        update(Match)
        .where(Match.id == match_id, Match.spots_booked + count <= Match.spots)
        .values(spots_booked=Match.spots_booked + count)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.error("overbooking_detected", match_id=match_id, count=count)
        raise Overbooking(f"Confirming {count} spots would overbook match {match_id}")

    await _promote_if_full(db, match_id)
    return await get_match(db, match_id)


async def mark_paid_up(db: AsyncSession, match_id: int) -> bool:
    """Transition to PAID_UP once. Returns True only for the call that did it."""
    result = await db.execute(
        update(Match)
        .where(Match.id == match_id, Match.status.in_(OPEN_STATUSES))
        .values(status=MatchStatus.PAID_UP.value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        logger.info("match_paid_up", match_id=match_id)
        return True
    return False


async def blacklist_user(db: AsyncSession, match_id: int, user_id: int) -> Match:
    settings = get_settings()

    for attempt in range(1, settings.MAX_RESERVATION_RETRIES + 1):
        match = await get_match(db, match_id)
        blacklist = list(match.blacklist or [])
        if user_id in blacklist:
            return match

        blacklist.append(user_id)
        if await _compare_and_set(db, match.id, match.version, blacklist=blacklist):
            logger.info("user_blacklisted", match_id=match_id, user_id=user_id)
            return await get_match(db, match_id)

        db_retries.inc()

    raise Conflict("Match was modified concurrently. Please try again.")


async def cancel_match(db: AsyncSession, match_id: int, organizer_id: int) -> Match:
    """
    Cancel an open match. Refunds are not supported, so a match with any
    claimed spot (in checkout or paid) cannot be cancelled.
    """
    match = await get_organizer_match(db, match_id, organizer_id)
    if match.status not in OPEN_STATUSES:
        raise Conflict(f"Match cannot be cancelled from status {match.status}")
    if match.booked_spots or match.spots_booked:
        raise Conflict("Match has reserved or paid spots and cannot be cancelled")

    cancelled = await _compare_and_set(
        db, match.id, match.version, status=MatchStatus.CANCELLED.value
    )
    if not cancelled:
        raise Conflict("Match was modified concurrently. Please try again.")

    logger.info("match_cancelled", match_id=match_id)
    return await get_match(db, match_id)
