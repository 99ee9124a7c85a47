"""
Match endpoints: organizer lifecycle, joining, and the spot picker.
The public listing is cached in Redis.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.booking import BookingResponse, JoinMatchRequest, MatchSpotResponse
from app.schemas.match import (
    MatchCreate,
    MatchListResponse,
    MatchResponse,
    MatchUpdate,
    PlayerRemovalResponse,
)
from app.services import booking_service, match_service
from app.services.cache_service import get_cached_matches, invalidate_match_cache, set_cached_matches
from app.core.security import get_current_user_id
from app.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/matches", tags=["Matches"])


@router.post("/", response_model=MatchResponse, status_code=status.HTTP_201_CREATED)
async def create_match_endpoint(
    match_data: MatchCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Create a match. The caller becomes its organizer."""
    match = await match_service.create_match(db, user_id, match_data)
    await db.commit()
    await invalidate_match_cache()
    return match


@router.get("/", response_model=MatchListResponse)
async def list_matches_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """
    Upcoming ACTIVE matches, soonest first.
    Served from Redis when cached; invalidated on any match or spot change.
    """
    cached = await get_cached_matches(page, page_size)
    if cached:
        logger.info("matches_list_cache_hit", page=page)
        cached["cached"] = True
        return MatchListResponse(**cached)

    matches, total = await match_service.list_upcoming_matches(db, page, page_size)

    response_data = {
        "matches": [MatchResponse.model_validate(m).model_dump(mode="json") for m in matches],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }
    await set_cached_matches(page, page_size, response_data)

    return MatchListResponse(**response_data)


@router.get("/mine", response_model=list[MatchResponse])
async def list_my_matches(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Upcoming matches organized by the caller."""
    return await match_service.list_organizer_matches(db, user_id)


@router.get("/{match_id}", response_model=MatchResponse)
async def get_match_endpoint(
    match_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Single match. Not cached (needs real-time spot state)."""
    return await match_service.get_match(db, match_id)


@router.patch("/{match_id}", response_model=MatchResponse)
async def update_match_endpoint(
    match_id: int,
    match_data: MatchUpdate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    match = await match_service.update_match(db, match_id, user_id, match_data)
    await db.commit()
    await invalidate_match_cache()
    return match


@router.post("/{match_id}/cancel", response_model=MatchResponse)
async def cancel_match_endpoint(
    match_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    match = await match_service.cancel_match(db, match_id, user_id)
    await db.commit()
    await invalidate_match_cache()
    return match


@router.post("/{match_id}/join", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def join_match_endpoint(
    match_id: int,
    join_data: JoinMatchRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Join a match with its team id and access password. No spots are held yet."""
    booking = await booking_service.join_match(
        db, user_id, match_id, join_data.password, join_data.team_id
    )
    await db.commit()
    return booking


@router.get("/{match_id}/spots", response_model=list[MatchSpotResponse])
async def list_match_spots_endpoint(
    match_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.list_match_spots(db, match_id)


@router.delete("/{match_id}/players/{player_id}", response_model=PlayerRemovalResponse)
async def remove_player_endpoint(
    match_id: int,
    player_id: int,
    blacklist: bool = Query(False),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Organizer removes a player who has not paid, optionally barring them."""
    await booking_service.remove_player(db, user_id, match_id, player_id, blacklist=blacklist)
    await db.commit()
    return PlayerRemovalResponse(
        message="Player removed" + (" and blacklisted" if blacklist else ""),
        match_id=match_id,
        user_id=player_id,
        blacklisted=blacklist,
    )
