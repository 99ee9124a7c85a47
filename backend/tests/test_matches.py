"""
Tests for the match registry: lifecycle endpoints and the spot inventory.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient

from app.core.exceptions import Forbidden, Overbooking, SpotConflict, ValidationError
from app.models.match import MatchStatus
from app.schemas.match import MatchUpdate
from app.services import match_service
from conftest import headers_for, match_payload


@pytest.mark.asyncio
async def test_create_match(client: AsyncClient, organizer, organizer_headers):
    response = await client.post("/api/v1/matches/", json=match_payload(), headers=organizer_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["team_id"] == "TEAM-A"
    assert data["organizer_id"] == organizer.id
    assert data["status"] == "ACTIVE"
    assert data["booked_spots"] == []
    assert data["available_spots"] == 10
    assert Decimal(data["final_price_per_spot"]) == Decimal("10.91")
    assert "hashed_password" not in data


@pytest.mark.asyncio
async def test_create_match_unauthenticated(client: AsyncClient):
    response = await client.post("/api/v1/matches/", json=match_payload())
    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "error": "unauthorized",
        "message": "Not authenticated",
    }


@pytest.mark.asyncio
async def test_create_match_with_bad_token(client: AsyncClient):
    response = await client.post(
        "/api/v1/matches/", json=match_payload(), headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid or expired token"


@pytest.mark.asyncio
async def test_create_match_in_the_past(client: AsyncClient, organizer_headers):
    response = await client.post(
        "/api/v1/matches/",
        json=match_payload(match_date="2020-01-01T18:00:00+00:00"),
        headers=organizer_headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_duplicate_team_id(client: AsyncClient, organizer_headers):
    first = await client.post("/api/v1/matches/", json=match_payload(), headers=organizer_headers)
    assert first.status_code == 201

    second = await client.post("/api/v1/matches/", json=match_payload(), headers=organizer_headers)
    assert second.status_code == 409
    assert second.json()["error"] == "conflict"


@pytest.mark.asyncio
async def test_fourth_active_match_refused(client: AsyncClient, organizer_headers):
    for i in range(3):
        response = await client.post(
            "/api/v1/matches/", json=match_payload(team_id=f"TEAM-{i}"), headers=organizer_headers
        )
        assert response.status_code == 201

    response = await client.post(
        "/api/v1/matches/", json=match_payload(team_id="TEAM-4"), headers=organizer_headers
    )
    assert response.status_code == 400
    assert "at most 3" in response.json()["message"]


@pytest.mark.asyncio
async def test_invalid_spots_rejected_by_schema(client: AsyncClient, organizer_headers):
    response = await client.post(
        "/api/v1/matches/", json=match_payload(spots=0), headers=organizer_headers
    )
    assert response.status_code == 422
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_list_and_get_matches(client: AsyncClient, make_match, organizer_headers):
    first = await make_match(team_id="TEAM-A")
    await make_match(team_id="TEAM-B")

    response = await client.get("/api/v1/matches/")
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["cached"] is False
    assert {m["team_id"] for m in data["matches"]} == {"TEAM-A", "TEAM-B"}

    detail = await client.get(f"/api/v1/matches/{first.id}")
    assert detail.status_code == 200
    assert detail.json()["team_id"] == "TEAM-A"

    mine = await client.get("/api/v1/matches/mine", headers=organizer_headers)
    assert mine.status_code == 200
    assert len(mine.json()) == 2


@pytest.mark.asyncio
async def test_get_missing_match(client: AsyncClient):
    response = await client.get("/api/v1/matches/999")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_update_match_reprices(client: AsyncClient, match, organizer_headers):
    response = await client.patch(
        f"/api/v1/matches/{match.id}",
        json={"spots": 20, "pitch_name": "Regent's Park"},
        headers=organizer_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["spots"] == 20
    assert data["pitch_name"] == "Regent's Park"
    assert Decimal(data["base_price_per_spot"]) == Decimal("5.00")


@pytest.mark.asyncio
async def test_update_match_by_non_organizer(client: AsyncClient, match, player_headers):
    response = await client.patch(
        f"/api/v1/matches/{match.id}", json={"pitch_name": "Elsewhere"}, headers=player_headers
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_update_cannot_drop_below_claimed_spot(db_session, match, organizer):
    await match_service.reserve_spots(db_session, match.id, [8])

    with pytest.raises(ValidationError):
        await match_service.update_match(db_session, match.id, organizer.id, MatchUpdate(spots=5))


@pytest.mark.asyncio
async def test_update_cannot_reprice_after_payment(db_session, make_match, organizer, player, pay):
    match = await make_match(spots=2)
    await pay(player, match, [1])

    with pytest.raises(ValidationError):
        await match_service.update_match(db_session, match.id, organizer.id, MatchUpdate(spots=3))
    with pytest.raises(ValidationError):
        await match_service.update_match(
            db_session, match.id, organizer.id, MatchUpdate(total_amount=Decimal("150.00"))
        )

    current = await match_service.get_match(db_session, match.id)
    assert current.spots == 2
    assert current.final_price_per_spot == Decimal("53.69")


@pytest.mark.asyncio
async def test_update_with_unchanged_pricing_after_reservation(db_session, match, organizer):
    await match_service.reserve_spots(db_session, match.id, [2])

    updated = await match_service.update_match(
        db_session, match.id, organizer.id, MatchUpdate(spots=10, pitch_name="Clapham Common")
    )
    assert updated.pitch_name == "Clapham Common"
    assert updated.spots == 10


@pytest.mark.asyncio
async def test_reprice_rejected_over_api_once_reserved(
    client: AsyncClient, db_session, match, player, organizer_headers
):
    await match_service.reserve_spots(db_session, match.id, [3], user_id=player.id)
    await db_session.commit()

    response = await client.patch(
        f"/api/v1/matches/{match.id}",
        json={"total_amount": "120.00"},
        headers=organizer_headers,
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Spots and price cannot change once spots are reserved or paid"


@pytest.mark.asyncio
async def test_cancel_match(client: AsyncClient, match, organizer_headers):
    response = await client.post(f"/api/v1/matches/{match.id}/cancel", headers=organizer_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"

    again = await client.post(f"/api/v1/matches/{match.id}/cancel", headers=organizer_headers)
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_cancel_match_with_reserved_spots(client: AsyncClient, db_session, match, organizer_headers):
    await match_service.reserve_spots(db_session, match.id, [1])
    await db_session.commit()

    response = await client.post(f"/api/v1/matches/{match.id}/cancel", headers=organizer_headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_cancel_match_by_other_user(client: AsyncClient, match, player):
    response = await client.post(f"/api/v1/matches/{match.id}/cancel", headers=headers_for(player))
    assert response.status_code == 404
    assert response.json()["message"] == "Match not found or unauthorized"


# --- Spot inventory ---


@pytest.mark.asyncio
async def test_reserve_disjoint_spots(db_session, match):
    start_version = match.version
    await match_service.reserve_spots(db_session, match.id, [1, 2])
    updated = await match_service.reserve_spots(db_session, match.id, [3, 4])

    assert updated.booked_spots == [1, 2, 3, 4]
    assert updated.version == start_version + 2
    # Reservation does not count as paid
    assert updated.spots_booked == 0


@pytest.mark.asyncio
async def test_reserve_overlapping_spots_conflicts(db_session, match):
    await match_service.reserve_spots(db_session, match.id, [1, 2])

    with pytest.raises(SpotConflict) as exc:
        await match_service.reserve_spots(db_session, match.id, [2, 3])
    assert exc.value.spots == [2]

    current = await match_service.get_match(db_session, match.id)
    assert current.booked_spots == [1, 2]


@pytest.mark.asyncio
async def test_reserve_from_blacklisted_user(db_session, match, player):
    await match_service.blacklist_user(db_session, match.id, player.id)
    with pytest.raises(Forbidden):
        await match_service.reserve_spots(db_session, match.id, [1], user_id=player.id)


@pytest.mark.asyncio
async def test_compare_and_set_rejects_stale_version(db_session, match):
    assert await match_service._compare_and_set(db_session, match.id, match.version, booked_spots=[5])
    assert not await match_service._compare_and_set(db_session, match.id, match.version, booked_spots=[6])

    current = await match_service.get_match(db_session, match.id)
    assert current.booked_spots == [5]


@pytest.mark.asyncio
async def test_reserve_retries_after_losing_version_race(db_session, match, monkeypatch):
    """A concurrent writer claims spot 9 between our read and our write."""
    real_cas = match_service._compare_and_set
    calls = {"n": 0}

    async def racing_cas(db, match_id, expected_version, **values):
        calls["n"] += 1
        if calls["n"] == 1:
            await real_cas(db, match_id, expected_version, booked_spots=[9])
        return await real_cas(db, match_id, expected_version, **values)

    monkeypatch.setattr(match_service, "_compare_and_set", racing_cas)

    updated = await match_service.reserve_spots(db_session, match.id, [1])
    assert calls["n"] == 2
    assert updated.booked_spots == [1, 9]


@pytest.mark.asyncio
async def test_reserve_retry_sees_winners_overlap(db_session, match, monkeypatch):
    """The retry re-checks overlap against the spots the winner took."""
    real_cas = match_service._compare_and_set
    calls = {"n": 0}

    async def racing_cas(db, match_id, expected_version, **values):
        calls["n"] += 1
        if calls["n"] == 1:
            await real_cas(db, match_id, expected_version, booked_spots=[1])
        return await real_cas(db, match_id, expected_version, **values)

    monkeypatch.setattr(match_service, "_compare_and_set", racing_cas)

    with pytest.raises(SpotConflict):
        await match_service.reserve_spots(db_session, match.id, [1])


@pytest.mark.asyncio
async def test_release_spots_ignores_unclaimed(db_session, match):
    await match_service.reserve_spots(db_session, match.id, [1, 2, 3])
    updated = await match_service.release_spots(db_session, match.id, [2, 7])
    assert updated.booked_spots == [1, 3]
    version = updated.version

    unchanged = await match_service.release_spots(db_session, match.id, [7])
    assert unchanged.version == version


@pytest.mark.asyncio
async def test_confirm_spots_paid_promotes_and_guards_capacity(db_session, make_match):
    match = await make_match(spots=2)

    updated = await match_service.confirm_spots_paid(db_session, match.id, 2)
    assert updated.spots_booked == 2
    assert updated.status == MatchStatus.FULLY_BOOKED.value

    with pytest.raises(Overbooking):
        await match_service.confirm_spots_paid(db_session, match.id, 1)


@pytest.mark.asyncio
async def test_mark_paid_up_happens_once(db_session, match):
    assert await match_service.mark_paid_up(db_session, match.id) is True
    assert await match_service.mark_paid_up(db_session, match.id) is False

    current = await match_service.get_match(db_session, match.id)
    assert current.status == MatchStatus.PAID_UP.value
