"""
Tests for the payout orchestrator and the organizer finance endpoints.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select, update

from app.core.exceptions import (
    AlreadyProcessed,
    Discrepancy,
    GatewayError,
    NotConfigured,
    PayoutInProgress,
    ValidationError,
)
from app.models.match import Match, MatchStatus, PayoutHistory
from app.models.payment import Payment, PaymentStatus
from app.schemas.match import MatchUpdate
from app.services import match_service, payout_service
from app.services.booking_service import get_booking
from conftest import headers_for


async def history_statuses(db, match_id: int) -> list[str]:
    result = await db.execute(
        select(PayoutHistory.status)
        .where(PayoutHistory.match_id == match_id)
        .order_by(PayoutHistory.id.asc())
    )
    return list(result.scalars().all())


async def paid_up_match(make_match, pay, player, other_player):
    """Two-spot match, 100.00 total, both spots paid."""
    match = await make_match(spots=2, stripe_account_id="acct_org")
    await pay(player, match, [1])
    await pay(other_player, match, [2])
    return match


@pytest.mark.asyncio
async def test_payout_transfers_base_price_once(db_session, gateway, make_match, pay, player, other_player):
    match = await paid_up_match(make_match, pay, player, other_player)

    result = await payout_service.initiate_payout(db_session, gateway, match.id)
    assert result["success"] is True
    assert result["amount"] == Decimal("100.00")

    transfer = gateway.transfers[f"payout_{match.id}"]
    assert transfer["id"] == result["payout_id"]
    assert transfer["destination"] == "acct_org"
    assert transfer["currency"] == "gbp"
    assert transfer["metadata"]["total_collected"] == "107.38"

    current = await match_service.get_match(db_session, match.id)
    assert current.status == MatchStatus.COMPLETED.value
    assert current.payout_ref == result["payout_id"]
    assert current.payout_amount == Decimal("100.00")
    assert current.platform_fee == Decimal("5.36")
    assert current.payout_initiated is False
    assert current.payout_date is not None
    assert await history_statuses(db_session, match.id) == ["INITIATED", "SUCCESS"]

    with pytest.raises(AlreadyProcessed):
        await payout_service.initiate_payout(db_session, gateway, match.id)
    assert gateway.transfer_calls == 1


@pytest.mark.asyncio
async def test_refused_reprice_keeps_payout_reconcilable(
    db_session, gateway, make_match, pay, organizer, player, other_player
):
    match = await make_match(spots=2, stripe_account_id="acct_org")
    match_id, organizer_id = match.id, organizer.id
    await pay(player, match, [1])

    with pytest.raises(ValidationError):
        await match_service.update_match(db_session, match_id, organizer_id, MatchUpdate(spots=3))

    await pay(other_player, match, [2])
    result = await payout_service.initiate_payout(db_session, gateway, match_id)
    assert result["success"] is True
    assert result["amount"] == Decimal("100.00")
    assert await history_statuses(db_session, match_id) == ["INITIATED", "SUCCESS"]


@pytest.mark.asyncio
async def test_payout_without_account(db_session, gateway, make_match, pay, player):
    match = await make_match(spots=1)
    await pay(player, match, [1])

    with pytest.raises(NotConfigured):
        await payout_service.initiate_payout(db_session, gateway, match.id)
    assert gateway.transfer_calls == 0


@pytest.mark.asyncio
async def test_payout_when_flag_already_raised(db_session, gateway, make_match):
    match = await make_match(spots=2, stripe_account_id="acct_org")
    await db_session.execute(update(Match).where(Match.id == match.id).values(payout_initiated=True))
    await db_session.commit()

    with pytest.raises(AlreadyProcessed):
        await payout_service.initiate_payout(db_session, gateway, match.id)
    assert gateway.transfer_calls == 0


@pytest.mark.asyncio
async def test_payout_loses_flag_race(db_session, gateway, make_match, monkeypatch):
    """Another worker raises the flag between our guard check and our lock."""
    match = await make_match(spots=2, stripe_account_id="acct_org")
    match_id = match.id
    real_get_match = match_service.get_match

    async def get_then_race(db, mid):
        found = await real_get_match(db, mid)
        await db.execute(
            update(Match)
            .where(Match.id == mid)
            .values(payout_initiated=True)
            .execution_options(synchronize_session=False)
        )
        return found

    monkeypatch.setattr(match_service, "get_match", get_then_race)

    with pytest.raises(PayoutInProgress):
        await payout_service.initiate_payout(db_session, gateway, match_id)
    assert gateway.transfer_calls == 0


@pytest.mark.asyncio
async def test_payout_discrepancy_clears_flag(db_session, gateway, make_match, pay, player):
    match = await make_match(spots=2, stripe_account_id="acct_org")
    await pay(player, match, [1])

    with pytest.raises(Discrepancy) as exc:
        await payout_service.initiate_payout(db_session, gateway, match.id)
    assert exc.value.message == "Payment discrepancy: expected 107.38, collected 53.69"

    current = await match_service.get_match(db_session, match.id)
    assert current.payout_initiated is False
    assert current.payout_ref is None
    assert await history_statuses(db_session, match.id) == ["INITIATED", "DISCREPANCY"]
    assert gateway.transfer_calls == 0


async def add_success_payment(db, match, user, amount: str, ref: str) -> None:
    booking = await get_booking(db, match.id, user.id)
    db.add(
        Payment(
            booking_id=booking.id,
            match_id=match.id,
            user_id=user.id,
            amount=Decimal(amount),
            status=PaymentStatus.SUCCESS.value,
            transaction_ref=ref,
            spot_booked=[],
        )
    )
    await db.commit()


@pytest.mark.asyncio
async def test_payout_tolerates_a_penny(db_session, gateway, make_match, pay, player, other_player):
    match = await paid_up_match(make_match, pay, player, other_player)
    await add_success_payment(db_session, match, player, "0.01", "TXN_ROUNDING")

    result = await payout_service.initiate_payout(db_session, gateway, match.id)
    assert result["success"] is True


@pytest.mark.asyncio
async def test_payout_rejects_two_pence_over(db_session, gateway, make_match, pay, player, other_player):
    match = await paid_up_match(make_match, pay, player, other_player)
    await add_success_payment(db_session, match, player, "0.02", "TXN_EXTRA")

    with pytest.raises(Discrepancy):
        await payout_service.initiate_payout(db_session, gateway, match.id)


@pytest.mark.asyncio
async def test_payout_gateway_failure_is_retryable(db_session, gateway, make_match, pay, player, other_player):
    match = await paid_up_match(make_match, pay, player, other_player)
    gateway.fail_transfers = True

    with pytest.raises(GatewayError):
        await payout_service.initiate_payout(db_session, gateway, match.id)

    current = await match_service.get_match(db_session, match.id)
    assert current.payout_initiated is False
    assert current.status == MatchStatus.PAID_UP.value
    assert await history_statuses(db_session, match.id) == ["INITIATED", "FAILED"]

    gateway.fail_transfers = False
    result = await payout_service.initiate_payout(db_session, gateway, match.id)
    assert result["success"] is True
    assert gateway.transfer_calls == 2


# --- API ---


@pytest.mark.asyncio
async def test_admin_payout_endpoint(client: AsyncClient, make_match, pay, player, other_player, organizer_headers):
    match = await paid_up_match(make_match, pay, player, other_player)

    response = await client.post(f"/api/v1/payments/matches/{match.id}/payout", headers=organizer_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Payout completed"
    assert Decimal(data["amount"]) == Decimal("100.00")

    again = await client.post(f"/api/v1/payments/matches/{match.id}/payout", headers=organizer_headers)
    assert again.status_code == 409
    assert again.json()["error"] == "already_processed"


@pytest.mark.asyncio
async def test_admin_payout_by_non_organizer(client: AsyncClient, match, player):
    response = await client.post(
        f"/api/v1/payments/matches/{match.id}/payout", headers=headers_for(player)
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_setup_payout_account(client: AsyncClient, db_session, gateway, match, organizer, organizer_headers):
    response = await client.post(
        f"/api/v1/payments/matches/{match.id}/payout-account", headers=organizer_headers
    )
    assert response.status_code == 200
    data = response.json()
    account_id = data["stripe_account_id"]
    assert data["onboarding_url"].endswith(account_id)
    assert gateway.accounts[0]["email"] == organizer.email

    current = await match_service.get_match(db_session, match.id)
    assert current.stripe_account_id == account_id
    assert current.connected_at is not None

    # A second call reuses the account and only issues a new link
    again = await client.post(
        f"/api/v1/payments/matches/{match.id}/payout-account", headers=organizer_headers
    )
    assert again.json()["stripe_account_id"] == account_id
    assert len(gateway.accounts) == 1


@pytest.mark.asyncio
async def test_match_finances(client: AsyncClient, match, player, pay, organizer_headers):
    await pay(player, match, [1, 2])

    response = await client.get(f"/api/v1/payments/matches/{match.id}/finances", headers=organizer_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total_spots"] == 10
    assert data["spots_booked"] == 2
    assert Decimal(data["total_expected"]) == Decimal("109.10")
    assert Decimal(data["total_collected"]) == Decimal("21.82")
    assert Decimal(data["platform_fee"]) == Decimal("1.10")
    assert Decimal(data["expected_payout"]) == Decimal("100.00")
    assert data["payout_status"] == "NOT_STARTED"
    assert len(data["payments"]) == 1
    assert data["payments"][0]["status"] == "SUCCESS"


@pytest.mark.asyncio
async def test_match_finances_hidden_from_players(client: AsyncClient, match, player_headers):
    response = await client.get(f"/api/v1/payments/matches/{match.id}/finances", headers=player_headers)
    assert response.status_code == 404
