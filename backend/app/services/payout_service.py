"""
Payout orchestrator: paying the organizer once a match is settled.

A payout runs at most once per match:

  1. Guard: destination configured, no payout_ref, flag not raised.
  2. Compare-and-set payout_initiated False -> True and write an INITIATED
     history row, committed before any money moves. The loser of a race
     sees PayoutInProgress.
  3. Reconcile collected SUCCESS payments against spots x final price.
  4. Transfer base price x spots with idempotency key payout_{match_id}, so a
     repeated transfer request is collapsed by the gateway.
  5. Record the outcome and clear the flag.

A discrepancy or a failed transfer clears the flag, so the payout can be
retried once the cause is fixed.
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import (
    AlreadyProcessed,
    Discrepancy,
    GatewayError,
    NotConfigured,
    PayoutInProgress,
)
from app.core.logging import get_logger
from app.core.metrics import record_payout
from app.models.match import Match, MatchStatus, PayoutHistory, PayoutHistoryStatus
from app.models.payment import Payment, PaymentStatus
from app.models.user import User
from app.services import match_service
from app.services.interfaces.payment_gateway import PaymentGateway
from app.services.pricing import to_money

logger = get_logger(__name__)


async def total_collected(db: AsyncSession, match_id: int) -> Decimal:
    """Sum of SUCCESS payment amounts for a match."""
    result = await db.execute(
        select(func.sum(Payment.amount)).where(
            Payment.match_id == match_id,
            Payment.status == PaymentStatus.SUCCESS.value,
        )
    )
    return to_money(result.scalar() or 0)


def expected_collection(match: Match) -> Decimal:
    return to_money(match.final_price_per_spot * match.spots)


async def _release_payout_lock(db: AsyncSession, match_id: int) -> None:
    await db.execute(
        update(Match)
        .where(Match.id == match_id)
        .values(payout_initiated=False)
        .execution_options(synchronize_session=False)
    )


def _history(match_id: int, status: PayoutHistoryStatus, message: str, payout_ref=None) -> PayoutHistory:
    return PayoutHistory(
        match_id=match_id,
        status=status.value,
        message=message,
        payout_ref=payout_ref,
    )


async def initiate_payout(db: AsyncSession, gateway: PaymentGateway, match_id: int) -> dict:
    """
    Transfer the organizer's share for a match.

    Returns:
        {"success", "message", "payout_id", "amount"}

    Raises:
        NotConfigured: no connected payout account on the match
        AlreadyProcessed: payout already completed or flagged
        PayoutInProgress: lost the race to raise the payout flag
        Discrepancy: collected total does not match the expected total
        GatewayError: transfer failed; the match can be retried
    """
    settings = get_settings()
    match = await match_service.get_match(db, match_id)

    if not match.stripe_account_id:
        record_payout("rejected")
        raise NotConfigured("Payout account not set up for this match")
    if match.payout_ref or match.payout_initiated:
        record_payout("rejected")
        raise AlreadyProcessed("Payout already processed for this match")

    locked = await db.execute(
        update(Match)
        .where(
            Match.id == match_id,
            Match.payout_initiated.is_(False),
            Match.payout_ref.is_(None),
        )
        .values(payout_initiated=True)
        .execution_options(synchronize_session=False)
    )
    if locked.rowcount != 1:
        await db.rollback()
        record_payout("rejected")
        raise PayoutInProgress("Payout already in progress for this match")

    db.add(_history(match_id, PayoutHistoryStatus.INITIATED, "Payout initiated"))
    await db.commit()
    logger.info("payout_initiated", match_id=match_id)

    collected = await total_collected(db, match_id)
    expected = expected_collection(match)
    epsilon = Decimal(str(settings.PAYOUT_EPSILON))

    if abs(collected - expected) > epsilon:
        message = f"Payment discrepancy: expected {expected}, collected {collected}"
        await _release_payout_lock(db, match_id)
        db.add(_history(match_id, PayoutHistoryStatus.DISCREPANCY, message))
        await db.commit()
        record_payout("discrepancy")
        logger.error(
            "payout_discrepancy",
            match_id=match_id,
            expected=str(expected),
            collected=str(collected),
        )
        raise Discrepancy(message)

    payout_amount = to_money(match.base_price_per_spot * match.spots)
    platform_fee = to_money(match.platform_fee_per_spot * match.spots)

    try:
        transfer_id = await gateway.create_transfer(
            amount=payout_amount,
            currency=settings.CURRENCY,
            destination=match.stripe_account_id,
            idempotency_key=f"payout_{match_id}",
            metadata={
                "match_id": match_id,
                "team_id": match.team_id,
                "platform_fee": str(platform_fee),
                "total_collected": str(collected),
            },
        )
    except GatewayError as e:
        await _release_payout_lock(db, match_id)
        db.add(_history(match_id, PayoutHistoryStatus.FAILED, e.message))
        await db.commit()
        record_payout("gateway_error")
        logger.error("payout_failed", match_id=match_id, error=e.message)
        raise

    await db.execute(
        update(Match)
        .where(Match.id == match_id)
        .values(
            status=MatchStatus.COMPLETED.value,
            payout_initiated=False,
            payout_ref=transfer_id,
            payout_amount=payout_amount,
            platform_fee=platform_fee,
            payout_date=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    db.add(
        _history(
            match_id,
            PayoutHistoryStatus.SUCCESS,
            f"Transferred {payout_amount} to organizer",
            payout_ref=transfer_id,
        )
    )
    await db.commit()

    record_payout("success")
    logger.info(
        "payout_completed",
        match_id=match_id,
        payout_ref=transfer_id,
        amount=str(payout_amount),
        platform_fee=str(platform_fee),
    )
    return {
        "success": True,
        "message": "Payout completed",
        "payout_id": transfer_id,
        "amount": payout_amount,
    }


async def admin_payout(
    db: AsyncSession,
    gateway: PaymentGateway,
    organizer_id: int,
    match_id: int,
) -> dict:
    """Organizer-triggered payout."""
    await match_service.get_organizer_match(db, match_id, organizer_id)
    return await initiate_payout(db, gateway, match_id)


async def setup_payout_account(
    db: AsyncSession,
    gateway: PaymentGateway,
    organizer_id: int,
    match_id: int,
) -> dict:
    """
    Create (or reuse) the organizer's connected account for a match and
    return a fresh onboarding link for it.
    """
    match = await match_service.get_organizer_match(db, match_id, organizer_id)
    organizer = await db.get(User, organizer_id)

    account_id = match.stripe_account_id
    if not account_id:
        account_id = await gateway.create_connected_account(
            email=organizer.email,
            metadata={
                "match_id": match.id,
                "team_id": match.team_id,
                "organizer_id": organizer_id,
            },
        )
        await db.execute(
            update(Match)
            .where(Match.id == match.id)
            .values(stripe_account_id=account_id, connected_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.info("payout_account_created", match_id=match.id, account_id=account_id)

    onboarding_url = await gateway.create_onboarding_link(account_id)
    return {"stripe_account_id": account_id, "onboarding_url": onboarding_url}


def _payout_status(match: Match) -> str:
    if match.payout_ref:
        return "COMPLETED"
    if match.payout_initiated:
        return "IN_PROGRESS"
    return "NOT_STARTED"


async def get_match_finances(db: AsyncSession, organizer_id: int, match_id: int) -> dict:
    """Collected totals, fees, payout state and the payment list for a match."""
    match = await match_service.get_organizer_match(db, match_id, organizer_id)

    payments = (
        await db.execute(
            select(Payment)
            .where(Payment.match_id == match_id)
            .order_by(Payment.created_at.desc())
        )
    ).scalars().all()
    history = (
        await db.execute(
            select(PayoutHistory)
            .where(PayoutHistory.match_id == match_id)
            .order_by(PayoutHistory.id.asc())
        )
    ).scalars().all()

    collected = await total_collected(db, match_id)
    return {
        "total_spots": match.spots,
        "spots_booked": match.spots_booked,
        "final_price_per_spot": match.final_price_per_spot,
        "total_expected": expected_collection(match),
        "total_collected": collected,
        "platform_fee": to_money(match.platform_fee_per_spot * match.spots_booked),
        "expected_payout": to_money(match.base_price_per_spot * match.spots),
        "payout_status": _payout_status(match),
        "payout_ref": match.payout_ref,
        "payout_history": list(history),
        "payments": list(payments),
    }
