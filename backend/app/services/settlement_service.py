"""
Settlement processor: applying gateway webhook events.

Gateways deliver at least once, in any order, and sometimes concurrently.
Every handler is therefore idempotent and every payment status change is a
conditional UPDATE on the status the handler read, so duplicate deliveries
race to a single winner.

A successful payment is settled in one transaction: payment status, spot
reclaim (if the spots had been released), booking, paid counter and the
PAID_UP transition either all commit or none do. Auto-payout runs after that
commit and can fail without undoing the settlement.
"""

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import Conflict, DomainError, NotFound, Overbooking, SpotConflict
from app.core.logging import get_logger
from app.core.metrics import record_webhook_event
from app.models.booking import Booking, BookingStatus
from app.models.match import MatchStatus
from app.models.payment import Payment, PaymentStatus
from app.services import match_service, payout_service
from app.services.interfaces.payment_gateway import (
    GatewayEvent,
    IntentCanceled,
    IntentFailed,
    IntentSucceeded,
    PaymentGateway,
)
from app.services.pricing import to_money
from app.services.reservation_service import load_payment, transition_payment

logger = get_logger(__name__)

FINAL_STATUSES = (PaymentStatus.SUCCESS.value, PaymentStatus.REFUNDED.value)
RELEASED_STATUSES = (PaymentStatus.FAILED.value, PaymentStatus.CANCELED.value)

EVENT_KINDS = {
    IntentSucceeded: "succeeded",
    IntentFailed: "failed",
    IntentCanceled: "canceled",
}


async def _find_payment(db: AsyncSession, payment_id, intent_id: str) -> Payment:
    payment = None
    if payment_id is not None:
        payment = await load_payment(db, payment_id, for_update=True)
    if payment is None and intent_id:
        result = await db.execute(
            select(Payment)
            .where(Payment.gateway_intent_id == intent_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()
    if payment is None:
        raise NotFound(f"Payment not found for intent {intent_id}")
    return payment


async def handle_event(db: AsyncSession, gateway: PaymentGateway, event: GatewayEvent) -> dict:
    """Dispatch a verified gateway event. Unknown event types are acknowledged."""
    if not isinstance(event, (IntentSucceeded, IntentFailed, IntentCanceled)):
        logger.info("webhook_event_unhandled", event_id=event.event_id, event_type=event.event_type)
        record_webhook_event(event.event_type or "unknown", "ignored")
        return {"success": True, "message": f"Unhandled event type {event.event_type}"}

    kind = EVENT_KINDS[type(event)]
    try:
        if isinstance(event, IntentSucceeded):
            result = await settle_success(db, gateway, event)
        elif isinstance(event, IntentFailed):
            result = await settle_failure(db, event)
        else:
            result = await settle_cancellation(db, event)
    except DomainError as e:
        record_webhook_event(kind, "error")
        logger.error("webhook_event_failed", event_id=event.event_id, kind=kind, error=e.message)
        raise

    record_webhook_event(kind, result.pop("outcome", "applied"))
    return result


async def settle_success(db: AsyncSession, gateway: PaymentGateway, event: IntentSucceeded) -> dict:
    """
    Mark the payment SUCCESS and confirm its spots.

    Raises:
        NotFound: no payment for the event
        Overbooking: spots were taken while the payment was released, the
            match closed meanwhile, or it has no paid capacity left; nothing
            is committed
    """
    try:
        payment = await _find_payment(db, event.payment_id, event.intent_id)
        if payment.status in FINAL_STATUSES:
            logger.info("payment_already_settled", payment_id=payment.id, status=payment.status)
            await db.commit()
            return {"success": True, "message": "Payment already processed", "outcome": "duplicate"}

        prior_status = payment.status
        moved = await transition_payment(
            db,
            payment.id,
            prior_status,
            PaymentStatus.SUCCESS.value,
            gateway_charge_id=event.charge_id,
            failure_reason=None,
        )
        if not moved:
            raise Conflict(f"Payment {payment.id} changed concurrently")

        spots = list(payment.spot_booked or [])
        if prior_status in RELEASED_STATUSES:
            # Late success after the spots went back to the pool
            match = await match_service.get_match(db, payment.match_id)
            if match.status not in match_service.OPEN_STATUSES:
                logger.error(
                    "late_success_match_closed",
                    payment_id=payment.id,
                    match_id=match.id,
                    match_status=match.status,
                )
                raise Overbooking(f"Match {match.id} is {match.status} and cannot take payment {payment.id}")
            try:
                await match_service.reserve_spots(db, payment.match_id, spots)
            except SpotConflict as e:
                logger.error(
                    "late_success_spots_taken",
                    payment_id=payment.id,
                    match_id=payment.match_id,
                    spots=e.spots,
                )
                raise Overbooking(f"Spots {e.spots} were re-sold before payment {payment.id} succeeded")

        match = await match_service.get_match(db, payment.match_id)
        if match.spots_booked + len(spots) > match.spots:
            raise Overbooking(f"Match {match.id} has no paid capacity left for payment {payment.id}")

        booking = (
            await db.execute(
                select(Booking)
                .where(Booking.id == payment.booking_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        booking.amount_paid = to_money(Decimal(booking.amount_paid or 0) + payment.amount)
        booking.spot_booked = sorted(set(booking.spot_booked or []) | set(spots))
        booking.status = BookingStatus.CONFIRMED.value
        await db.flush()

        match = await match_service.confirm_spots_paid(db, match.id, len(spots))

        collected = await payout_service.total_collected(db, match.id)
        paid_up = False
        if collected >= payout_service.expected_collection(match):
            paid_up = await match_service.mark_paid_up(db, match.id)

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "payment_settled",
        payment_id=payment.id,
        match_id=match.id,
        spots=spots,
        prior_status=prior_status,
        paid_up=paid_up,
    )

    result = {"success": True, "message": "Payment processed successfully", "outcome": "applied"}
    if paid_up:
        result["message"] = await _auto_payout(db, gateway, match.id) or result["message"]
    return result


async def _auto_payout(db: AsyncSession, gateway: PaymentGateway, match_id: int):
    match = await match_service.get_match(db, match_id)
    if not match.auto_payout or match.status != MatchStatus.PAID_UP.value or match.payout_initiated:
        return None

    try:
        payout = await payout_service.initiate_payout(db, gateway, match_id)
    except DomainError as e:
        # Settlement stands; the organizer can retry the payout manually
        logger.error("auto_payout_failed", match_id=match_id, error=e.message)
        return f"Payment processed; auto payout failed: {e.message}"

    logger.info("auto_payout_completed", match_id=match_id, payout_ref=payout["payout_id"])
    return "Payment processed and payout completed"


async def settle_failure(db: AsyncSession, event: IntentFailed) -> dict:
    """PENDING -> FAILED and release the spots. Never overrides SUCCESS."""
    try:
        payment = await _find_payment(db, event.payment_id, event.intent_id)
        if payment.status == PaymentStatus.SUCCESS.value:
            logger.warning("failure_after_success_ignored", payment_id=payment.id)
            await db.commit()
            return {"success": True, "message": "Payment already succeeded", "outcome": "ignored"}
        if payment.status != PaymentStatus.PENDING.value:
            await db.commit()
            return {"success": True, "message": "Payment already processed", "outcome": "duplicate"}

        moved = await transition_payment(
            db,
            payment.id,
            PaymentStatus.PENDING.value,
            PaymentStatus.FAILED.value,
            failure_reason=event.reason,
        )
        if moved:
            await match_service.release_spots(db, payment.match_id, payment.spot_booked or [])
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if not moved:
        return {"success": True, "message": "Payment already processed", "outcome": "duplicate"}

    logger.info("payment_failed", payment_id=payment.id, reason=event.reason, spots=payment.spot_booked)
    return {"success": True, "message": "Payment failure recorded", "outcome": "applied"}


async def settle_cancellation(db: AsyncSession, event: IntentCanceled) -> dict:
    """PENDING -> CANCELED and release the spots."""
    try:
        payment = await _find_payment(db, event.payment_id, event.intent_id)
        moved = False
        if payment.status == PaymentStatus.PENDING.value:
            moved = await transition_payment(
                db,
                payment.id,
                PaymentStatus.PENDING.value,
                PaymentStatus.CANCELED.value,
                failure_reason="Canceled by payment provider",
            )
            if moved:
                await match_service.release_spots(db, payment.match_id, payment.spot_booked or [])
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if not moved:
        return {"success": True, "message": "Payment already processed", "outcome": "duplicate"}

    logger.info("payment_canceled_by_gateway", payment_id=payment.id, spots=payment.spot_booked)
    return {"success": True, "message": "Payment cancellation recorded", "outcome": "applied"}
