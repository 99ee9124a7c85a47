"""
Reservation coordinator: turning a spot request into a gateway payment.

PROTOCOL
========

  1. Gatekeeping: match exists, user not blacklisted, match ACTIVE, access
     password, team id, spot numbers within 1..spots.
  2. Get or create the user's booking. Spots the user already paid for are
     refused here, before any other user's payment is touched.
  3. Stale-reservation sweep: PENDING payments for this match older than
     STALE_RESERVATION_MINUTES are checked against the gateway. Anything the
     gateway has not captured is canceled upstream, marked CANCELED here, and
     its spots are released. Abandoned checkouts cannot hold spots forever.
  4. Remaining capacity check.
  5. match_service.reserve_spots (compare-and-set) and the PENDING Payment
     row, committed in one transaction.
  6. The gateway payment intent.

Once step 5 commits, later failures do not undo the reservation here. The
spots come back through the staleness sweep, a manual cancel, or the
gateway's failed/canceled webhook.
"""

import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import (
    Conflict,
    DomainError,
    Forbidden,
    GatewayError,
    NotFound,
    SpotConflict,
    SpotsUnavailable,
    ValidationError,
)
from app.core.logging import get_logger
from app.core.metrics import record_reservation_attempt, reservation_latency, stale_payments_swept
from app.models.payment import Payment, PaymentStatus
from app.services import booking_service, match_service
from app.services.interfaces.payment_gateway import (
    CANCELABLE_INTENT_STATES,
    SETTLING_INTENT_STATES,
    PaymentGateway,
)
from app.services.pricing import to_money

logger = get_logger(__name__)


async def load_payment(db: AsyncSession, payment_id: int, for_update: bool = False):
    query = select(Payment).where(Payment.id == payment_id).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def transition_payment(
    db: AsyncSession,
    payment_id: int,
    from_status: str,
    to_status: str,
    **values,
) -> bool:
    """
    Conditional status change: only applies while the row is still in
    `from_status`. Returns False if another writer moved it first.
    """
    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == from_status)
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _validate_spot_numbers(spot_numbers: list[int], spots: int) -> list[int]:
    if not spot_numbers:
        raise ValidationError("At least one spot must be selected")
    if len(set(spot_numbers)) != len(spot_numbers):
        raise ValidationError("Duplicate spot numbers in request")
    out_of_range = [n for n in spot_numbers if n < 1 or n > spots]
    if out_of_range:
        raise ValidationError(f"Spot numbers must be between 1 and {spots}")
    return sorted(spot_numbers)


async def sweep_stale_reservations(db: AsyncSession, gateway: PaymentGateway, match_id: int) -> list[int]:
    """
    Cancel abandoned PENDING payments for a match and release their spots.

    Returns the released spot numbers. A gateway error on one payment is
    logged and that payment is left for the next sweep.
    """
    settings = get_settings()
    window = settings.STALE_RESERVATION_MINUTES
    threshold = datetime.now(timezone.utc) - timedelta(minutes=window)

    result = await db.execute(
        select(Payment).where(
            Payment.match_id == match_id,
            Payment.status == PaymentStatus.PENDING.value,
            Payment.created_at < threshold,
        )
    )
    stale_payments = list(result.scalars().all())
    if not stale_payments:
        return []

    logger.info("stale_payments_found", match_id=match_id, count=len(stale_payments))

    released: list[int] = []
    for payment in stale_payments:
        if payment.gateway_intent_id:
            try:
                intent_status = await gateway.retrieve_intent_status(payment.gateway_intent_id)
                if intent_status in SETTLING_INTENT_STATES:
                    # The webhook will settle it
                    continue
                if intent_status in CANCELABLE_INTENT_STATES:
                    await gateway.cancel_intent(payment.gateway_intent_id)
            except GatewayError as e:
                logger.error("stale_payment_check_failed", payment_id=payment.id, error=e.message)
                continue

        canceled = await transition_payment(
            db,
            payment.id,
            PaymentStatus.PENDING.value,
            PaymentStatus.CANCELED.value,
            failure_reason=f"Abandoned - auto-canceled after {window} minutes",
        )
        if canceled:
            released.extend(payment.spot_booked or [])
            stale_payments_swept.inc()
            logger.info("stale_payment_canceled", payment_id=payment.id, spots=payment.spot_booked)

    if released:
        await match_service.release_spots(db, match_id, released)
    await db.commit()
    return sorted(released)


async def initiate_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    user_id: int,
    match_id: int,
    spot_numbers: list[int],
    password: str,
    team_id: str,
) -> dict:
    """
    Reserve spot numbers for the user and open a gateway payment for them.

    Returns payment_id, client_secret, amount and spot_booked.
    """
    settings = get_settings()
    started = time.perf_counter()

    try:
        match = await match_service.get_match(db, match_id)
        booking_service.check_match_access(match, user_id, password, team_id)
        requested = _validate_spot_numbers(spot_numbers, match.spots)
        booking = await booking_service.get_or_create_booking(db, match_id, user_id)
        already_paid = set(booking.spot_booked or [])
        if already_paid & set(requested):
            raise Conflict("Already booked this spot")

        await sweep_stale_reservations(db, gateway, match_id)

        match = await match_service.get_match(db, match_id)
        available = match.spots - match.spots_booked
        if len(requested) > available:
            raise ValidationError(f"Only {available} spots available")

        # Spots and the PENDING payment that owns them commit together, so the
        # sweep can always find and release a reservation
        try:
            match = await match_service.reserve_spots(db, match_id, requested, user_id=user_id)
            amount = to_money(Decimal(len(requested)) * match.final_price_per_spot)
            payment = Payment(
                booking_id=booking.id,
                match_id=match.id,
                user_id=user_id,
                amount=amount,
                status=PaymentStatus.PENDING.value,
                transaction_ref=f"TXN_{match.id}_{user_id}_{int(time.time() * 1000)}",
                spot_booked=requested,
            )
            db.add(payment)
            await db.commit()
        except SpotConflict as e:
            await db.rollback()
            raise SpotsUnavailable(f"Spots no longer available: {e.message}")
        except Exception:
            await db.rollback()
            raise

        intent = await gateway.create_payment_intent(
            amount=amount,
            currency=settings.CURRENCY,
            metadata={
                "payment_id": payment.id,
                "booking_id": booking.id,
                "match_id": match.id,
                "user_id": user_id,
                "number_of_spots": len(requested),
                "spot_booked": ",".join(str(n) for n in requested),
                "team_id": match.team_id,
            },
            description=f"Payment for {len(requested)} spots in {match.pitch_name} match",
        )
        payment.gateway_intent_id = intent.intent_id
        await db.flush()
        await db.commit()
    except (SpotsUnavailable, Conflict) as e:
        record_reservation_attempt("conflict")
        logger.info("payment_initiation_conflict", match_id=match_id, user_id=user_id, reason=e.message)
        raise
    except (ValidationError, Forbidden, NotFound) as e:
        record_reservation_attempt("rejected")
        logger.info("payment_initiation_rejected", match_id=match_id, user_id=user_id, reason=e.message)
        raise
    except DomainError:
        record_reservation_attempt("error")
        raise
    finally:
        reservation_latency.observe(time.perf_counter() - started)

    record_reservation_attempt("success")
    logger.info(
        "payment_initiated",
        payment_id=payment.id,
        match_id=match.id,
        user_id=user_id,
        spots=requested,
        amount=str(amount),
    )
    return {
        "payment_id": payment.id,
        "client_secret": intent.client_secret,
        "amount": amount,
        "spot_booked": requested,
    }


async def cancel_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    user_id: int,
    payment_id: int,
) -> Payment:
    """User abandons checkout: cancel upstream, release spots, mark CANCELED."""
    payment = await load_payment(db, payment_id)
    if not payment or payment.user_id != user_id:
        raise NotFound("Payment not found")
    if payment.status != PaymentStatus.PENDING.value:
        raise Conflict(f"Payment is {payment.status} and can no longer be canceled")

    if payment.gateway_intent_id:
        await gateway.cancel_intent(payment.gateway_intent_id)

    canceled = await transition_payment(
        db,
        payment.id,
        PaymentStatus.PENDING.value,
        PaymentStatus.CANCELED.value,
        failure_reason="Canceled by user",
    )
    if canceled:
        await match_service.release_spots(db, payment.match_id, payment.spot_booked or [])
        logger.info("payment_canceled", payment_id=payment.id, spots=payment.spot_booked)
    await db.commit()
    return await load_payment(db, payment_id)


async def get_payment_status(db: AsyncSession, user_id: int, payment_id: int) -> Payment:
    """Visible to the payer and to the match organizer."""
    payment = await load_payment(db, payment_id)
    if not payment:
        raise NotFound("Payment not found")
    if payment.user_id != user_id:
        match = await match_service.load_match(db, payment.match_id)
        if not match or match.organizer_id != user_id:
            raise NotFound("Payment not found")
    return payment
