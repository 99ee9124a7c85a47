"""
Payment endpoints: checkout, gateway webhooks, and organizer payouts.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.payment import (
    MatchFinancesResponse,
    PaymentCancelResponse,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentResponse,
    PayoutAccountResponse,
    PayoutResponse,
    WebhookResponse,
)
from app.services import payout_service, reservation_service, settlement_service
from app.services.cache_service import invalidate_match_cache
from app.services.gateway_factory import get_payment_gateway
from app.services.interfaces.payment_gateway import PaymentGateway
from app.core.security import get_current_user_id
from app.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/initiate", response_model=PaymentInitiateResponse)
async def initiate_payment_endpoint(
    payment_data: PaymentInitiateRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Reserve spot numbers and open a payment for them.

    Spots are held until the payment succeeds, fails, is canceled, or goes
    stale. Two players asking for the same spot get one 200 and one 409.
    """
    result = await reservation_service.initiate_payment(
        db,
        gateway,
        user_id=user_id,
        match_id=payment_data.match_id,
        spot_numbers=payment_data.spot_booked,
        password=payment_data.password,
        team_id=payment_data.team_id,
    )
    await invalidate_match_cache()
    return PaymentInitiateResponse(**result)


@router.post("/webhook", response_model=WebhookResponse)
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Gateway callback. Authenticated by signature, not by bearer token."""
    payload = await request.body()
    event = gateway.construct_event(payload, stripe_signature)
    structlog.contextvars.bind_contextvars(event_id=event.event_id)
    logger.info("webhook_received", event_kind=type(event).__name__)
    result = await settlement_service.handle_event(db, gateway, event)
    await invalidate_match_cache()
    return WebhookResponse(received=True, **result)


@router.post("/{payment_id}/cancel", response_model=PaymentCancelResponse)
async def cancel_payment_endpoint(
    payment_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Abandon checkout and release the held spots."""
    payment = await reservation_service.cancel_payment(db, gateway, user_id, payment_id)
    await invalidate_match_cache()
    return PaymentCancelResponse(payment_id=payment.id, status=payment.status)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment_endpoint(
    payment_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await reservation_service.get_payment_status(db, user_id, payment_id)


@router.post("/matches/{match_id}/payout", response_model=PayoutResponse)
async def trigger_payout(
    match_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Organizer-triggered payout for a fully paid match."""
    result = await payout_service.admin_payout(db, gateway, user_id, match_id)
    return PayoutResponse(**result)


@router.post("/matches/{match_id}/payout-account", response_model=PayoutAccountResponse)
async def setup_payout_account_endpoint(
    match_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Create the organizer's connected account and return its onboarding link."""
    result = await payout_service.setup_payout_account(db, gateway, user_id, match_id)
    return PayoutAccountResponse(**result)


@router.get("/matches/{match_id}/finances", response_model=MatchFinancesResponse)
async def get_match_finances_endpoint(
    match_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await payout_service.get_match_finances(db, user_id, match_id)
