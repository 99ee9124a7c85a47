"""
Stripe implementation of the PaymentGateway interface.

The Stripe SDK is synchronous, so every call runs in Starlette's threadpool
to keep the event loop free. SDK errors are logged and re-raised as
GatewayError; the message returned to clients never includes Stripe's
internals.
"""

import json
from decimal import Decimal
from typing import Optional

import stripe
from starlette.concurrency import run_in_threadpool

from app.core.config import get_settings
from app.core.exceptions import GatewayError, WebhookSignatureError
from app.core.logging import get_logger
from app.services.interfaces.payment_gateway import (
    GatewayEvent,
    GatewayIntent,
    IntentCanceled,
    IntentFailed,
    IntentSucceeded,
    PaymentGateway,
    UnhandledEvent,
)
from app.services.pricing import to_minor_units

logger = get_logger(__name__)

SUCCEEDED = "payment_intent.succeeded"
FAILED = "payment_intent.payment_failed"
CANCELED = "payment_intent.canceled"


def _stringify(metadata: Optional[dict]) -> dict:
    # Stripe metadata values must be strings
    return {str(k): str(v) for k, v in (metadata or {}).items()}


def _payment_id(metadata: dict) -> Optional[int]:
    try:
        return int(metadata.get("payment_id"))
    except (TypeError, ValueError):
        return None


class StripeGateway(PaymentGateway):

    def __init__(self, api_key: str, webhook_secret: str):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    async def _call(self, operation: str, fn, *args, **kwargs):
        try:
            return await run_in_threadpool(fn, *args, api_key=self.api_key, **kwargs)
        except stripe.StripeError as e:
            logger.error("stripe_call_failed", operation=operation, error=str(e))
            raise GatewayError(f"Payment provider error during {operation}") from e

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict,
        description: str = "",
    ) -> GatewayIntent:
        intent = await self._call(
            "create_payment_intent",
            stripe.PaymentIntent.create,
            amount=to_minor_units(amount),
            currency=currency,
            metadata=_stringify(metadata),
            description=description,
            automatic_payment_methods={"enabled": True},
        )
        return GatewayIntent(intent_id=intent.id, client_secret=intent.client_secret)

    async def retrieve_intent_status(self, intent_id: str) -> str:
        intent = await self._call("retrieve_intent", stripe.PaymentIntent.retrieve, intent_id)
        return intent.status

    async def cancel_intent(self, intent_id: str) -> None:
        await self._call("cancel_intent", stripe.PaymentIntent.cancel, intent_id)

    async def create_transfer(
        self,
        amount: Decimal,
        currency: str,
        destination: str,
        idempotency_key: str,
        metadata: Optional[dict] = None,
    ) -> str:
        transfer = await self._call(
            "create_transfer",
            stripe.Transfer.create,
            amount=to_minor_units(amount),
            currency=currency,
            destination=destination,
            metadata=_stringify(metadata),
            idempotency_key=idempotency_key,
        )
        return transfer.id

    def construct_event(self, payload: bytes, signature: Optional[str]) -> GatewayEvent:
        if not signature:
            raise WebhookSignatureError("Missing webhook signature")

        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(text, signature, self.webhook_secret)
            event = json.loads(text)
        except stripe.SignatureVerificationError:
            raise WebhookSignatureError("Invalid webhook signature")
        except ValueError:
            raise WebhookSignatureError("Invalid webhook payload")

        return parse_event(event)

    async def create_connected_account(self, email: str, metadata: dict) -> str:
        account = await self._call(
            "create_connected_account",
            stripe.Account.create,
            type="express",
            country="GB",
            email=email,
            capabilities={"transfers": {"requested": True}},
            metadata=_stringify(metadata),
        )
        return account.id

    async def create_onboarding_link(self, account_id: str) -> str:
        frontend = get_settings().FRONTEND_URL
        link = await self._call(
            "create_onboarding_link",
            stripe.AccountLink.create,
            account=account_id,
            refresh_url=f"{frontend}/team/setup-payout?refresh=true",
            return_url=f"{frontend}/team/setup-payout?success=true",
            type="account_onboarding",
        )
        return link.url


def parse_event(event: dict) -> GatewayEvent:
    """Map a verified Stripe event payload onto a GatewayEvent variant."""
    event_id = event.get("id", "")
    event_type = event.get("type", "")
    obj = (event.get("data") or {}).get("object") or {}
    metadata = obj.get("metadata") or {}
    intent_id = obj.get("id", "")

    if event_type == SUCCEEDED:
        return IntentSucceeded(
            event_id=event_id,
            intent_id=intent_id,
            payment_id=_payment_id(metadata),
            charge_id=obj.get("latest_charge"),
        )
    if event_type == FAILED:
        last_error = obj.get("last_payment_error") or {}
        return IntentFailed(
            event_id=event_id,
            intent_id=intent_id,
            payment_id=_payment_id(metadata),
            reason=last_error.get("message") or "Payment failed",
        )
    if event_type == CANCELED:
        return IntentCanceled(
            event_id=event_id,
            intent_id=intent_id,
            payment_id=_payment_id(metadata),
        )
    return UnhandledEvent(event_id=event_id, event_type=event_type)
