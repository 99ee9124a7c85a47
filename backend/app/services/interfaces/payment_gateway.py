"""
Payment gateway interface.
Keeps reservation, settlement and payout logic independent of the provider SDK.

Implementations:
- StripeGateway: Stripe PaymentIntents, Transfers and Connect onboarding
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union


@dataclass(frozen=True)
class GatewayIntent:
    intent_id: str
    client_secret: str


# Webhook events, one variant per event kind the settlement processor handles.

@dataclass(frozen=True)
class IntentSucceeded:
    event_id: str
    intent_id: str
    payment_id: Optional[int]
    charge_id: Optional[str] = None


@dataclass(frozen=True)
class IntentFailed:
    event_id: str
    intent_id: str
    payment_id: Optional[int]
    reason: str = "Payment failed"


@dataclass(frozen=True)
class IntentCanceled:
    event_id: str
    intent_id: str
    payment_id: Optional[int]


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str
    event_type: str


GatewayEvent = Union[IntentSucceeded, IntentFailed, IntentCanceled, UnhandledEvent]

# Intent states in which the customer has not completed payment yet
CANCELABLE_INTENT_STATES = frozenset(
    {"requires_payment_method", "requires_confirmation", "requires_action"}
)
# Intent states that will resolve through a webhook
SETTLING_INTENT_STATES = frozenset({"succeeded", "processing"})


class PaymentGateway(ABC):
    """
    Interface for the external payment provider.

    Amounts are in currency units (pounds); implementations convert to the
    provider's minor units. Provider failures are raised as GatewayError.
    """

    @abstractmethod
    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict,
        description: str = "",
    ) -> GatewayIntent:
        """Create a payment session the client completes with the secret."""
        pass

    @abstractmethod
    async def retrieve_intent_status(self, intent_id: str) -> str:
        """Current provider status of an intent, e.g. 'requires_payment_method'."""
        pass

    @abstractmethod
    async def cancel_intent(self, intent_id: str) -> None:
        pass

    @abstractmethod
    async def create_transfer(
        self,
        amount: Decimal,
        currency: str,
        destination: str,
        idempotency_key: str,
        metadata: Optional[dict] = None,
    ) -> str:
        """
        Move funds to a connected account.

        Args:
            idempotency_key: repeated calls with the same key transfer once

        Returns:
            Provider transfer id
        """
        pass

    @abstractmethod
    def construct_event(self, payload: bytes, signature: Optional[str]) -> GatewayEvent:
        """
        Verify a webhook signature and parse the event.

        Raises:
            WebhookSignatureError: payload or signature invalid
        """
        pass

    @abstractmethod
    async def create_connected_account(self, email: str, metadata: dict) -> str:
        pass

    @abstractmethod
    async def create_onboarding_link(self, account_id: str) -> str:
        pass
