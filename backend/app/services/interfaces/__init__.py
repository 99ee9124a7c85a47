"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .payment_gateway import (
    PaymentGateway,
    GatewayIntent,
    GatewayEvent,
    IntentSucceeded,
    IntentFailed,
    IntentCanceled,
    UnhandledEvent,
)

__all__ = [
    'PaymentGateway', 'GatewayIntent', 'GatewayEvent',
    'IntentSucceeded', 'IntentFailed', 'IntentCanceled', 'UnhandledEvent',
]
