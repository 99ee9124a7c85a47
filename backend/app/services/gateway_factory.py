"""
Payment gateway factory.
Configures which PaymentGateway implementation the API uses.
"""

from typing import Optional

from app.core.config import get_settings
from app.services.interfaces.payment_gateway import PaymentGateway
from app.services.stripe_gateway import StripeGateway


def build_payment_gateway() -> PaymentGateway:
    """
    Build the configured gateway.

    Selected by the PAYMENT_GATEWAY setting; Stripe is the only provider.
    """
    settings = get_settings()
    if settings.PAYMENT_GATEWAY != "stripe":
        raise ValueError(f"Unsupported payment gateway: {settings.PAYMENT_GATEWAY}")
    return StripeGateway(
        api_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
    )


# Singleton instance
_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency returning the gateway singleton."""
    global _gateway
    if _gateway is None:
        _gateway = build_payment_gateway()
    return _gateway
