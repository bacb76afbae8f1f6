"""
Payment gateway adapters.

build_gateway_router() is the single place where adapters are constructed;
adding a provider means adding its adapter class here.
"""
from ..config import Settings
from .base import (
    EventClass,
    GatewayAdapter,
    GatewayPaymentRequest,
    PaymentOutcome,
    WebhookEvent,
    SIMULATED_FAILURE_EMAILS,
)
from .paypal_gateway import PayPalGateway
from .razorpay_gateway import RazorpayGateway
from .router import GatewayRouter
from .stripe_gateway import StripeGateway


def build_gateway_router(app_settings: Settings) -> GatewayRouter:
    """Construct every adapter once from configuration."""
    return GatewayRouter([
        StripeGateway(
            secret_key=app_settings.stripe_secret_key,
            publishable_key=app_settings.stripe_publishable_key,
            max_tracked_references=app_settings.gateway_status_cache_size,
        ),
        PayPalGateway(
            client_id=app_settings.paypal_client_id,
            client_secret=app_settings.paypal_client_secret,
            mode=app_settings.paypal_mode,
            max_tracked_references=app_settings.gateway_status_cache_size,
        ),
        RazorpayGateway(
            key_id=app_settings.razorpay_key_id,
            key_secret=app_settings.razorpay_key_secret,
            max_tracked_references=app_settings.gateway_status_cache_size,
        ),
    ])


__all__ = [
    "EventClass",
    "GatewayAdapter",
    "GatewayPaymentRequest",
    "PaymentOutcome",
    "WebhookEvent",
    "SIMULATED_FAILURE_EMAILS",
    "GatewayRouter",
    "StripeGateway",
    "PayPalGateway",
    "RazorpayGateway",
    "build_gateway_router",
]
