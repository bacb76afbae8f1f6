"""
Stripe Gateway Adapter

Simulates PaymentIntent creation and Stripe's event webhooks.
Amounts go out in minor units with a lowercase currency, as Stripe expects.
"""
import uuid
from typing import Any, Dict, Optional

from ..models.transactions import to_minor_units
from .base import (
    DEFAULT_MAX_TRACKED_REFERENCES,
    EventClass,
    GatewayAdapter,
    GatewayPaymentRequest,
    PaymentOutcome,
    WebhookEvent,
    dig,
    non_empty_str,
)

CHECKOUT_URL = "https://checkout.stripe.com/pay/{reference}"

WEBHOOK_EVENTS: Dict[str, EventClass] = {
    "payment_intent.succeeded": EventClass.SUCCEEDED,
    "payment_intent.payment_failed": EventClass.FAILED,
    "payment_intent.canceled": EventClass.CANCELLED,
}


class StripeGateway(GatewayAdapter):
    """Stripe PaymentIntents."""

    gateway_id = "stripe"

    STATUS_EVENTS = {
        "succeeded": EventClass.SUCCEEDED,
        "canceled": EventClass.CANCELLED,
    }

    ERROR_CODES = {
        "declined": "card_declined",
        "fraud_suspected": "fraudulent",
        "provider_error": "api_error",
    }

    def __init__(
        self,
        secret_key: str,
        publishable_key: str,
        max_tracked_references: int = DEFAULT_MAX_TRACKED_REFERENCES
    ):
        super().__init__(max_tracked_references)
        self.secret_key = secret_key
        self.publishable_key = publishable_key

    @property
    def livemode(self) -> bool:
        return self.secret_key.startswith("sk_live_")

    def _initial_status(self) -> str:
        return "requires_payment_method"

    def _create(self, request: GatewayPaymentRequest) -> PaymentOutcome:
        intent_id = f"pi_{uuid.uuid4().hex[:24]}"

        # Stripe metadata values are strings
        metadata = {key: str(value) for key, value in request.metadata.items()}

        intent = {
            "id": intent_id,
            "object": "payment_intent",
            "amount": to_minor_units(request.amount),
            "currency": request.currency.lower(),
            "status": self._initial_status(),
            "client_secret": f"{intent_id}_secret_{uuid.uuid4().hex[:16]}",
            "description": request.description,
            "receipt_email": request.customer_email,
            "metadata": metadata,
            "livemode": self.livemode,
            "publishable_key": self.publishable_key,
        }

        return PaymentOutcome(
            success=True,
            external_reference=intent_id,
            payment_url=CHECKOUT_URL.format(reference=intent_id),
            raw_response=intent,
        )

    def _parse_webhook(self, payload: Any) -> Optional[WebhookEvent]:
        event_type = dig(payload, "type")
        event_class = WEBHOOK_EVENTS.get(event_type) if isinstance(event_type, str) else None
        if event_class is None:
            return None

        intent_id = non_empty_str(dig(payload, "data", "object", "id"))
        if intent_id is None:
            return None

        return WebhookEvent(
            external_reference=intent_id,
            event_class=event_class,
            event_type=event_type,
            transaction_id=non_empty_str(dig(payload, "data", "object", "metadata", "transaction_id")),
        )
