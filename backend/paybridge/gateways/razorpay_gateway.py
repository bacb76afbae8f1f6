"""
Razorpay Gateway Adapter

Simulates payment creation and the payment.* webhooks. Amounts are in
paise; our transaction id rides along in the payment notes.
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

CHECKOUT_URL = "https://checkout.razorpay.com/v1/checkout.js?payment_id={reference}"

WEBHOOK_EVENTS: Dict[str, EventClass] = {
    "payment.captured": EventClass.SUCCEEDED,
    "payment.failed": EventClass.FAILED,
}


class RazorpayGateway(GatewayAdapter):
    """Razorpay standard checkout."""

    gateway_id = "razorpay"

    STATUS_EVENTS = {
        "captured": EventClass.SUCCEEDED,
        "failed": EventClass.FAILED,
    }

    ERROR_CODES = {
        "declined": "BAD_REQUEST_ERROR",
        "fraud_suspected": "GATEWAY_ERROR",
        "provider_error": "SERVER_ERROR",
    }

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        max_tracked_references: int = DEFAULT_MAX_TRACKED_REFERENCES
    ):
        super().__init__(max_tracked_references)
        self.key_id = key_id
        self.key_secret = key_secret

    def _initial_status(self) -> str:
        return "created"

    def _create(self, request: GatewayPaymentRequest) -> PaymentOutcome:
        payment_id = f"pay_{uuid.uuid4().hex[:14]}"

        # Razorpay notes are flat string maps
        notes = {key: str(value) for key, value in request.metadata.items()}

        payment = {
            "id": payment_id,
            "entity": "payment",
            "amount": to_minor_units(request.amount),
            "currency": request.currency,
            "status": self._initial_status(),
            "description": request.description,
            "email": request.customer_email,
            "customer": {
                "email": request.customer_email,
                "name": request.customer_name,
            },
            "notes": notes,
            "key_id": self.key_id,
        }

        return PaymentOutcome(
            success=True,
            external_reference=payment_id,
            payment_url=CHECKOUT_URL.format(reference=payment_id),
            raw_response=payment,
        )

    def _parse_webhook(self, payload: Any) -> Optional[WebhookEvent]:
        event_type = dig(payload, "event")
        event_class = WEBHOOK_EVENTS.get(event_type) if isinstance(event_type, str) else None
        if event_class is None:
            return None

        entity = dig(payload, "payload", "payment", "entity")
        payment_id = non_empty_str(dig(entity, "id"))
        if payment_id is None:
            return None

        return WebhookEvent(
            external_reference=payment_id,
            event_class=event_class,
            event_type=event_type,
            transaction_id=non_empty_str(dig(entity, "notes", "transaction_id")),
        )
