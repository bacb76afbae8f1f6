"""
PayPal Gateway Adapter

Simulates the v1 Payments API (intent=sale) and its sale webhooks.
The payment id (PAYID-...) is the external reference; sale webhooks point
back to it through resource.parent_payment and echo our transaction id
in resource.custom.
"""
import uuid
from typing import Any, Dict, Optional

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

APPROVAL_HOSTS = {
    "sandbox": "https://www.sandbox.paypal.com",
    "live": "https://www.paypal.com",
}

WEBHOOK_EVENTS: Dict[str, EventClass] = {
    "PAYMENT.SALE.COMPLETED": EventClass.SUCCEEDED,
    "PAYMENT.SALE.DENIED": EventClass.FAILED,
}


class PayPalGateway(GatewayAdapter):
    """PayPal express checkout."""

    gateway_id = "paypal"

    STATUS_EVENTS = {
        "approved": EventClass.SUCCEEDED,
        "failed": EventClass.FAILED,
    }

    ERROR_CODES = {
        "declined": "INSTRUMENT_DECLINED",
        "fraud_suspected": "PAYER_ACTION_REQUIRED",
        "provider_error": "INTERNAL_SERVICE_ERROR",
    }

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        mode: str = "sandbox",
        max_tracked_references: int = DEFAULT_MAX_TRACKED_REFERENCES
    ):
        super().__init__(max_tracked_references)
        if mode not in APPROVAL_HOSTS:
            raise ValueError(f"PayPal mode must be one of {sorted(APPROVAL_HOSTS)}")
        self.client_id = client_id
        self.client_secret = client_secret
        self.mode = mode

    def _initial_status(self) -> str:
        return "created"

    def _create(self, request: GatewayPaymentRequest) -> PaymentOutcome:
        payment_id = f"PAYID-{uuid.uuid4().hex[:24].upper()}"
        approval_url = (
            f"{APPROVAL_HOSTS[self.mode]}/cgi-bin/webscr"
            f"?cmd=_express-checkout&token={payment_id}"
        )

        payer_info = {"email": request.customer_email}
        if request.customer_name:
            payer_info["first_name"] = request.customer_name

        payment = {
            "id": payment_id,
            "intent": "sale",
            "state": self._initial_status(),
            "payer": {"payment_method": "paypal", "payer_info": payer_info},
            "transactions": [{
                "amount": {"total": f"{request.amount:.2f}", "currency": request.currency},
                "description": request.description,
                # PayPal echoes custom back on every sale webhook
                "custom": str(request.metadata.get("transaction_id", "")),
            }],
            "links": [
                {"href": approval_url, "rel": "approval_url", "method": "REDIRECT"},
            ],
        }

        return PaymentOutcome(
            success=True,
            external_reference=payment_id,
            payment_url=approval_url,
            raw_response=payment,
        )

    def _parse_webhook(self, payload: Any) -> Optional[WebhookEvent]:
        event_type = dig(payload, "event_type")
        event_class = WEBHOOK_EVENTS.get(event_type) if isinstance(event_type, str) else None
        if event_class is None:
            return None

        payment_id = non_empty_str(dig(payload, "resource", "parent_payment"))
        if payment_id is None:
            return None

        return WebhookEvent(
            external_reference=payment_id,
            event_class=event_class,
            event_type=event_type,
            transaction_id=non_empty_str(dig(payload, "resource", "custom")),
        )
