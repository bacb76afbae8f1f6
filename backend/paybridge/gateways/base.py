"""
Gateway Adapter Contract

Every payment provider is wrapped in an adapter exposing the same three
operations: create_payment, handle_webhook, get_status. Adapters are
constructed once at startup and injected into the orchestrator and
reconciler via the GatewayRouter.

Adapters in this package simulate their providers in-process: they issue
provider-shaped identifiers and raw responses, remember what they issued,
and decline deterministically for reserved customer emails.

The record of issued references is a bounded, least-recently-used map
held in process memory. It is lost on restart, so the status-poll sweep
can only settle payments issued during the current process lifetime;
anything older polls as "unknown" and waits for its webhook.
"""
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
import logging

from ..exceptions import GatewayFailure

logger = logging.getLogger(__name__)


# Issued references each adapter keeps a provider status for
DEFAULT_MAX_TRACKED_REFERENCES = 10_000

# Reserved customer emails that make every simulated provider reject the
# payment. Each adapter maps the generic reason onto its own error codes.
SIMULATED_FAILURE_EMAILS: Dict[str, str] = {
    "decline@example.com": "declined",
    "fraud@example.com": "fraud_suspected",
    "error@example.com": "provider_error",
}


class EventClass(str, Enum):
    """Normalized meaning of a terminal provider event."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class GatewayPaymentRequest:
    """Uniform payment request handed to every adapter."""
    amount: Decimal
    currency: str
    description: str
    customer_email: str
    customer_name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentOutcome:
    """
    Result of create_payment.

    success=True carries external_reference and payment_url;
    success=False carries error_detail. raw_response is passed through to
    the client untouched either way.
    """
    success: bool
    external_reference: Optional[str] = None
    payment_url: Optional[str] = None
    raw_response: Optional[Dict[str, Any]] = None
    error_detail: Optional[str] = None

    @classmethod
    def failed(cls, error_detail: str, raw_response: Optional[Dict[str, Any]] = None) -> "PaymentOutcome":
        return cls(success=False, error_detail=error_detail, raw_response=raw_response)


@dataclass
class WebhookEvent:
    """
    Normalized terminal webhook event.

    transaction_id is the passthrough id we stamped into the provider's
    custom fields at creation, when the provider echoes it back.
    """
    external_reference: str
    event_class: EventClass
    event_type: str
    transaction_id: Optional[str] = None


def dig(payload: Any, *path: str) -> Any:
    """Walk nested dicts; None as soon as a level is missing or not a dict."""
    current = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def non_empty_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


class GatewayAdapter(ABC):
    """
    Uniform payment contract implemented once per provider.

    Subclasses implement the _create / _parse_webhook hooks; the public
    methods here guarantee that neither ever raises.
    """

    gateway_id: str = ""

    # provider status string -> event class, used by the status-poll sweep
    STATUS_EVENTS: Dict[str, EventClass] = {}

    # generic simulated failure reason -> provider error code
    ERROR_CODES: Dict[str, str] = {}

    def __init__(self, max_tracked_references: int = DEFAULT_MAX_TRACKED_REFERENCES):
        if max_tracked_references < 1:
            raise ValueError("max_tracked_references must be at least 1")
        self.max_tracked_references = max_tracked_references
        # reference -> provider status, least recently touched first
        self._issued: "OrderedDict[str, str]" = OrderedDict()
        # create_payment and get_status run in worker threads
        self._issued_lock = threading.Lock()

    def create_payment(self, request: GatewayPaymentRequest) -> PaymentOutcome:
        """
        Dispatch a payment to the provider.

        Never raises for a well-formed request: provider rejections and
        unexpected errors both come back as a failed outcome.
        """
        try:
            self._check_simulated_failure(request)
            outcome = self._create(request)
            self._track(outcome.external_reference, self._initial_status())
            logger.info(
                f"{self.gateway_id} payment created: ref={outcome.external_reference}, "
                f"amount={request.amount} {request.currency}"
            )
            return outcome

        except GatewayFailure as e:
            logger.warning(f"{self.gateway_id} rejected payment: {e.error_code} - {e.message}")
            return PaymentOutcome.failed(
                e.message,
                raw_response={"error": {"code": e.error_code, "message": e.message}}
            )

        except Exception as e:
            logger.error(f"{self.gateway_id} payment creation error: {e}", exc_info=True)
            return PaymentOutcome.failed(f"{self.gateway_id} error: {e}")

    def handle_webhook(self, payload: Any) -> Optional[WebhookEvent]:
        """
        Translate a provider payload into a WebhookEvent.

        Returns None for non-terminal event types and for malformed
        payloads.
        """
        try:
            event = self._parse_webhook(payload)
        except Exception as e:
            logger.warning(f"{self.gateway_id} webhook payload could not be parsed: {e}")
            return None

        if event is not None:
            self._track(event.external_reference, self._status_for(event.event_class), issued_only=True)
        return event

    def get_status(self, external_reference: str) -> str:
        """Best-effort provider status; advisory only."""
        with self._issued_lock:
            return self._issued.get(external_reference, "unknown")

    @property
    def tracked_reference_count(self) -> int:
        with self._issued_lock:
            return len(self._issued)

    def _track(self, external_reference: str, provider_status: str, issued_only: bool = False) -> None:
        """Record a provider status, evicting the least recently touched reference when full."""
        with self._issued_lock:
            if external_reference in self._issued:
                self._issued.move_to_end(external_reference)
            elif issued_only:
                return
            self._issued[external_reference] = provider_status
            while len(self._issued) > self.max_tracked_references:
                evicted, _ = self._issued.popitem(last=False)
                logger.debug(f"{self.gateway_id} stopped tracking ref={evicted}")

    def status_event(self, provider_status: str) -> Optional[EventClass]:
        return self.STATUS_EVENTS.get(provider_status)

    def _check_simulated_failure(self, request: GatewayPaymentRequest) -> None:
        reason = SIMULATED_FAILURE_EMAILS.get((request.customer_email or "").lower())
        if reason:
            code = self.ERROR_CODES.get(reason, reason)
            raise GatewayFailure(self.gateway_id, code, f"Payment {reason.replace('_', ' ')}")

    def _status_for(self, event_class: EventClass) -> str:
        for status, mapped in self.STATUS_EVENTS.items():
            if mapped is event_class:
                return status
        return "unknown"

    @abstractmethod
    def _initial_status(self) -> str:
        """Provider status of a freshly created payment."""

    @abstractmethod
    def _create(self, request: GatewayPaymentRequest) -> PaymentOutcome:
        """Build the provider call and its successful outcome."""

    @abstractmethod
    def _parse_webhook(self, payload: Any) -> Optional[WebhookEvent]:
        """Map a provider payload onto a WebhookEvent, or None."""
