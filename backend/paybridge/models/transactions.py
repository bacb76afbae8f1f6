"""
Pydantic Transaction Model

Represents one payment attempt and its lifecycle state.
The transition table lives here so the store and the reconciler share it.
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Literal, Dict, Any, FrozenSet
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


TransactionStatus = Literal["pending", "completed", "failed", "cancelled"]
GatewayId = Literal["stripe", "paypal", "razorpay"]

TERMINAL_STATUSES: FrozenSet[str] = frozenset({"completed", "failed", "cancelled"})

# Terminal states have no outgoing edges
ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"completed", "failed", "cancelled"}),
}

CENT = Decimal("0.01")


def is_transition_allowed(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def to_minor_units(amount: Decimal) -> int:
    """Convert a 2-decimal amount into integer minor units (cents, paise)."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_cents: int) -> Decimal:
    return (Decimal(amount_cents) / 100).quantize(CENT)


class Transaction(BaseModel):
    """
    Transaction record.

    - status starts at "pending"; completed/failed/cancelled are terminal
    - external_reference is set once, when the gateway accepts the payment
    - (gateway, external_reference) is the webhook reconciliation key
    """
    id: str
    owner_id: str
    amount: Decimal = Field(ge=CENT, decimal_places=2)
    currency: str = Field(pattern="^[A-Z]{3}$")
    gateway: GatewayId
    status: TransactionStatus
    external_reference: Optional[str] = None
    description: str
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime

    model_config = {
        "extra": "forbid",
        "alias_generator": to_camel,
        "populate_by_name": True,
        "json_schema_extra": {
            "example": {
                "id": "3f2b8c1e-6a4d-4e2b-9d0f-0c1a2b3c4d5e",
                "ownerId": "merchant_001",
                "amount": "50.00",
                "currency": "USD",
                "gateway": "stripe",
                "status": "pending",
                "externalReference": "pi_3f9a0c2d4e6b8a1c2d3e4f5a",
                "description": "Order #1042",
                "metadata": {"order_id": "1042"},
                "createdAt": "2025-10-17T14:35:00",
                "updatedAt": "2025-10-17T14:35:00"
            }
        }
    }

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_api(self) -> Dict[str, Any]:
        """Camel-cased JSON-safe dict for API responses."""
        return self.model_dump(by_alias=True, mode="json")
