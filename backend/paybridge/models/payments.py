"""
Payment request schemas.

Schema-level validation of the create-payment body. The gateway field is
left as a free string so unknown gateways reach the router and surface as
UnsupportedGatewayError rather than a schema error.
"""
from decimal import Decimal
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator

from .transactions import CENT

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class PaymentRequest(BaseModel):
    """Create-payment body: {amount, currency, description, customerEmail, customerName?, gateway, metadata?}."""
    amount: Decimal = Field(ge=CENT, max_digits=10, decimal_places=2)
    currency: str = Field(pattern="^[A-Z]{3}$")
    description: str = Field(min_length=1, max_length=500)
    customer_email: str = Field(alias="customerEmail", pattern=EMAIL_PATTERN)
    customer_name: Optional[str] = Field(default=None, alias="customerName", max_length=100)
    gateway: str = Field(min_length=1)
    metadata: Optional[Dict[str, Any]] = None

    model_config = {"populate_by_name": True}

    @field_validator("description")
    @classmethod
    def strip_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Description is required")
        return value

    @field_validator("customer_email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class DevTokenRequest(BaseModel):
    """Development token issuer body."""
    owner_id: str = Field(alias="ownerId", min_length=1, max_length=64)
    role: str = "merchant"

    model_config = {"populate_by_name": True}
