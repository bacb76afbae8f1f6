"""
Pydantic Payout Models

A payout is money sent out. It starts INITIATED and is completed by a
single UPI submission keyed by its token.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, Literal, Dict, Any
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from .transactions import CENT

PayoutStatus = Literal["INITIATED", "COMPLETED"]

UPI_ID_PATTERN = r"^[A-Za-z0-9._%+-]+@[A-Za-z]+$"


class Payout(BaseModel):
    id: str
    owner_id: str
    amount: Decimal = Field(ge=CENT, decimal_places=2)
    currency: str = Field(pattern="^[A-Z]{3}$")
    status: PayoutStatus
    token: str
    upi_id: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    expires_at: datetime
    created_at: datetime
    updated_at: datetime

    model_config = {"extra": "forbid", "alias_generator": to_camel, "populate_by_name": True}

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_api(self, include_token: bool = True) -> Dict[str, Any]:
        exclude = None if include_token else {"token", "owner_id"}
        return self.model_dump(by_alias=True, mode="json", exclude=exclude)


class CreatePayoutRequest(BaseModel):
    amount: Decimal = Field(ge=CENT, max_digits=10, decimal_places=2)
    currency: Optional[str] = Field(default=None, pattern="^[A-Z]{3}$")
    description: Optional[str] = Field(default=None, max_length=500)
    metadata: Optional[Dict[str, Any]] = None


class SubmitUpiRequest(BaseModel):
    # Format is checked by the service so a bad handle maps to InvalidUpiIdError
    upi_id: str = Field(alias="upiId", min_length=1, max_length=100)

    model_config = {"populate_by_name": True}
