"""
Reconciliation outcome and anomaly models.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Literal, Dict, Any
from pydantic import BaseModel
from pydantic.alias_generators import to_camel

AnomalyKind = Literal["orphan_webhook", "already_finalized", "reference_mismatch"]


class ReconciliationOutcome(str, Enum):
    APPLIED = "applied"
    ALREADY_FINALIZED = "already_finalized"
    ORPHAN = "orphan"
    IGNORED = "ignored"


@dataclass
class ReconciliationResult:
    """What a single webhook delivery (or status poll) did."""
    outcome: ReconciliationOutcome
    gateway: str
    external_reference: Optional[str] = None
    transaction_id: Optional[str] = None
    status: Optional[str] = None
    event_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "gateway": self.gateway,
            "externalReference": self.external_reference,
            "transactionId": self.transaction_id,
            "status": self.status,
            "eventType": self.event_type,
        }


class ReconciliationAnomaly(BaseModel):
    id: str
    kind: AnomalyKind
    gateway: str
    external_reference: Optional[str] = None
    transaction_id: Optional[str] = None
    event_type: Optional[str] = None
    details: Dict[str, Any] = {}
    created_at: datetime

    model_config = {"alias_generator": to_camel, "populate_by_name": True}
