"""
SQLAlchemy ORM Models for PayBridge

Tables: transactions, payouts, reconciliation_anomalies.
Monetary amounts are stored as integer minor units.
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, CheckConstraint, UniqueConstraint, Index
from sqlalchemy.orm import declarative_base

from ..time_utils import utcnow

Base = declarative_base()


class TransactionModel(Base):
    """
    ORM model for transactions table.

    (gateway, external_reference) is unique once set; NULL references
    do not collide.
    """
    __tablename__ = "transactions"

    id = Column(String, primary_key=True)
    owner_id = Column(String, nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    gateway = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default="pending", index=True)
    external_reference = Column(String)
    description = Column(Text, nullable=False)
    metadata_json = Column("metadata", Text)  # JSON blob
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'completed', 'failed', 'cancelled')", name="transaction_status_check"),
        CheckConstraint("gateway IN ('stripe', 'paypal', 'razorpay')", name="transaction_gateway_check"),
        CheckConstraint("amount_cents >= 1", name="transaction_amount_check"),
        UniqueConstraint("gateway", "external_reference", name="uq_transactions_gateway_reference"),
    )


class PayoutModel(Base):
    """
    ORM model for payouts table.

    The token is the capability for the out-of-band UPI submission.
    """
    __tablename__ = "payouts"

    id = Column(String, primary_key=True)
    owner_id = Column(String, nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    status = Column(String, nullable=False, default="INITIATED")
    token = Column(String(64), nullable=False, unique=True)
    upi_id = Column(String(100))
    description = Column(Text)
    metadata_json = Column("metadata", Text)  # JSON blob
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('INITIATED', 'COMPLETED')", name="payout_status_check"),
        CheckConstraint("amount_cents >= 1", name="payout_amount_check"),
    )


class ReconciliationAnomalyModel(Base):
    """
    ORM model for reconciliation_anomalies table.

    Acknowledged-but-suspicious webhook deliveries (orphans, replays on
    finalized transactions, passthrough id mismatches).
    """
    __tablename__ = "reconciliation_anomalies"

    id = Column(String, primary_key=True)
    kind = Column(String, nullable=False, index=True)
    gateway = Column(String, nullable=False)
    external_reference = Column(String)
    transaction_id = Column(String)
    event_type = Column(String)
    details = Column(Text)  # JSON blob
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (
        CheckConstraint(
            "kind IN ('orphan_webhook', 'already_finalized', 'reference_mismatch')",
            name="anomaly_kind_check"
        ),
        Index("idx_anomalies_gateway_reference", "gateway", "external_reference"),
    )
