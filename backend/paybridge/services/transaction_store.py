"""
Transaction Store

Durable record of every payment attempt and its state transitions.

Concurrency:
- Status transitions are a single conditional UPDATE (compare-and-set on
  the current status); exactly one concurrent writer can win.
- external_reference is attached with WHERE external_reference IS NULL,
  so it is written at most once.
"""
import json
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Any, Optional, List
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ..db.models import TransactionModel, ReconciliationAnomalyModel
from ..exceptions import (
    ConflictError,
    InvalidTransitionError,
    TransactionAlreadyFinalizedError,
    TransactionNotFoundError,
)
from ..models.reconciliation import ReconciliationAnomaly
from ..models.transactions import (
    Transaction,
    TERMINAL_STATUSES,
    from_minor_units,
    is_transition_allowed,
    to_minor_units,
)
from ..time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Page:
    items: List[Any]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "totalPages": self.total_pages,
        }


def _to_transaction(row: TransactionModel) -> Transaction:
    return Transaction(
        id=row.id,
        owner_id=row.owner_id,
        amount=from_minor_units(row.amount_cents),
        currency=row.currency,
        gateway=row.gateway,
        status=row.status,
        external_reference=row.external_reference,
        description=row.description,
        metadata=json.loads(row.metadata_json) if row.metadata_json else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


# ============================================================================
# Creation
# ============================================================================

async def create_transaction(
    db: AsyncSession,
    owner_id: str,
    amount,
    currency: str,
    gateway: str,
    description: str,
    metadata: Optional[Dict[str, Any]] = None
) -> Transaction:
    """
    Insert and commit a pending transaction.

    Returns:
        The created Transaction with its store-generated id
    """
    now = utcnow()
    row = TransactionModel(
        id=str(uuid.uuid4()),
        owner_id=owner_id,
        amount_cents=to_minor_units(amount),
        currency=currency,
        gateway=gateway,
        status="pending",
        external_reference=None,
        description=description,
        metadata_json=json.dumps(metadata) if metadata is not None else None,
        created_at=now,
        updated_at=now,
    )

    db.add(row)
    await db.commit()

    logger.info(f"Created transaction: {row.id}, gateway={gateway}, owner={owner_id}")
    return _to_transaction(row)


# ============================================================================
# Retrieval
# ============================================================================

async def get_transaction(db: AsyncSession, transaction_id: str) -> Optional[Transaction]:
    result = await db.execute(
        select(TransactionModel).where(TransactionModel.id == transaction_id)
    )
    row = result.scalar_one_or_none()
    return _to_transaction(row) if row else None


async def get_owned_transaction(
    db: AsyncSession,
    transaction_id: str,
    owner_id: Optional[str]
) -> Transaction:
    """
    Retrieve a transaction visible to owner_id (None means unrestricted).

    Raises:
        TransactionNotFoundError: absent, or owned by someone else
    """
    query = select(TransactionModel).where(TransactionModel.id == transaction_id)
    if owner_id is not None:
        query = query.where(TransactionModel.owner_id == owner_id)

    result = await db.execute(query)
    row = result.scalar_one_or_none()
    if row is None:
        raise TransactionNotFoundError(transaction_id)
    return _to_transaction(row)


async def find_by_external_reference(
    db: AsyncSession,
    gateway: str,
    external_reference: str
) -> Optional[Transaction]:
    """References are only unique per gateway, so both are required."""
    result = await db.execute(
        select(TransactionModel).where(
            TransactionModel.gateway == gateway,
            TransactionModel.external_reference == external_reference,
        )
    )
    row = result.scalar_one_or_none()
    return _to_transaction(row) if row else None


async def list_transactions(
    db: AsyncSession,
    owner_id: Optional[str] = None,
    status: Optional[str] = None,
    gateway: Optional[str] = None,
    page: int = 1,
    limit: int = 10
) -> Page:
    """
    Paginated listing, newest first.

    Args:
        owner_id: restrict to one owner; None lists every owner
        status: optional status filter
        gateway: optional gateway filter
        page: 1-based page number
        limit: page size
    """
    conditions = []
    if owner_id is not None:
        conditions.append(TransactionModel.owner_id == owner_id)
    if status:
        conditions.append(TransactionModel.status == status)
    if gateway:
        conditions.append(TransactionModel.gateway == gateway)

    total = await db.scalar(
        select(func.count()).select_from(TransactionModel).where(*conditions)
    )

    result = await db.execute(
        select(TransactionModel)
        .where(*conditions)
        .order_by(TransactionModel.created_at.desc(), TransactionModel.id)
        .limit(limit)
        .offset((page - 1) * limit)
    )

    return Page(
        items=[_to_transaction(row) for row in result.scalars().all()],
        total=total or 0,
        page=page,
        limit=limit,
    )


async def list_stale_pending(
    db: AsyncSession,
    older_than: datetime,
    limit: int = 100
) -> List[Transaction]:
    """Pending transactions with a gateway reference, oldest first."""
    result = await db.execute(
        select(TransactionModel)
        .where(
            TransactionModel.status == "pending",
            TransactionModel.external_reference.is_not(None),
            TransactionModel.created_at <= older_than,
        )
        .order_by(TransactionModel.created_at)
        .limit(limit)
    )
    return [_to_transaction(row) for row in result.scalars().all()]


# ============================================================================
# Mutation
# ============================================================================

async def attach_external_reference(
    db: AsyncSession,
    transaction_id: str,
    external_reference: str
) -> Transaction:
    """
    Record the gateway reference. Write-once.

    Re-attaching the same value is a no-op; a different value is rejected.
    """
    result = await db.execute(
        update(TransactionModel)
        .where(
            TransactionModel.id == transaction_id,
            TransactionModel.external_reference.is_(None),
        )
        .values(external_reference=external_reference, updated_at=utcnow())
    )
    await db.commit()

    db.expire_all()
    current = await get_transaction(db, transaction_id)
    if current is None:
        raise TransactionNotFoundError(transaction_id)

    if result.rowcount == 0 and current.external_reference != external_reference:
        raise ConflictError(
            "transaction:reference_conflict",
            f"Transaction {transaction_id} already has a different gateway reference",
            {"transaction_id": transaction_id, "external_reference": current.external_reference}
        )

    logger.debug(f"Attached reference {external_reference} to transaction {transaction_id}")
    return current


async def transition_status(
    db: AsyncSession,
    transaction_id: str,
    to_status: str,
    from_status: str = "pending"
) -> Transaction:
    """
    Atomically move a transaction from from_status to to_status.

    Raises:
        InvalidTransitionError: edge not in the transition table
        TransactionNotFoundError: no such transaction
        TransactionAlreadyFinalizedError: transaction is already terminal
            (including losing a concurrent race to another writer)
    """
    if not is_transition_allowed(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)

    result = await db.execute(
        update(TransactionModel)
        .where(
            TransactionModel.id == transaction_id,
            TransactionModel.status == from_status,
        )
        .values(status=to_status, updated_at=utcnow())
    )
    await db.commit()

    # Session identity map may hold the pre-update row
    db.expire_all()
    current = await get_transaction(db, transaction_id)
    if current is None:
        raise TransactionNotFoundError(transaction_id)

    if result.rowcount == 1:
        logger.info(f"Transaction {transaction_id}: {from_status} -> {to_status}")
        return current

    if current.status in TERMINAL_STATUSES:
        raise TransactionAlreadyFinalizedError(transaction_id, current.status, to_status)

    raise InvalidTransitionError(current.status, to_status)


# ============================================================================
# Reconciliation anomalies
# ============================================================================

async def record_anomaly(
    db: AsyncSession,
    kind: str,
    gateway: str,
    external_reference: Optional[str] = None,
    transaction_id: Optional[str] = None,
    event_type: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> ReconciliationAnomaly:
    row = ReconciliationAnomalyModel(
        id=str(uuid.uuid4()),
        kind=kind,
        gateway=gateway,
        external_reference=external_reference,
        transaction_id=transaction_id,
        event_type=event_type,
        details=json.dumps(details or {}),
        created_at=utcnow(),
    )
    db.add(row)
    await db.commit()

    logger.warning(
        f"Reconciliation anomaly: kind={kind}, gateway={gateway}, "
        f"ref={external_reference}, transaction={transaction_id}, event={event_type}"
    )
    return _to_anomaly(row)


def _to_anomaly(row: ReconciliationAnomalyModel) -> ReconciliationAnomaly:
    return ReconciliationAnomaly(
        id=row.id,
        kind=row.kind,
        gateway=row.gateway,
        external_reference=row.external_reference,
        transaction_id=row.transaction_id,
        event_type=row.event_type,
        details=json.loads(row.details) if row.details else {},
        created_at=row.created_at,
    )


async def list_anomalies(
    db: AsyncSession,
    kind: Optional[str] = None,
    gateway: Optional[str] = None,
    page: int = 1,
    limit: int = 50
) -> Page:
    conditions = []
    if kind:
        conditions.append(ReconciliationAnomalyModel.kind == kind)
    if gateway:
        conditions.append(ReconciliationAnomalyModel.gateway == gateway)

    total = await db.scalar(
        select(func.count()).select_from(ReconciliationAnomalyModel).where(*conditions)
    )
    result = await db.execute(
        select(ReconciliationAnomalyModel)
        .where(*conditions)
        .order_by(ReconciliationAnomalyModel.created_at.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )

    return Page(
        items=[_to_anomaly(row) for row in result.scalars().all()],
        total=total or 0,
        page=page,
        limit=limit,
    )
