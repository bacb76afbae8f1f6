"""
Payout Service

Creates payouts and completes them through a single-use token.

Flow:
1. A merchant creates a payout and receives a 64-hex-char token
2. The recipient opens the submit URL and posts their UPI handle
3. The first valid submission before expiry completes the payout

The submission is one conditional UPDATE (token, INITIATED, not expired),
so a token can never be redeemed twice.
"""
import json
import re
import secrets
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Dict, Any, Optional
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ..db.models import PayoutModel
from ..exceptions import (
    InvalidUpiIdError,
    PayoutAlreadySubmittedError,
    PayoutNotFoundError,
    PayoutTokenExpiredError,
    SystemFault,
)
from ..models.payouts import Payout, UPI_ID_PATTERN
from ..models.transactions import from_minor_units, to_minor_units
from ..time_utils import utcnow

logger = logging.getLogger(__name__)

_UPI_ID_RE = re.compile(UPI_ID_PATTERN)


def _to_payout(row: PayoutModel) -> Payout:
    return Payout(
        id=row.id,
        owner_id=row.owner_id,
        amount=from_minor_units(row.amount_cents),
        currency=row.currency,
        status=row.status,
        token=row.token,
        upi_id=row.upi_id,
        description=row.description,
        metadata=json.loads(row.metadata_json) if row.metadata_json else None,
        expires_at=row.expires_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def is_valid_upi_id(upi_id: str) -> bool:
    return bool(upi_id) and _UPI_ID_RE.match(upi_id) is not None


async def create_payout(
    db: AsyncSession,
    owner_id: str,
    amount: Decimal,
    currency: str,
    ttl_minutes: int,
    description: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> Payout:
    """
    Create an INITIATED payout with a fresh single-use token.

    Args:
        db: Database session
        owner_id: Creating principal
        amount: Payout amount (2 decimal places)
        currency: ISO currency code
        ttl_minutes: Token lifetime
        description: Optional free text
        metadata: Optional opaque metadata
    """
    now = utcnow()
    row = PayoutModel(
        id=str(uuid.uuid4()),
        owner_id=owner_id,
        amount_cents=to_minor_units(amount),
        currency=currency,
        status="INITIATED",
        token=secrets.token_hex(32),
        upi_id=None,
        description=description,
        metadata_json=json.dumps(metadata) if metadata is not None else None,
        expires_at=now + timedelta(minutes=ttl_minutes),
        created_at=now,
        updated_at=now,
    )

    try:
        db.add(row)
        await db.commit()
    except SQLAlchemyError as e:
        logger.error(f"Failed to create payout for owner {owner_id}: {e}", exc_info=True)
        await db.rollback()
        raise SystemFault("Failed to create payout")

    logger.info(f"Created payout: {row.id}, owner={owner_id}, expires_at={row.expires_at.isoformat()}")
    return _to_payout(row)


async def get_payout_by_token(db: AsyncSession, token: str) -> Payout:
    """
    Raises:
        PayoutNotFoundError: no payout carries this token
    """
    result = await db.execute(select(PayoutModel).where(PayoutModel.token == token))
    row = result.scalar_one_or_none()
    if row is None:
        raise PayoutNotFoundError()
    return _to_payout(row)


async def submit_payout_upi(db: AsyncSession, token: str, upi_id: str) -> Payout:
    """
    Redeem a payout token with the recipient's UPI handle.

    Raises:
        InvalidUpiIdError: handle is not name@bank
        PayoutNotFoundError: unknown token
        PayoutAlreadySubmittedError: token already redeemed
        PayoutTokenExpiredError: token past expires_at
    """
    upi_id = (upi_id or "").strip()
    if not is_valid_upi_id(upi_id):
        raise InvalidUpiIdError(upi_id)

    now = utcnow()
    result = await db.execute(
        update(PayoutModel)
        .where(
            PayoutModel.token == token,
            PayoutModel.status == "INITIATED",
            PayoutModel.expires_at > now,
        )
        .values(status="COMPLETED", upi_id=upi_id, updated_at=now)
    )
    await db.commit()

    db.expire_all()
    payout = await get_payout_by_token(db, token)

    if result.rowcount == 1:
        logger.info(f"Payout {payout.id} completed via UPI submission")
        return payout

    if payout.status != "INITIATED":
        logger.warning(f"Payout {payout.id} token reused (status={payout.status})")
        raise PayoutAlreadySubmittedError(payout.id, payout.status)

    logger.warning(f"Payout {payout.id} token expired at {payout.expires_at.isoformat()}")
    raise PayoutTokenExpiredError(payout.id)
