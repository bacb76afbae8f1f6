"""
Payout service tests.
"""
import re
from datetime import timedelta
from decimal import Decimal

import pytest

from paybridge.exceptions import (
    InvalidUpiIdError,
    PayoutAlreadySubmittedError,
    PayoutNotFoundError,
    PayoutTokenExpiredError,
)
from paybridge.services import payout_service


async def new_payout(db, ttl_minutes=60):
    return await payout_service.create_payout(
        db,
        owner_id="merchant_001",
        amount=Decimal("250.00"),
        currency="INR",
        ttl_minutes=ttl_minutes,
        description="Refund for order 1042",
    )


@pytest.mark.asyncio
async def test_create_payout(db):
    payout = await new_payout(db)

    assert payout.status == "INITIATED"
    assert re.fullmatch(r"[0-9a-f]{64}", payout.token)
    assert payout.upi_id is None
    assert payout.expires_at - payout.created_at == timedelta(minutes=60)


@pytest.mark.asyncio
async def test_tokens_are_unique(db):
    first = await new_payout(db)
    second = await new_payout(db)

    assert first.token != second.token


@pytest.mark.asyncio
async def test_lookup_by_token(db):
    payout = await new_payout(db)

    found = await payout_service.get_payout_by_token(db, payout.token)
    assert found.id == payout.id

    with pytest.raises(PayoutNotFoundError):
        await payout_service.get_payout_by_token(db, "0" * 64)


@pytest.mark.asyncio
async def test_submit_upi_completes_payout(db):
    payout = await new_payout(db)

    completed = await payout_service.submit_payout_upi(db, payout.token, "alice@okaxis")

    assert completed.status == "COMPLETED"
    assert completed.upi_id == "alice@okaxis"


@pytest.mark.asyncio
async def test_token_is_single_use(db):
    payout = await new_payout(db)
    await payout_service.submit_payout_upi(db, payout.token, "alice@okaxis")

    with pytest.raises(PayoutAlreadySubmittedError):
        await payout_service.submit_payout_upi(db, payout.token, "mallory@okaxis")

    stored = await payout_service.get_payout_by_token(db, payout.token)
    assert stored.upi_id == "alice@okaxis"


@pytest.mark.asyncio
@pytest.mark.parametrize("upi_id", ["alice", "alice@", "@okaxis", "alice@ok-axis", "alice@okaxis1", ""])
async def test_invalid_upi_leaves_payout_initiated(db, upi_id):
    payout = await new_payout(db)

    with pytest.raises(InvalidUpiIdError):
        await payout_service.submit_payout_upi(db, payout.token, upi_id)

    stored = await payout_service.get_payout_by_token(db, payout.token)
    assert stored.status == "INITIATED"


@pytest.mark.asyncio
async def test_expired_token(db):
    payout = await new_payout(db, ttl_minutes=-1)

    with pytest.raises(PayoutTokenExpiredError):
        await payout_service.submit_payout_upi(db, payout.token, "alice@okaxis")

    stored = await payout_service.get_payout_by_token(db, payout.token)
    assert stored.status == "INITIATED"
    assert stored.is_expired(stored.updated_at)


@pytest.mark.asyncio
async def test_unknown_token(db):
    with pytest.raises(PayoutNotFoundError):
        await payout_service.submit_payout_upi(db, "f" * 64, "alice@okaxis")


@pytest.mark.parametrize("upi_id,valid", [
    ("alice@okaxis", True),
    ("alice.smith-01@ybl", True),
    ("a+b%c@Paytm", True),
    ("alice@@okaxis", False),
    ("alice okaxis", False),
])
def test_upi_format(upi_id, valid):
    assert payout_service.is_valid_upi_id(upi_id) is valid


def test_public_view_hides_token_and_owner():
    from paybridge.models.payouts import Payout
    from paybridge.time_utils import utcnow

    now = utcnow()
    payout = Payout(
        id="po-1",
        owner_id="merchant_001",
        amount=Decimal("10.00"),
        currency="INR",
        status="INITIATED",
        token="a" * 64,
        expires_at=now + timedelta(minutes=5),
        created_at=now,
        updated_at=now,
    )

    public = payout.to_api(include_token=False)
    assert "token" not in public
    assert "ownerId" not in public
    assert public["amount"] == "10.00"
    assert payout.to_api()["token"] == "a" * 64
