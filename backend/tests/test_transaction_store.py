"""
Transaction store tests.

Covers creation, write-once references, compare-and-set transitions,
owner-scoped retrieval and pagination.
"""
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from paybridge.exceptions import (
    ConflictError,
    InvalidTransitionError,
    TransactionAlreadyFinalizedError,
    TransactionNotFoundError,
)
from paybridge.services import transaction_store


async def new_transaction(db, owner_id="merchant_001", gateway="stripe", amount="50.00"):
    return await transaction_store.create_transaction(
        db,
        owner_id=owner_id,
        amount=Decimal(amount),
        currency="USD",
        gateway=gateway,
        description="Order",
        metadata={"order_id": "1042"},
    )


@pytest.mark.asyncio
async def test_create_transaction_is_pending(db):
    transaction = await new_transaction(db, amount="19.99")

    stored = await transaction_store.get_transaction(db, transaction.id)
    assert stored.status == "pending"
    assert stored.amount == Decimal("19.99")
    assert stored.external_reference is None
    assert stored.metadata == {"order_id": "1042"}
    assert stored.created_at == stored.updated_at


@pytest.mark.asyncio
async def test_external_reference_is_write_once(db):
    transaction = await new_transaction(db)

    attached = await transaction_store.attach_external_reference(db, transaction.id, "pi_first")
    assert attached.external_reference == "pi_first"

    # Same value again is a no-op
    again = await transaction_store.attach_external_reference(db, transaction.id, "pi_first")
    assert again.external_reference == "pi_first"

    with pytest.raises(ConflictError):
        await transaction_store.attach_external_reference(db, transaction.id, "pi_second")

    stored = await transaction_store.get_transaction(db, transaction.id)
    assert stored.external_reference == "pi_first"


@pytest.mark.asyncio
async def test_reference_unique_per_gateway(db):
    first = await new_transaction(db, gateway="stripe")
    second = await new_transaction(db, gateway="stripe")
    other_gateway = await new_transaction(db, gateway="razorpay")

    await transaction_store.attach_external_reference(db, first.id, "shared_ref")
    # Same reference on another gateway is a different key
    await transaction_store.attach_external_reference(db, other_gateway.id, "shared_ref")

    with pytest.raises(IntegrityError):
        await transaction_store.attach_external_reference(db, second.id, "shared_ref")
    await db.rollback()

    found = await transaction_store.find_by_external_reference(db, "stripe", "shared_ref")
    assert found.id == first.id
    found = await transaction_store.find_by_external_reference(db, "razorpay", "shared_ref")
    assert found.id == other_gateway.id
    assert await transaction_store.find_by_external_reference(db, "paypal", "shared_ref") is None


@pytest.mark.asyncio
async def test_transition_from_pending(db):
    transaction = await new_transaction(db)

    updated = await transaction_store.transition_status(db, transaction.id, "completed")

    assert updated.status == "completed"
    assert updated.is_terminal
    assert updated.updated_at >= transaction.updated_at


@pytest.mark.asyncio
async def test_transition_on_terminal_raises_already_finalized(db):
    transaction = await new_transaction(db)
    await transaction_store.transition_status(db, transaction.id, "failed")

    with pytest.raises(TransactionAlreadyFinalizedError) as exc_info:
        await transaction_store.transition_status(db, transaction.id, "completed")

    assert exc_info.value.current_status == "failed"
    assert exc_info.value.attempted_status == "completed"
    stored = await transaction_store.get_transaction(db, transaction.id)
    assert stored.status == "failed"


@pytest.mark.asyncio
async def test_edges_outside_table_rejected(db):
    transaction = await new_transaction(db)

    with pytest.raises(InvalidTransitionError):
        await transaction_store.transition_status(db, transaction.id, "pending")
    with pytest.raises(InvalidTransitionError):
        await transaction_store.transition_status(db, transaction.id, "pending", from_status="completed")


@pytest.mark.asyncio
async def test_transition_unknown_transaction(db):
    with pytest.raises(TransactionNotFoundError):
        await transaction_store.transition_status(db, "missing", "completed")


@pytest.mark.asyncio
async def test_owner_scoped_retrieval(db):
    transaction = await new_transaction(db, owner_id="merchant_001")

    assert (await transaction_store.get_owned_transaction(db, transaction.id, "merchant_001")).id == transaction.id
    # None means unrestricted (admin)
    assert (await transaction_store.get_owned_transaction(db, transaction.id, None)).id == transaction.id

    with pytest.raises(TransactionNotFoundError):
        await transaction_store.get_owned_transaction(db, transaction.id, "merchant_002")


@pytest.mark.asyncio
async def test_list_transactions_paginates_newest_first(db):
    created = [await new_transaction(db, owner_id="merchant_001") for _ in range(5)]
    await new_transaction(db, owner_id="merchant_002")

    first_page = await transaction_store.list_transactions(db, owner_id="merchant_001", page=1, limit=2)
    last_page = await transaction_store.list_transactions(db, owner_id="merchant_001", page=3, limit=2)

    assert first_page.total == 5
    assert first_page.total_pages == 3
    assert [t.id for t in first_page.items] == [created[4].id, created[3].id]
    assert [t.id for t in last_page.items] == [created[0].id]
    assert first_page.pagination() == {"total": 5, "page": 1, "limit": 2, "totalPages": 3}

    everyone = await transaction_store.list_transactions(db, owner_id=None, limit=100)
    assert everyone.total == 6


@pytest.mark.asyncio
async def test_list_transactions_filters(db):
    completed = await new_transaction(db, gateway="paypal")
    await transaction_store.transition_status(db, completed.id, "completed")
    await new_transaction(db, gateway="paypal")
    await new_transaction(db, gateway="stripe")

    by_status = await transaction_store.list_transactions(db, status="completed")
    by_gateway = await transaction_store.list_transactions(db, gateway="paypal")

    assert [t.id for t in by_status.items] == [completed.id]
    assert by_gateway.total == 2


@pytest.mark.asyncio
async def test_list_stale_pending_requires_reference(db):
    with_reference = await new_transaction(db)
    await transaction_store.attach_external_reference(db, with_reference.id, "pi_stale")
    await new_transaction(db)
    finished = await new_transaction(db)
    await transaction_store.attach_external_reference(db, finished.id, "pi_done")
    await transaction_store.transition_status(db, finished.id, "completed")

    stale = await transaction_store.list_stale_pending(db, older_than=with_reference.created_at, limit=10)

    assert [t.id for t in stale] == [with_reference.id]


@pytest.mark.asyncio
async def test_record_and_list_anomalies(db):
    await transaction_store.record_anomaly(db, "orphan_webhook", "stripe", external_reference="pi_unknown")
    await transaction_store.record_anomaly(
        db, "already_finalized", "paypal", transaction_id="txn-1", details={"current_status": "completed"}
    )

    orphans = await transaction_store.list_anomalies(db, kind="orphan_webhook")
    everything = await transaction_store.list_anomalies(db)

    assert orphans.total == 1
    assert orphans.items[0].external_reference == "pi_unknown"
    assert everything.total == 2
    assert everything.items[0].details == {"current_status": "completed"}
