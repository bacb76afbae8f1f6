"""
Webhook reconciler tests.

Covers terminal transitions, idempotent replays, orphans, passthrough
matching, concurrent duplicate deliveries and the status-poll sweep.
"""
import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from paybridge.db.models import TransactionModel
from paybridge.exceptions import SystemFault, UnsupportedGatewayError
from paybridge.models.payments import PaymentRequest
from paybridge.models.reconciliation import ReconciliationOutcome
from paybridge.services import transaction_store


def stripe_event(reference, event_type="payment_intent.succeeded", transaction_id=None):
    obj = {"id": reference, "object": "payment_intent"}
    if transaction_id:
        obj["metadata"] = {"transaction_id": transaction_id}
    return {"id": "evt_1", "type": event_type, "data": {"object": obj}}


def paypal_event(reference, event_type="PAYMENT.SALE.COMPLETED", custom=None):
    resource = {"id": "SALE-1", "parent_payment": reference}
    if custom:
        resource["custom"] = custom
    return {"event_type": event_type, "resource": resource}


def razorpay_event(reference, event="payment.captured"):
    return {"event": event, "payload": {"payment": {"entity": {"id": reference}}}}


async def dispatched(db, orchestrator, gateway="stripe", owner_id="merchant_001"):
    """Create a payment through the orchestrator; returns the pending transaction."""
    result = await orchestrator.create_payment(db, owner_id, PaymentRequest(
        amount="50.00",
        currency="USD",
        description="Order",
        customerEmail="buyer@example.com",
        gateway=gateway,
    ))
    assert result.success
    return await transaction_store.get_transaction(db, result.transaction_id)


async def anomaly_kinds(db):
    page = await transaction_store.list_anomalies(db, limit=100)
    return sorted(anomaly.kind for anomaly in page.items)


@pytest.mark.asyncio
@pytest.mark.parametrize("event_type,expected_status", [
    ("payment_intent.succeeded", "completed"),
    ("payment_intent.payment_failed", "failed"),
    ("payment_intent.canceled", "cancelled"),
])
async def test_stripe_terminal_events(db, orchestrator, reconciler, event_type, expected_status):
    transaction = await dispatched(db, orchestrator)

    result = await reconciler.handle_webhook(db, "stripe", stripe_event(transaction.external_reference, event_type))

    assert result.outcome is ReconciliationOutcome.APPLIED
    assert result.transaction_id == transaction.id
    assert result.status == expected_status
    stored = await transaction_store.get_transaction(db, transaction.id)
    assert stored.status == expected_status


@pytest.mark.asyncio
async def test_paypal_and_razorpay_events(db, orchestrator, reconciler):
    paypal_txn = await dispatched(db, orchestrator, gateway="paypal")
    razorpay_txn = await dispatched(db, orchestrator, gateway="razorpay")

    denied = await reconciler.handle_webhook(
        db, "paypal", paypal_event(paypal_txn.external_reference, "PAYMENT.SALE.DENIED")
    )
    captured = await reconciler.handle_webhook(
        db, "razorpay", razorpay_event(razorpay_txn.external_reference)
    )

    assert denied.status == "failed"
    assert captured.status == "completed"


@pytest.mark.asyncio
async def test_duplicate_delivery_is_idempotent(db, orchestrator, reconciler):
    transaction = await dispatched(db, orchestrator)
    event = stripe_event(transaction.external_reference)

    first = await reconciler.handle_webhook(db, "stripe", event)
    second = await reconciler.handle_webhook(db, "stripe", event)

    assert first.outcome is ReconciliationOutcome.APPLIED
    assert second.outcome is ReconciliationOutcome.ALREADY_FINALIZED
    assert second.status == "completed"
    stored = await transaction_store.get_transaction(db, transaction.id)
    assert stored.status == "completed"
    assert await anomaly_kinds(db) == ["already_finalized"]


@pytest.mark.asyncio
async def test_first_terminal_event_wins(db, orchestrator, reconciler):
    transaction = await dispatched(db, orchestrator)

    await reconciler.handle_webhook(db, "stripe", stripe_event(transaction.external_reference))
    late = await reconciler.handle_webhook(
        db, "stripe", stripe_event(transaction.external_reference, "payment_intent.payment_failed")
    )

    assert late.outcome is ReconciliationOutcome.ALREADY_FINALIZED
    stored = await transaction_store.get_transaction(db, transaction.id)
    assert stored.status == "completed"


@pytest.mark.asyncio
async def test_orphan_is_acknowledged_and_recorded(db, reconciler):
    result = await reconciler.handle_webhook(db, "stripe", stripe_event("pi_never_issued"))

    assert result.outcome is ReconciliationOutcome.ORPHAN
    assert result.external_reference == "pi_never_issued"
    assert await db.scalar(select(func.count()).select_from(TransactionModel)) == 0

    anomalies = await transaction_store.list_anomalies(db, kind="orphan_webhook")
    assert anomalies.total == 1
    assert anomalies.items[0].external_reference == "pi_never_issued"
    assert anomalies.items[0].event_type == "payment_intent.succeeded"


@pytest.mark.asyncio
async def test_reference_does_not_match_across_gateways(db, orchestrator, reconciler):
    stripe_txn = await dispatched(db, orchestrator, gateway="stripe")

    result = await reconciler.handle_webhook(db, "paypal", paypal_event(stripe_txn.external_reference))

    assert result.outcome is ReconciliationOutcome.ORPHAN
    stored = await transaction_store.get_transaction(db, stripe_txn.id)
    assert stored.status == "pending"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"type": "payment_intent.created", "data": {"object": {"id": "pi_1"}}},
    {"type": "charge.refunded"},
    "garbage",
    None,
    [],
])
async def test_unrecognized_payloads_are_ignored(db, reconciler, payload):
    result = await reconciler.handle_webhook(db, "stripe", payload)

    assert result.outcome is ReconciliationOutcome.IGNORED
    assert await anomaly_kinds(db) == []


@pytest.mark.asyncio
async def test_unsupported_gateway(db, reconciler):
    with pytest.raises(UnsupportedGatewayError):
        await reconciler.handle_webhook(db, "square", {"type": "payment.completed"})


@pytest.mark.asyncio
async def test_passthrough_id_matches_transaction_without_reference(db, reconciler):
    transaction = await transaction_store.create_transaction(
        db, "merchant_001", Decimal("12.00"), "USD", "stripe", "Order"
    )

    result = await reconciler.handle_webhook(
        db, "stripe", stripe_event("pi_late_reference", transaction_id=transaction.id)
    )

    assert result.outcome is ReconciliationOutcome.APPLIED
    stored = await transaction_store.get_transaction(db, transaction.id)
    assert stored.status == "completed"
    assert stored.external_reference == "pi_late_reference"


@pytest.mark.asyncio
async def test_passthrough_id_with_conflicting_reference_is_orphan(db, orchestrator, reconciler):
    transaction = await dispatched(db, orchestrator)

    result = await reconciler.handle_webhook(
        db, "stripe", stripe_event("pi_someone_else", transaction_id=transaction.id)
    )

    assert result.outcome is ReconciliationOutcome.ORPHAN
    stored = await transaction_store.get_transaction(db, transaction.id)
    assert stored.status == "pending"
    assert await anomaly_kinds(db) == ["reference_mismatch"]


@pytest.mark.asyncio
async def test_passthrough_id_from_other_gateway_is_orphan(db, orchestrator, reconciler):
    paypal_txn = await dispatched(db, orchestrator, gateway="paypal")

    result = await reconciler.handle_webhook(
        db, "stripe", stripe_event("pi_unrelated", transaction_id=paypal_txn.id)
    )

    assert result.outcome is ReconciliationOutcome.ORPHAN
    stored = await transaction_store.get_transaction(db, paypal_txn.id)
    assert stored.status == "pending"


@pytest.mark.asyncio
async def test_concurrent_duplicates_apply_once(session_factory, orchestrator, reconciler):
    async with session_factory() as db:
        transaction = await dispatched(db, orchestrator)

    event = stripe_event(transaction.external_reference)

    async def deliver():
        async with session_factory() as session:
            return await reconciler.handle_webhook(session, "stripe", event)

    results = await asyncio.gather(*(deliver() for _ in range(4)))

    outcomes = sorted(result.outcome.value for result in results)
    assert outcomes == ["already_finalized"] * 3 + ["applied"]

    async with session_factory() as db:
        stored = await transaction_store.get_transaction(db, transaction.id)
    assert stored.status == "completed"


@pytest.mark.asyncio
async def test_publishes_update_event(db, orchestrator, reconciler, event_hub):
    transaction = await dispatched(db, orchestrator)
    queue = await event_hub.subscribe("merchant_001")

    await reconciler.handle_webhook(db, "stripe", stripe_event(transaction.external_reference))

    event = queue.get_nowait()
    assert event["type"] == "transaction.updated"
    assert event["data"]["status"] == "completed"


@pytest.mark.asyncio
async def test_store_failure_raises_system_fault(db, orchestrator, reconciler, monkeypatch):
    transaction = await dispatched(db, orchestrator)

    async def failing_transition(*args, **kwargs):
        raise OperationalError("UPDATE transactions", {}, Exception("database is locked"))

    monkeypatch.setattr(transaction_store, "transition_status", failing_transition)

    with pytest.raises(SystemFault) as exc_info:
        await reconciler.handle_webhook(db, "stripe", stripe_event(transaction.external_reference))

    assert exc_info.value.details == {}
    stored = await transaction_store.get_transaction(db, transaction.id)
    assert stored.status == "pending"

class TestStatusPollSweep:
    @pytest.mark.asyncio
    async def test_sweep_applies_provider_terminal_status(self, db, orchestrator, reconciler, gateway_router):
        settled = await dispatched(db, orchestrator, gateway="razorpay")
        waiting = await dispatched(db, orchestrator, gateway="stripe")

        # Provider saw the capture but the webhook never reached us
        gateway_router.resolve("razorpay").handle_webhook(razorpay_event(settled.external_reference))

        summary = await reconciler.reconcile_stale(db, stale_after_minutes=0, batch_size=100)

        assert summary == {"checked": 2, "applied": 1, "still_pending": 1, "errors": 0}
        assert (await transaction_store.get_transaction(db, settled.id)).status == "completed"
        assert (await transaction_store.get_transaction(db, waiting.id)).status == "pending"

    @pytest.mark.asyncio
    async def test_sweep_ignores_recent_transactions(self, db, orchestrator, reconciler):
        await dispatched(db, orchestrator)

        summary = await reconciler.reconcile_stale(db, stale_after_minutes=60, batch_size=100)

        assert summary["checked"] == 0

    @pytest.mark.asyncio
    async def test_sweep_respects_batch_size(self, db, orchestrator, reconciler):
        for _ in range(3):
            await dispatched(db, orchestrator)

        summary = await reconciler.reconcile_stale(db, stale_after_minutes=0, batch_size=2)

        assert summary["checked"] == 2
        assert summary["still_pending"] == 2
