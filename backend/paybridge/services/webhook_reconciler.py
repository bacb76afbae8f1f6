"""
Webhook Reconciler

Applies asynchronous gateway notifications to the transaction they refer
to. Every delivery is acknowledged; only recognized terminal events on a
pending transaction change state.

Outcomes:
- APPLIED: pending -> completed / failed / cancelled
- ALREADY_FINALIZED: duplicate or late event on a terminal transaction
- ORPHAN: no transaction matches the event (never creates one)
- IGNORED: non-terminal event type or unparseable payload

Also runs the status-poll sweep that closes transactions whose webhook
never arrived.
"""
import asyncio
from datetime import timedelta
from typing import Any, Dict, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ..exceptions import ConflictError, SystemFault, TransactionAlreadyFinalizedError, UnsupportedGatewayError
from ..gateways.base import EventClass, GatewayAdapter, WebhookEvent
from ..gateways.router import GatewayRouter
from ..models.reconciliation import ReconciliationOutcome, ReconciliationResult
from ..models.transactions import Transaction
from ..time_utils import utcnow
from . import transaction_store
from .notification_service import TransactionEventHub

logger = logging.getLogger(__name__)

EVENT_TARGET_STATUS: Dict[EventClass, str] = {
    EventClass.SUCCEEDED: "completed",
    EventClass.FAILED: "failed",
    EventClass.CANCELLED: "cancelled",
}


class WebhookReconciler:
    def __init__(
        self,
        router: GatewayRouter,
        notifier: Optional[TransactionEventHub] = None,
        gateway_timeout_seconds: float = 10.0
    ):
        self.router = router
        self.notifier = notifier
        self.gateway_timeout_seconds = gateway_timeout_seconds

    async def handle_webhook(
        self,
        db: AsyncSession,
        gateway_id: str,
        payload: Any
    ) -> ReconciliationResult:
        """
        Reconcile one webhook delivery.

        Args:
            db: Database session
            gateway_id: Gateway named in the webhook URL
            payload: Parsed JSON body (any shape)

        Raises:
            UnsupportedGatewayError: gateway_id not registered
            SystemFault: the store failed mid-reconciliation
        """
        adapter = self.router.resolve(gateway_id)

        try:
            event = adapter.handle_webhook(payload)
        except Exception as e:
            logger.error(f"{gateway_id} webhook adapter raised: {e}", exc_info=True)
            event = None

        if event is None:
            logger.info(f"Ignoring {gateway_id} webhook: not a recognized terminal event")
            return ReconciliationResult(ReconciliationOutcome.IGNORED, gateway_id)

        try:
            transaction = await self._locate(db, adapter, event)
            if transaction is None:
                return ReconciliationResult(
                    ReconciliationOutcome.ORPHAN,
                    gateway_id,
                    external_reference=event.external_reference,
                    transaction_id=event.transaction_id,
                    event_type=event.event_type,
                )

            return await self._apply(
                db,
                transaction,
                EVENT_TARGET_STATUS[event.event_class],
                event.event_type,
                event.external_reference,
            )
        except SQLAlchemyError as e:
            logger.error(
                f"Store failure reconciling {gateway_id} ref={event.external_reference}: {e}",
                exc_info=True
            )
            await db.rollback()
            raise SystemFault("Failed to reconcile webhook")

    async def _locate(
        self,
        db: AsyncSession,
        adapter: GatewayAdapter,
        event: WebhookEvent
    ) -> Optional[Transaction]:
        """
        Find the transaction an event refers to.

        Primary key is (gateway, external_reference). When that misses, the
        transaction id echoed back by the provider is accepted only for a
        transaction of the same gateway whose reference is unset or equal.
        Misses are recorded as anomalies.
        """
        gateway_id = adapter.gateway_id

        transaction = await transaction_store.find_by_external_reference(
            db, gateway_id, event.external_reference
        )
        if transaction is not None:
            return transaction

        if event.transaction_id:
            candidate = await transaction_store.get_transaction(db, event.transaction_id)
            if candidate is not None:
                if candidate.gateway == gateway_id and candidate.external_reference in (None, event.external_reference):
                    return await self._adopt_reference(db, candidate, event)

                await transaction_store.record_anomaly(
                    db,
                    "reference_mismatch",
                    gateway_id,
                    external_reference=event.external_reference,
                    transaction_id=candidate.id,
                    event_type=event.event_type,
                    details={
                        "transaction_gateway": candidate.gateway,
                        "transaction_reference": candidate.external_reference,
                    },
                )
                return None

        await transaction_store.record_anomaly(
            db,
            "orphan_webhook",
            gateway_id,
            external_reference=event.external_reference,
            transaction_id=event.transaction_id,
            event_type=event.event_type,
        )
        return None

    async def _adopt_reference(
        self,
        db: AsyncSession,
        candidate: Transaction,
        event: WebhookEvent
    ) -> Optional[Transaction]:
        """Attach the event's reference to a transaction found by its passthrough id."""
        if candidate.external_reference is not None:
            return candidate

        try:
            transaction = await transaction_store.attach_external_reference(
                db, candidate.id, event.external_reference
            )
        except ConflictError as e:
            # Orchestrator attached a different reference in the meantime
            await transaction_store.record_anomaly(
                db,
                "reference_mismatch",
                candidate.gateway,
                external_reference=event.external_reference,
                transaction_id=candidate.id,
                event_type=event.event_type,
                details=e.details,
            )
            return None

        logger.info(
            f"Matched {event.event_type} to transaction {candidate.id} by passthrough id, "
            f"ref={event.external_reference}"
        )
        return transaction

    async def _apply(
        self,
        db: AsyncSession,
        transaction: Transaction,
        to_status: str,
        event_type: str,
        external_reference: Optional[str],
        record_duplicates: bool = True
    ) -> ReconciliationResult:
        """Compare-and-set pending -> to_status; a terminal row is reported, not changed."""
        try:
            updated = await transaction_store.transition_status(db, transaction.id, to_status)
        except TransactionAlreadyFinalizedError as e:
            logger.info(
                f"Transaction {transaction.id} already {e.current_status}; "
                f"{event_type} ({to_status}) not applied"
            )
            if record_duplicates:
                await transaction_store.record_anomaly(
                    db,
                    "already_finalized",
                    transaction.gateway,
                    external_reference=external_reference,
                    transaction_id=transaction.id,
                    event_type=event_type,
                    details={"current_status": e.current_status, "attempted_status": to_status},
                )
            return ReconciliationResult(
                ReconciliationOutcome.ALREADY_FINALIZED,
                transaction.gateway,
                external_reference=external_reference,
                transaction_id=transaction.id,
                status=e.current_status,
                event_type=event_type,
            )

        if self.notifier is not None:
            await self.notifier.publish("transaction.updated", updated)

        return ReconciliationResult(
            ReconciliationOutcome.APPLIED,
            updated.gateway,
            external_reference=external_reference,
            transaction_id=updated.id,
            status=updated.status,
            event_type=event_type,
        )

    # ========================================================================
    # Status-poll sweep
    # ========================================================================

    async def reconcile_stale(
        self,
        db: AsyncSession,
        stale_after_minutes: int = 60,
        batch_size: int = 100
    ) -> Dict[str, int]:
        """
        Poll gateways for pending transactions whose webhook never arrived.

        Args:
            db: Database session
            stale_after_minutes: only transactions older than this are polled
            batch_size: maximum transactions per run, oldest first

        Returns:
            {"checked", "applied", "still_pending", "errors"}
        """
        cutoff = utcnow() - timedelta(minutes=stale_after_minutes)
        summary = {"checked": 0, "applied": 0, "still_pending": 0, "errors": 0}

        try:
            stale = await transaction_store.list_stale_pending(db, cutoff, batch_size)
        except SQLAlchemyError as e:
            logger.error(f"Reconciliation sweep could not load pending transactions: {e}", exc_info=True)
            raise SystemFault("Failed to load pending transactions")

        for transaction in stale:
            summary["checked"] += 1
            try:
                adapter = self.router.resolve(transaction.gateway)
                provider_status = await asyncio.wait_for(
                    asyncio.to_thread(adapter.get_status, transaction.external_reference),
                    timeout=self.gateway_timeout_seconds,
                )
            except UnsupportedGatewayError:
                logger.error(f"No adapter for {transaction.gateway}; skipping transaction {transaction.id}")
                summary["errors"] += 1
                continue
            except asyncio.TimeoutError:
                logger.warning(f"Status poll timed out for transaction {transaction.id}")
                summary["errors"] += 1
                continue
            except Exception as e:
                logger.error(f"Status poll failed for transaction {transaction.id}: {e}", exc_info=True)
                summary["errors"] += 1
                continue

            event_class = adapter.status_event(provider_status)
            if event_class is None:
                summary["still_pending"] += 1
                continue

            try:
                result = await self._apply(
                    db,
                    transaction,
                    EVENT_TARGET_STATUS[event_class],
                    f"status_poll:{provider_status}",
                    transaction.external_reference,
                    record_duplicates=False,
                )
            except SQLAlchemyError as e:
                logger.error(f"Sweep failed to update transaction {transaction.id}: {e}", exc_info=True)
                await db.rollback()
                summary["errors"] += 1
                continue

            if result.outcome is ReconciliationOutcome.APPLIED:
                summary["applied"] += 1

        logger.info(
            f"Reconciliation sweep: checked={summary['checked']}, applied={summary['applied']}, "
            f"still_pending={summary['still_pending']}, errors={summary['errors']}"
        )
        return summary
