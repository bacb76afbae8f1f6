"""
Payment Orchestrator

Creates a payment end to end:
1. Validate amount/currency invariants
2. Resolve the gateway adapter (before anything is written)
3. Persist a pending transaction
4. Dispatch to the adapter in a worker thread with a bounded timeout
5. Record the gateway reference on success, or fail the transaction

A successful dispatch leaves the transaction pending; the terminal state
arrives later through the webhook reconciler.
"""
import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Any, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ..exceptions import ConflictError, InvalidPaymentRequestError, SystemFault
from ..gateways.base import GatewayAdapter, GatewayPaymentRequest, PaymentOutcome
from ..gateways.router import GatewayRouter
from ..models.payments import PaymentRequest
from ..models.transactions import Transaction
from . import transaction_store
from .notification_service import TransactionEventHub

logger = logging.getLogger(__name__)


@dataclass
class PaymentResult:
    transaction_id: str
    success: bool
    payment_url: Optional[str] = None
    gateway_response: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_api(self) -> Dict[str, Any]:
        body = {
            "success": self.success,
            "message": "Payment initiated successfully" if self.success else "Payment failed",
            "transactionId": self.transaction_id,
        }
        if self.payment_url:
            body["paymentUrl"] = self.payment_url
        if self.gateway_response is not None:
            body["gatewayResponse"] = self.gateway_response
        if self.error:
            body["error"] = self.error
        return body


class PaymentOrchestrator:
    """Ties the gateway router to the transaction store."""

    def __init__(
        self,
        router: GatewayRouter,
        gateway_timeout_seconds: float = 10.0,
        notifier: Optional[TransactionEventHub] = None
    ):
        self.router = router
        self.gateway_timeout_seconds = gateway_timeout_seconds
        self.notifier = notifier

    async def create_payment(
        self,
        db: AsyncSession,
        owner_id: str,
        request: PaymentRequest
    ) -> PaymentResult:
        """
        Create a transaction and dispatch it to the requested gateway.

        Args:
            db: Database session
            owner_id: Requesting principal
            request: Validated payment request

        Returns:
            PaymentResult; success=False means the gateway declined or failed
            and the transaction is already marked failed

        Raises:
            InvalidPaymentRequestError: amount/currency invariant violated
            UnsupportedGatewayError: unknown gateway (nothing persisted)
            SystemFault: the store could not record the transaction
        """
        self._check_invariants(request.amount, request.currency)

        adapter = self.router.resolve(request.gateway)

        try:
            transaction = await transaction_store.create_transaction(
                db,
                owner_id=owner_id,
                amount=request.amount,
                currency=request.currency,
                gateway=adapter.gateway_id,
                description=request.description,
                metadata=request.metadata,
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist transaction for owner {owner_id}: {e}", exc_info=True)
            await db.rollback()
            raise SystemFault("Failed to record transaction")

        await self._notify("transaction.created", transaction)

        gateway_request = GatewayPaymentRequest(
            amount=request.amount,
            currency=request.currency,
            description=request.description,
            customer_email=request.customer_email,
            customer_name=request.customer_name,
            metadata={**(request.metadata or {}), "transaction_id": transaction.id},
        )
        outcome = await self._dispatch(adapter, gateway_request, transaction.id)

        try:
            if outcome.success:
                await self._attach_reference(db, transaction, adapter.gateway_id, outcome.external_reference)
                logger.info(
                    f"Payment dispatched: transaction={transaction.id}, "
                    f"gateway={adapter.gateway_id}, ref={outcome.external_reference}"
                )
            else:
                transaction = await transaction_store.transition_status(db, transaction.id, "failed")
                logger.warning(
                    f"Payment failed: transaction={transaction.id}, "
                    f"gateway={adapter.gateway_id}, error={outcome.error_detail}"
                )
                await self._notify("transaction.updated", transaction)
        except SQLAlchemyError as e:
            logger.error(f"Failed to record gateway outcome for {transaction.id}: {e}", exc_info=True)
            await db.rollback()
            raise SystemFault("Failed to record gateway outcome", {"transaction_id": transaction.id})

        return PaymentResult(
            transaction_id=transaction.id,
            success=outcome.success,
            payment_url=outcome.payment_url,
            gateway_response=outcome.raw_response,
            error=None if outcome.success else outcome.error_detail,
        )

    async def _attach_reference(
        self,
        db: AsyncSession,
        transaction: Transaction,
        gateway_id: str,
        external_reference: str
    ) -> None:
        """
        Record the gateway reference on the transaction.

        A webhook matched by passthrough id may have attached a different
        reference first. The gateway already accepted the payment, so the
        mismatch is recorded for operators and the payment still succeeds.
        """
        try:
            await transaction_store.attach_external_reference(db, transaction.id, external_reference)
        except ConflictError as e:
            logger.warning(
                f"Transaction {transaction.id} already carries ref={e.details.get('external_reference')}; "
                f"{gateway_id} issued ref={external_reference}"
            )
            await transaction_store.record_anomaly(
                db,
                "reference_mismatch",
                gateway_id,
                external_reference=external_reference,
                transaction_id=transaction.id,
                event_type="payment.created",
                details={"transaction_reference": e.details.get("external_reference")},
            )

    async def _dispatch(
        self,
        adapter: GatewayAdapter,
        gateway_request: GatewayPaymentRequest,
        transaction_id: str
    ) -> PaymentOutcome:
        """Run the blocking adapter call off the event loop, bounded by the gateway timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(adapter.create_payment, gateway_request),
                timeout=self.gateway_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"{adapter.gateway_id} timed out after {self.gateway_timeout_seconds}s "
                f"for transaction {transaction_id}"
            )
            return PaymentOutcome.failed("gateway_timeout")
        except Exception as e:
            logger.error(f"{adapter.gateway_id} adapter raised for transaction {transaction_id}: {e}", exc_info=True)
            return PaymentOutcome.failed("gateway_error")

    @staticmethod
    def _check_invariants(amount: Decimal, currency: str) -> None:
        if amount is None or amount <= 0:
            raise InvalidPaymentRequestError("Amount must be positive", {"amount": str(amount)})
        if not currency or len(currency) != 3:
            raise InvalidPaymentRequestError("Currency must be a 3-letter code", {"currency": currency})

    async def _notify(self, event_type: str, transaction: Transaction) -> None:
        if self.notifier is not None:
            await self.notifier.publish(event_type, transaction)
