"""
Payments API Endpoints

Payment creation and inbound gateway webhooks.
"""
import json
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict
import logging

from ..db.init_db import get_db
from ..models.payments import PaymentRequest
from ..services.identity_service import PAYMENT_CREATE_ROLES, Principal
from ..services.payment_orchestrator import PaymentOrchestrator
from ..services.webhook_reconciler import WebhookReconciler
from .dependencies import (
    general_rate_limit,
    get_orchestrator,
    get_reconciler,
    payment_rate_limit,
    require_roles,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", dependencies=[Depends(general_rate_limit), Depends(payment_rate_limit)])
async def create_payment_endpoint(
    body: PaymentRequest,
    principal: Principal = Depends(require_roles(*PAYMENT_CREATE_ROLES)),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    """
    Create a payment and dispatch it to the requested gateway.

    Request Body:
        {amount, currency, description, customerEmail, customerName?, gateway, metadata?}

    Returns:
        201 {success: true, transactionId, paymentUrl, gatewayResponse}
        400 {success: false, transactionId, error, gatewayResponse?} when the
            gateway declined; the transaction is already marked failed

    Example:
        POST /api/payments
        {"amount": "50.00", "currency": "USD", "gateway": "stripe", ...}
    """
    logger.info(f"Payment request: owner={principal.owner_id}, gateway={body.gateway}, amount={body.amount} {body.currency}")

    result = await orchestrator.create_payment(db, principal.owner_id, body)

    return JSONResponse(
        status_code=201 if result.success else 400,
        content=result.to_api(),
    )


@router.post("/webhooks/{gateway}")
async def gateway_webhook_endpoint(
    gateway: str,
    request: Request,
    reconciler: WebhookReconciler = Depends(get_reconciler),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """
    Receive a gateway webhook.

    Every delivery for a supported gateway is acknowledged with 200,
    including duplicates, orphans and unrecognized events, so providers
    stop retrying. Only an unsupported gateway is rejected (400).
    Not subject to the per-IP rate limits.
    """
    raw = await request.body()
    try:
        payload: Any = json.loads(raw) if raw else None
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning(f"{gateway} webhook body is not valid JSON")
        payload = None

    result = await reconciler.handle_webhook(db, gateway, payload)

    return {"success": True, **result.to_dict()}
