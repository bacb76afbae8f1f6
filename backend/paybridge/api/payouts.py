"""
Payouts API Endpoints

Merchants create payouts; recipients redeem the payout token by submitting
a UPI handle. The token is the only credential for the public endpoints.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict
import logging

from ..config import Settings
from ..db.init_db import get_db
from ..models.payouts import CreatePayoutRequest, SubmitUpiRequest
from ..services import payout_service
from ..services.identity_service import PAYMENT_CREATE_ROLES, Principal
from .dependencies import get_settings, payment_rate_limit, require_roles

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", dependencies=[Depends(payment_rate_limit)])
async def create_payout_endpoint(
    body: CreatePayoutRequest,
    request: Request,
    principal: Principal = Depends(require_roles(*PAYMENT_CREATE_ROLES)),
    app_settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    """
    Create a payout and return its single-use submission token.

    Request Body:
        {amount, currency?, description?, metadata?}

    Returns:
        201 {success, payout, token, expiresAt, submitUrl}
    """
    payout = await payout_service.create_payout(
        db,
        owner_id=principal.owner_id,
        amount=body.amount,
        currency=body.currency or app_settings.payout_default_currency,
        ttl_minutes=app_settings.payout_token_ttl_minutes,
        description=body.description,
        metadata=body.metadata,
    )

    submit_url = str(request.url_for("submit_payout_upi_endpoint", token=payout.token))

    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "payout": payout.to_api(include_token=False),
            "token": payout.token,
            "expiresAt": payout.expires_at.isoformat(),
            "submitUrl": submit_url,
        },
    )


@router.get("/{token}")
async def get_payout_endpoint(
    token: str,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Public payout summary for the recipient; never includes the token or owner."""
    payout = await payout_service.get_payout_by_token(db, token)
    return {"success": True, "payout": payout.to_api(include_token=False)}


@router.post("/{token}/upi")
async def submit_payout_upi_endpoint(
    token: str,
    body: SubmitUpiRequest,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """
    Redeem the payout token with a UPI handle.

    Returns:
        200 completed payout
        400 bad UPI handle, 404 unknown token, 409 already used, 410 expired
    """
    payout = await payout_service.submit_payout_upi(db, token, body.upi_id)
    return {
        "success": True,
        "message": "UPI ID submitted successfully",
        "payout": payout.to_api(include_token=False),
    }
