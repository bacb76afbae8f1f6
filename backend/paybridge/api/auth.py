"""
Auth API Endpoints

Development token issuer. Production tokens come from the upstream
identity provider, so this route is disabled when environment=production.
"""
from fastapi import APIRouter, Depends
from typing import Any, Dict
import logging

from ..config import Settings
from ..exceptions import NotFoundError
from ..models.payments import DevTokenRequest
from ..services.identity_service import issue_access_token
from .dependencies import auth_rate_limit, get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/token", dependencies=[Depends(auth_rate_limit)])
async def issue_token_endpoint(
    body: DevTokenRequest,
    app_settings: Settings = Depends(get_settings)
) -> Dict[str, Any]:
    """
    Issue a bearer token for {ownerId, role}.

    Example:
        POST /api/auth/token
        {"ownerId": "merchant_001", "role": "merchant"}
    """
    if app_settings.is_production:
        raise NotFoundError("auth:token_issuer_disabled", "Token issuer is not available")

    token = issue_access_token(body.owner_id, body.role, app_settings)
    logger.info(f"Issued development token for {body.owner_id} ({body.role})")

    return {
        "success": True,
        "accessToken": token,
        "tokenType": "bearer",
        "expiresInMinutes": app_settings.access_token_expire_minutes,
    }
