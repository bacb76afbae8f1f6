"""
Shared FastAPI dependencies.

Services are built once in the application lifespan and held on
app.state; these helpers hand them to the route functions.
"""
from typing import Callable, Optional
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config import Settings
from ..exceptions import UnauthorizedError
from ..services.identity_service import Principal, decode_access_token, require_role
from ..services.notification_service import TransactionEventHub
from ..services.payment_orchestrator import PaymentOrchestrator
from ..services.webhook_reconciler import WebhookReconciler

bearer_scheme = HTTPBearer(auto_error=False)


# ============================================================================
# Services
# ============================================================================

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_orchestrator(request: Request) -> PaymentOrchestrator:
    return request.app.state.orchestrator


def get_reconciler(request: Request) -> WebhookReconciler:
    return request.app.state.reconciler


def get_event_hub(request: Request) -> TransactionEventHub:
    return request.app.state.event_hub


# ============================================================================
# Identity
# ============================================================================

async def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    app_settings: Settings = Depends(get_settings)
) -> Principal:
    """
    Resolve the bearer token into a Principal.

    Raises:
        UnauthorizedError: no token, or token invalid/expired
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Access token required")
    return decode_access_token(credentials.credentials, app_settings)


def require_roles(*roles: str) -> Callable:
    """Dependency factory: authenticated principal with one of roles."""

    async def checker(principal: Principal = Depends(get_principal)) -> Principal:
        return require_role(principal, roles)

    return checker


# ============================================================================
# Rate limiting
# ============================================================================

def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def rate_limit(window: str) -> Callable:
    """Dependency factory counting the request against a named window."""

    async def limiter(request: Request) -> None:
        request.app.state.rate_limiters[window].hit(client_key(request))

    return limiter


general_rate_limit = rate_limit("general")
auth_rate_limit = rate_limit("auth")
payment_rate_limit = rate_limit("payment")
