"""
Identity Service

Bearer-token handling for the payment API. Tokens are HS256 JWTs carrying
the principal's id (sub) and role. Registration and password login are
handled by the upstream identity provider; this module only issues tokens
for development and verifies them on every request.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, Optional
import logging

from jose import JWTError, jwt

from ..config import Settings
from ..exceptions import ForbiddenError, UnauthorizedError
from ..time_utils import utcnow

logger = logging.getLogger(__name__)

ROLES = ("admin", "merchant", "vendor", "user")

# Who may do what
PAYMENT_CREATE_ROLES = ("merchant", "vendor", "admin")
TRANSACTION_LIST_ROLES = ("admin", "merchant", "vendor")
TRANSACTION_READ_ROLES = ("admin", "merchant", "vendor", "user")
ELEVATED_ROLES = ("admin",)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, passed explicitly into service calls."""
    owner_id: str
    role: str

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES

    def visible_owner(self) -> Optional[str]:
        """Owner filter for reads: None for elevated roles (sees everything)."""
        return None if self.is_elevated else self.owner_id


def issue_access_token(
    owner_id: str,
    role: str,
    app_settings: Settings,
    expires_minutes: Optional[int] = None
) -> str:
    """
    Create a signed access token.

    Args:
        owner_id: principal identifier (becomes the "sub" claim)
        role: one of ROLES
        app_settings: provides secret, algorithm and default lifetime
        expires_minutes: override lifetime; negative values mint expired tokens
    """
    if role not in ROLES:
        raise ValueError(f"Role must be one of: {', '.join(ROLES)}")

    minutes = app_settings.access_token_expire_minutes if expires_minutes is None else expires_minutes
    claims = {
        "sub": owner_id,
        "role": role,
        "exp": utcnow() + timedelta(minutes=minutes),
    }
    return jwt.encode(claims, app_settings.jwt_secret, algorithm=app_settings.jwt_algorithm)


def decode_access_token(token: str, app_settings: Settings) -> Principal:
    """
    Verify a bearer token and extract the principal.

    Raises:
        UnauthorizedError: bad signature, expired, or missing claims
    """
    try:
        payload = jwt.decode(token, app_settings.jwt_secret, algorithms=[app_settings.jwt_algorithm])
    except JWTError as e:
        logger.warning(f"Invalid or expired token: {e}")
        raise UnauthorizedError("Invalid or expired token")

    owner_id = payload.get("sub")
    role = payload.get("role")
    if not owner_id or role not in ROLES:
        logger.warning("Token is missing subject or carries an unknown role")
        raise UnauthorizedError("Invalid token claims")

    return Principal(owner_id=owner_id, role=role)


def require_role(principal: Principal, allowed_roles: Iterable[str]) -> Principal:
    allowed = list(allowed_roles)
    if principal.role not in allowed:
        raise ForbiddenError(principal.role, allowed)
    return principal
