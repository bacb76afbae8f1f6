"""
PayBridge Exception Hierarchy

Every error carries a stable error code and the HTTP status it maps to.
The FastAPI exception handlers in main.py render them via to_dict().
"""
from typing import Optional, Dict, Any


class PayBridgeError(Exception):
    """
    Base exception for all PayBridge errors.

    Subclasses fix the error_code and status_code; callers supply the
    message and optional structured details.
    """

    status_code: int = 500

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API error response format."""
        return {
            "success": False,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


# ============================================================================
# Client input (4xx)
# ============================================================================

class ClientInputError(PayBridgeError):
    """Request is well-formed JSON but semantically unusable."""

    status_code = 400

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: str = "client:invalid_input"
    ):
        super().__init__(error_code, message, details)


class UnsupportedGatewayError(ClientInputError):
    """
    Gateway identifier is not registered with the router.

    Raised for both payment creation and webhook delivery paths.
    """

    def __init__(self, gateway_id: str, supported: Optional[list] = None):
        super().__init__(
            f"Unsupported payment gateway: {gateway_id}",
            {"gateway": gateway_id, "supported_gateways": supported or []},
            error_code="gateway:unsupported"
        )


class InvalidPaymentRequestError(ClientInputError):
    """Amount or currency failed the orchestrator's invariant check."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, error_code="payment:invalid_request")


class InvalidUpiIdError(ClientInputError):
    """UPI handle does not look like name@bank."""

    def __init__(self, upi_id: str):
        super().__init__(
            "Invalid UPI ID format",
            {"upi_id": upi_id},
            error_code="payout:invalid_upi_id"
        )


class InvalidTransitionError(ClientInputError):
    """Requested status change is not in the transition table."""

    def __init__(self, from_status: str, to_status: str):
        super().__init__(
            f"Transition {from_status} -> {to_status} is not permitted",
            {"from_status": from_status, "to_status": to_status},
            error_code="transaction:invalid_transition"
        )


class UnauthorizedError(PayBridgeError):
    """Missing, malformed or expired bearer credential."""

    status_code = 401

    def __init__(self, message: str = "Access token required"):
        super().__init__("auth:unauthorized", message)


class ForbiddenError(PayBridgeError):
    """Authenticated principal lacks the required role."""

    status_code = 403

    def __init__(self, role: str, allowed_roles: Optional[list] = None):
        super().__init__(
            "auth:forbidden",
            "Insufficient permissions",
            {"role": role, "allowed_roles": allowed_roles or []}
        )


class NotFoundError(PayBridgeError):
    status_code = 404


class TransactionNotFoundError(NotFoundError):
    def __init__(self, transaction_id: str):
        super().__init__(
            "transaction:not_found",
            "Transaction not found",
            {"transaction_id": transaction_id}
        )


class PayoutNotFoundError(NotFoundError):
    def __init__(self):
        # Never echo the token back
        super().__init__("payout:not_found", "Payout not found")


class ConflictError(PayBridgeError):
    status_code = 409


class TransactionAlreadyFinalizedError(ConflictError):
    """
    Transition attempted on a terminal Transaction.

    Distinguishes an idempotent replay (or a losing concurrent update)
    from a genuine new transition.
    """

    def __init__(self, transaction_id: str, current_status: str, attempted_status: str):
        self.transaction_id = transaction_id
        self.current_status = current_status
        self.attempted_status = attempted_status
        super().__init__(
            "transaction:already_finalized",
            f"Transaction {transaction_id} is already {current_status}",
            {
                "transaction_id": transaction_id,
                "current_status": current_status,
                "attempted_status": attempted_status,
            }
        )


class PayoutAlreadySubmittedError(ConflictError):
    def __init__(self, payout_id: str, status: str):
        super().__init__(
            "payout:already_submitted",
            "Payout token has already been used",
            {"payout_id": payout_id, "status": status}
        )


class PayoutTokenExpiredError(PayBridgeError):
    status_code = 410

    def __init__(self, payout_id: str):
        super().__init__(
            "payout:token_expired",
            "Payout token has expired",
            {"payout_id": payout_id}
        )


class RateLimitExceededError(PayBridgeError):
    status_code = 429

    def __init__(self, message: str, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            "rate_limit:exceeded",
            message,
            {"retry_after_seconds": retry_after_seconds}
        )


# ============================================================================
# Gateway / system
# ============================================================================

class GatewayFailure(PayBridgeError):
    """
    Provider rejected the request.

    Raised inside adapters only; the adapter converts it into a failed
    PaymentOutcome so it never reaches the HTTP layer as an exception.
    """

    status_code = 400

    def __init__(self, gateway: str, error_code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.gateway = gateway
        super().__init__(error_code, message, {"gateway": gateway, **(details or {})})


class SystemFault(PayBridgeError):
    """Store unavailable or other internal failure. Details stay server-side."""

    status_code = 500

    def __init__(self, message: str = "Internal server error", details: Optional[Dict[str, Any]] = None):
        super().__init__("system:fault", message, details)
