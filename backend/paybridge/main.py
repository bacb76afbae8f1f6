"""
PayBridge Backend - FastAPI Application

Payment aggregation server: routes payments to Stripe, PayPal or Razorpay,
tracks each transaction, and reconciles gateway webhooks.
"""
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from .config import Settings, settings
from .exceptions import PayBridgeError
from .db.init_db import AsyncSessionLocal, initialize_database
from .gateways import build_gateway_router
from .services.notification_service import TransactionEventHub
from .services.payment_orchestrator import PaymentOrchestrator
from .services.rate_limiter import build_rate_limiters
from .services.scheduler import ReconciliationScheduler
from .services.webhook_reconciler import WebhookReconciler
from .api.dependencies import general_rate_limit
from .api.auth import router as auth_router
from .api.payments import router as payments_router
from .api.payouts import router as payouts_router
from .api.reconciliation import router as reconciliation_router
from .api.transactions import router as transactions_router

APP_VERSION = "1.0.0"


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def attach_services(app: FastAPI, app_settings: Settings, session_factory=AsyncSessionLocal) -> None:
    """
    Build the gateway adapters and services once and hold them on app.state.
    """
    gateway_router = build_gateway_router(app_settings)
    event_hub = TransactionEventHub()
    reconciler = WebhookReconciler(gateway_router, event_hub, app_settings.gateway_timeout_seconds)

    app.state.settings = app_settings
    app.state.gateway_router = gateway_router
    app.state.event_hub = event_hub
    app.state.orchestrator = PaymentOrchestrator(gateway_router, app_settings.gateway_timeout_seconds, event_hub)
    app.state.reconciler = reconciler
    app.state.rate_limiters = build_rate_limiters(app_settings)
    app.state.scheduler = ReconciliationScheduler(app_settings, session_factory, reconciler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: Initialize database, build adapters and services, start sweep
    - Shutdown: Stop the scheduler
    """
    # Startup
    logger.info("Starting PayBridge backend server...")
    logger.info(f"Environment: {settings.environment}")

    try:
        await initialize_database()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    attach_services(app, settings)
    logger.info(f"Gateways available: {app.state.gateway_router.supported_gateways}")

    app.state.scheduler.start()

    logger.info("Server startup complete")

    yield

    # Shutdown
    logger.info("Shutting down PayBridge backend server...")

    try:
        app.state.scheduler.shutdown(wait=True)
    except Exception as e:
        logger.error(f"Error during scheduler shutdown: {e}")


# Initialize FastAPI application
app = FastAPI(
    title="PayBridge API",
    description="Payment aggregation across Stripe, PayPal and Razorpay",
    version=APP_VERSION,
    lifespan=lifespan,
)

# Applied per router so gateway webhooks are never throttled
rate_limited = [Depends(general_rate_limit)]


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PayBridgeError)
async def paybridge_error_handler(request: Request, exc: PayBridgeError):
    """
    Render PayBridge errors with the standard response format.

    The HTTP status comes from the exception class; 429 responses carry
    Retry-After.
    """
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"PayBridge error: {exc.error_code} - {exc.message}", extra={"details": exc.details})

    headers = {}
    retry_after = getattr(exc, "retry_after_seconds", None)
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Schema validation failures are client errors (400), not 422."""
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", ""),
        }
        for error in exc.errors()
    ]
    logger.warning(f"Request validation failed: {errors}")

    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error_code": "validation_error",
            "message": "Validation failed",
            "details": {"errors": errors},
        },
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """
    Handle validation errors with user-friendly messages.

    Used for input validation failures not caught by Pydantic.
    """
    logger.warning(f"Validation error: {str(exc)}")

    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error_code": "validation_error",
            "message": str(exc),
            "details": {}
        },
    )


@app.exception_handler(Exception)
async def general_error_handler(request: Request, exc: Exception):
    """
    Catch-all handler for unexpected errors.

    Logs full exception for debugging but returns generic message to client.
    """
    logger.error(f"Unexpected error: {str(exc)}", exc_info=True)

    app_settings: Settings = getattr(request.app.state, "settings", settings)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error_code": "internal_error",
            "message": "An unexpected error occurred",
            "details": {} if app_settings.is_production else {"error_type": type(exc).__name__}
        },
    )


# Health check endpoint
@app.get("/api/health", dependencies=rate_limited)
async def health_check(request: Request):
    """
    Health check endpoint for monitoring and load balancers.

    Returns:
        Server status, version and supported gateways
    """
    return {
        "status": "healthy",
        "version": APP_VERSION,
        "environment": request.app.state.settings.environment,
        "gateways": request.app.state.gateway_router.supported_gateways,
    }


# Include API routers
app.include_router(auth_router, prefix="/api/auth", tags=["Auth"], dependencies=rate_limited)
app.include_router(transactions_router, prefix="/api/payments/transactions", tags=["Transactions"], dependencies=rate_limited)
app.include_router(payments_router, prefix="/api/payments", tags=["Payments"])
app.include_router(payouts_router, prefix="/api/payouts", tags=["Payouts"], dependencies=rate_limited)
app.include_router(reconciliation_router, prefix="/api/reconciliation", tags=["Reconciliation"], dependencies=rate_limited)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "paybridge.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
