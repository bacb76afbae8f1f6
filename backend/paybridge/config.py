"""
PayBridge Configuration Module

Loads environment variables for the payment aggregation backend.
"""
from pydantic import model_validator
from pydantic_settings import BaseSettings
from typing import List, Literal

# Development-only signing key; production must override JWT_SECRET
DEFAULT_JWT_SECRET = "paybridge_jwt_secret_change_me"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Notes:
    - Gateway credentials are only echoed into simulated provider responses
    - Rate limit windows mirror the general / auth / payment split
    - The status-poll reconciliation sweep is opt-in
    """

    # Environment
    environment: Literal["development", "test", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Database
    database_path: str = "./paybridge.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    allowed_origins: str = "http://localhost:3000,http://localhost:8000"

    # Bearer tokens (HS256 JWT)
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    # Gateway calls
    gateway_timeout_seconds: float = 10.0
    # Issued references each adapter remembers for status polls
    gateway_status_cache_size: int = 10_000

    stripe_secret_key: str = "sk_test_paybridge"
    stripe_publishable_key: str = "pk_test_paybridge"
    paypal_client_id: str = "paypal_client_id"
    paypal_client_secret: str = "paypal_client_secret"
    paypal_mode: Literal["sandbox", "live"] = "sandbox"
    razorpay_key_id: str = "rzp_test_paybridge"
    razorpay_key_secret: str = "rzp_secret_paybridge"

    # Rate limiting (fixed window, keyed by client IP)
    rate_limit_window_seconds: int = 15 * 60
    rate_limit_max_requests: int = 100
    auth_rate_limit_window_seconds: int = 15 * 60
    auth_rate_limit_max_requests: int = 5
    payment_rate_limit_window_seconds: int = 60
    payment_rate_limit_max_requests: int = 10

    # Payouts
    payout_token_ttl_minutes: int = 60
    payout_default_currency: str = "INR"

    # Status-poll reconciliation sweep
    reconciliation_sweep_enabled: bool = False
    reconciliation_sweep_interval_minutes: int = 15
    reconciliation_stale_after_minutes: int = 60
    reconciliation_sweep_batch_size: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = False

    @model_validator(mode="after")
    def check_production_secrets(self) -> "Settings":
        """Refuse to run in production with the built-in signing key."""
        if self.is_production and self.jwt_secret == DEFAULT_JWT_SECRET:
            raise ValueError("JWT_SECRET must be set to a non-default value in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


# Global settings instance
settings = Settings()
