"""
Configuration tests.
"""
import pytest
from pydantic import ValidationError

from paybridge.config import DEFAULT_JWT_SECRET, Settings
from paybridge.gateways import build_gateway_router


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("JWT_SECRET", raising=False)
    monkeypatch.delenv("ENVIRONMENT", raising=False)


def test_production_refuses_default_jwt_secret():
    with pytest.raises(ValidationError) as exc_info:
        Settings(_env_file=None, environment="production")

    assert "JWT_SECRET" in str(exc_info.value)


def test_production_accepts_configured_secret():
    app_settings = Settings(_env_file=None, environment="production", jwt_secret="rotated-signing-key")

    assert app_settings.is_production
    assert app_settings.jwt_secret != DEFAULT_JWT_SECRET


def test_development_allows_default_secret():
    app_settings = Settings(_env_file=None, environment="development")

    assert app_settings.jwt_secret == DEFAULT_JWT_SECRET


def test_adapters_use_configured_tracking_bound():
    app_settings = Settings(_env_file=None, gateway_status_cache_size=25)

    router = build_gateway_router(app_settings)

    for gateway_id in router.supported_gateways:
        assert router.resolve(gateway_id).max_tracked_references == 25
