"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient

from planner_api.billing.registry import register_provider
from planner_api.dependencies import (
    get_audit_sink,
    get_ledger,
    get_report_store,
    get_token_issuer,
    reset_dependencies,
)
from planner_api.rate_limiter import NoOpRateLimiter
from tests.helpers import TEST_JWT_SECRET, FakeProvider, build_document


_CLEARED_ENV = (
    "AUDIT_FILE_DIR",
    "BETA_CODE",
    "COUPON_CODES",
    "COUPON_DISCOUNT_AMOUNT",
    "DATABASE_URL",
    "DEFAULT_PAYMENT_PROVIDER",
    "KRYPTOGO_API_BASE_URL",
    "KRYPTOGO_API_SECRET",
    "KRYPTOGO_CLIENT_ID",
    "KRYPTOGO_WEBHOOK_SECRET",
    "LEDGER_BACKEND",
    "LEMON_SQUEEZY_API_KEY",
    "LEMON_SQUEEZY_STORE_ID",
    "LEMON_SQUEEZY_VARIANT_ID",
    "LEMON_SQUEEZY_WEBHOOK_SECRET",
    "REDIS_URL",
    "WEBHOOK_SECRET",
)


@pytest.fixture(autouse=True)
def planner_env(monkeypatch):
    """Deterministic environment + fresh service singletons for every test."""
    for name in _CLEARED_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PLANNER_ENV", "test")
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("PLANNER_JSON_LOGS", "false")

    reset_dependencies()
    yield
    reset_dependencies()


@pytest.fixture
def app():
    from planner_api.main import create_app

    test_app = create_app()
    test_app.state.rate_limiter = NoOpRateLimiter()
    return test_app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def fake_provider() -> FakeProvider:
    provider = FakeProvider("kryptogo")
    register_provider(provider)
    return provider


@pytest.fixture
def report_store():
    return get_report_store()


@pytest.fixture
def ledger():
    return get_ledger()


@pytest.fixture
def audit_sink():
    return get_audit_sink()


@pytest.fixture
def issuer():
    return get_token_issuer()


@pytest.fixture
def stored_report(report_store):
    """Report with 10 timeline periods and 3 next steps."""
    return report_store.create({"studentName": "Ada", "currentGrade": "11th"}, build_document(10, 3))
