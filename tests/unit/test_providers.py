"""Provider adapters against a mocked HTTP transport."""

import json
from decimal import Decimal

import httpx
import pytest

from planner_api.billing.kryptogo import KryptoGOProvider
from planner_api.billing.ledger import PaymentRecord, PaymentStatus, utcnow
from planner_api.billing.lemonsqueezy import LemonSqueezyProvider
from planner_api.billing.registry import get_provider, register_provider, resolve_provider_name
from planner_api.errors import ConfigurationError, UpstreamError, ValidationError


@pytest.fixture
def lemonsqueezy_env(monkeypatch):
    monkeypatch.setenv("LEMON_SQUEEZY_API_KEY", "ls_test_key")
    monkeypatch.setenv("LEMON_SQUEEZY_STORE_ID", "111")
    monkeypatch.setenv("LEMON_SQUEEZY_VARIANT_ID", "222")


@pytest.fixture
def kryptogo_env(monkeypatch):
    monkeypatch.setenv("KRYPTOGO_CLIENT_ID", "client_1")
    monkeypatch.setenv("KRYPTOGO_API_SECRET", "kg_secret")
    monkeypatch.setenv("KRYPTOGO_API_BASE_URL", "https://kryptogo.test")


def _record(provider: str, amount: str = "10.00", currency: str = "USD", reference=None) -> PaymentRecord:
    now = utcnow()
    return PaymentRecord(
        id="payment_abc",
        report_id="report_1",
        provider=provider,
        amount=Decimal(amount),
        currency=currency,
        status=PaymentStatus.PENDING,
        provider_reference=reference,
        created_at=now,
        updated_at=now,
    )


def _order(status="paid", total=1000, currency="USD", variant_id=222) -> dict:
    return {
        "data": {
            "id": "9001",
            "attributes": {
                "status": status,
                "total": total,
                "currency": currency,
                "first_order_item": {"variant_id": variant_id},
            },
        }
    }


# ----------------------------------------------------------------------
# Lemon Squeezy
# ----------------------------------------------------------------------


def test_lemonsqueezy_requires_credentials(monkeypatch):
    with pytest.raises(ConfigurationError):
        LemonSqueezyProvider()

    monkeypatch.setenv("LEMON_SQUEEZY_API_KEY", "key")
    monkeypatch.setenv("LEMON_SQUEEZY_STORE_ID", "store-abc")
    monkeypatch.setenv("LEMON_SQUEEZY_VARIANT_ID", "222")
    with pytest.raises(ConfigurationError):
        LemonSqueezyProvider()


@pytest.mark.asyncio
async def test_lemonsqueezy_checkout(lemonsqueezy_env):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            201,
            json={"data": {"id": "chk_1", "attributes": {"url": "https://shop.test/checkout/chk_1"}}},
        )

    provider = LemonSqueezyProvider(transport=httpx.MockTransport(handler))
    intent = await provider.create_intent("payment_abc", "report_1", Decimal("10.00"), "USD")

    assert intent.provider_reference == "chk_1"
    assert intent.payment_url_or_address == "https://shop.test/checkout/chk_1"
    assert seen["url"] == "https://api.lemonsqueezy.com/v1/checkouts"
    assert seen["auth"] == "Bearer ls_test_key"
    attributes = seen["body"]["data"]["attributes"]
    assert attributes["custom_price"] == 1000
    assert attributes["checkout_data"]["custom"] == {"payment_id": "payment_abc", "report_id": "report_1"}
    relationships = seen["body"]["data"]["relationships"]
    assert relationships["variant"]["data"]["id"] == "222"


@pytest.mark.asyncio
async def test_lemonsqueezy_rejects_unsupported_currency(lemonsqueezy_env):
    provider = LemonSqueezyProvider(transport=httpx.MockTransport(lambda r: httpx.Response(500)))

    with pytest.raises(ValidationError):
        await provider.create_intent("payment_abc", "report_1", Decimal("10.00"), "USDT")


@pytest.mark.asyncio
async def test_lemonsqueezy_malformed_checkout_response(lemonsqueezy_env):
    provider = LemonSqueezyProvider(transport=httpx.MockTransport(lambda r: httpx.Response(201, json={"data": {}})))

    with pytest.raises(UpstreamError):
        await provider.create_intent("payment_abc", "report_1", Decimal("10.00"), "USD")


@pytest.mark.asyncio
async def test_lemonsqueezy_verify_paid_order(lemonsqueezy_env):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/orders/9001"
        return httpx.Response(200, json=_order())

    provider = LemonSqueezyProvider(transport=httpx.MockTransport(handler))
    result = await provider.verify(_record("lemonsqueezy"), "9001")

    assert result.confirmed is True
    assert result.provider_reference == "9001"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "order,expected_status",
    [
        (_order(status="pending"), "pending"),
        (_order(total=1), "amount_mismatch"),
        (_order(currency="EUR"), "amount_mismatch"),
        (_order(variant_id=999), "paid"),
    ],
)
async def test_lemonsqueezy_verify_unconfirmed(lemonsqueezy_env, order, expected_status):
    provider = LemonSqueezyProvider(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=order)))

    result = await provider.verify(_record("lemonsqueezy"), "9001")

    assert result.confirmed is False
    assert result.provider_status == expected_status


@pytest.mark.asyncio
async def test_lemonsqueezy_rejected_credentials_are_configuration_error(lemonsqueezy_env):
    provider = LemonSqueezyProvider(transport=httpx.MockTransport(lambda r: httpx.Response(401)))

    with pytest.raises(ConfigurationError):
        await provider.verify(_record("lemonsqueezy"), "9001")


@pytest.mark.asyncio
async def test_lemonsqueezy_unknown_order_is_upstream_error(lemonsqueezy_env):
    provider = LemonSqueezyProvider(transport=httpx.MockTransport(lambda r: httpx.Response(404)))

    with pytest.raises(UpstreamError) as exc_info:
        await provider.verify(_record("lemonsqueezy"), "missing")
    assert exc_info.value.status_code == 502


# ----------------------------------------------------------------------
# KryptoGO
# ----------------------------------------------------------------------


def test_kryptogo_requires_credentials():
    with pytest.raises(ConfigurationError):
        KryptoGOProvider()


@pytest.mark.asyncio
async def test_kryptogo_intent(kryptogo_env):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = dict(request.headers)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "data": {
                    "payment_intent_id": "pi_1",
                    "payment_address": "0xabc",
                    "payment_url": None,
                }
            },
        )

    provider = KryptoGOProvider(transport=httpx.MockTransport(handler))
    intent = await provider.create_intent("payment_abc", "report_1", Decimal("10.00"), "USDT")

    assert intent.provider_reference == "pi_1"
    assert intent.payment_url_or_address == "0xabc"
    assert seen["url"] == "https://kryptogo.test/v1/payment/intent"
    assert seen["headers"]["x-client-id"] == "client_1"
    assert seen["headers"]["x-api-secret"] == "kg_secret"
    assert seen["body"] == {
        "amount": "10.00",
        "currency": "USDT",
        "metadata": {"payment_id": "payment_abc", "report_id": "report_1"},
    }


@pytest.mark.asyncio
async def test_kryptogo_intent_without_address_is_upstream_error(kryptogo_env):
    response = {"data": {"payment_intent_id": "pi_1"}}
    provider = KryptoGOProvider(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=response)))

    with pytest.raises(UpstreamError):
        await provider.create_intent("payment_abc", "report_1", Decimal("10.00"), "USDT")


@pytest.mark.asyncio
async def test_kryptogo_verify_matching_tx_hash(kryptogo_env):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/payment/intent/pi_1"
        return httpx.Response(200, json={"data": {"status": "success", "tx_hash": "0xABCDEF"}})

    provider = KryptoGOProvider(transport=httpx.MockTransport(handler))
    result = await provider.verify(_record("kryptogo", currency="USDT", reference="pi_1"), " 0xabcdef ")

    assert result.confirmed is True
    assert result.provider_reference == "pi_1"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "intent",
    [
        {"status": "success", "tx_hash": "0xother"},
        {"status": "pending", "tx_hash": "0xabcdef"},
        {"status": "success"},
    ],
)
async def test_kryptogo_verify_unconfirmed(kryptogo_env, intent):
    provider = KryptoGOProvider(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"data": intent})))

    result = await provider.verify(_record("kryptogo", currency="USDT", reference="pi_1"), "0xabcdef")

    assert result.confirmed is False


@pytest.mark.asyncio
async def test_kryptogo_verify_without_intent(kryptogo_env):
    provider = KryptoGOProvider(transport=httpx.MockTransport(lambda r: httpx.Response(500)))

    result = await provider.verify(_record("kryptogo", currency="USDT"), "0xabcdef")

    assert result.confirmed is False
    assert result.provider_status == "no_intent"


@pytest.mark.asyncio
async def test_timeout_maps_to_upstream_timeout(kryptogo_env):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    provider = KryptoGOProvider(transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamError) as exc_info:
        await provider.get_intent("pi_1")
    assert exc_info.value.timeout is True
    assert exc_info.value.status_code == 504


@pytest.mark.asyncio
async def test_network_error_maps_to_upstream_error(kryptogo_env):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = KryptoGOProvider(transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamError) as exc_info:
        await provider.get_intent("pi_1")
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_server_error_maps_to_upstream_error(kryptogo_env):
    provider = KryptoGOProvider(transport=httpx.MockTransport(lambda r: httpx.Response(503)))

    with pytest.raises(UpstreamError):
        await provider.get_intent("pi_1")


def test_provider_timeout_must_be_positive(monkeypatch, kryptogo_env):
    monkeypatch.setenv("PROVIDER_HTTP_TIMEOUT_SECONDS", "0")

    with pytest.raises(ConfigurationError):
        KryptoGOProvider()


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------


def test_resolve_provider_name(monkeypatch):
    assert resolve_provider_name(None) == "kryptogo"
    assert resolve_provider_name(" LemonSqueezy ") == "lemonsqueezy"

    monkeypatch.setenv("DEFAULT_PAYMENT_PROVIDER", "lemonsqueezy")
    assert resolve_provider_name(None) == "lemonsqueezy"

    with pytest.raises(ValidationError):
        resolve_provider_name("paypal")


def test_get_provider_is_cached(kryptogo_env):
    assert get_provider("kryptogo") is get_provider("kryptogo")


def test_register_provider_overrides_factory(fake_provider):
    assert get_provider("kryptogo") is fake_provider
    register_provider(fake_provider)
    assert get_provider(None) is fake_provider
