"""Webhook error semantics and reconciliation over HTTP.

Status taxonomy:
  (A) Invalid JSON / non-object payload         → 400
  (B) Signature missing (strict) or wrong       → 401 (never 500)
  (C) Our misconfig (no webhook secret)         → 500 CONFIGURATION_ERROR
  (D) Processing error after verification       → 200 + ERROR log
  Unknown events / unknown payments             → 200, no ledger change
"""

from unittest.mock import patch

import pytest

from planner_api.audit import ENTITLEMENT_GRANTED
from planner_api.billing.ledger import PaymentStatus
from planner_api.billing.registry import register_provider
from planner_api.billing.webhook_verifier import SignaturePolicy, WebhookVerifier
from planner_api.dependencies import get_webhook_verifier
from tests.helpers import FakeProvider, LogCapture, json_body, sign

KRYPTOGO_SECRET = "kg_webhook_secret"
LEMONSQUEEZY_SECRET = "ls_webhook_secret"


@pytest.fixture
def strict_app(app, monkeypatch):
    monkeypatch.setenv("KRYPTOGO_WEBHOOK_SECRET", KRYPTOGO_SECRET)
    monkeypatch.setenv("LEMON_SQUEEZY_WEBHOOK_SECRET", LEMONSQUEEZY_SECRET)
    app.dependency_overrides[get_webhook_verifier] = lambda: WebhookVerifier(SignaturePolicy.strict())
    return app


@pytest.fixture
def pending_payment(client, fake_provider, stored_report):
    body = {"amount": "10.00", "currency": "USDT", "reportId": stored_report.id}
    payment_id = client.post("/payment/initialize", json=body).json()["paymentId"]
    return payment_id


def _kryptogo_post(client, payload, secret=KRYPTOGO_SECRET, path="/payment/webhook"):
    raw = json_body(payload)
    return client.post(
        path,
        content=raw,
        headers={"Content-Type": "application/json", "X-KryptoGO-Signature": sign(raw, secret)},
    )


class TestWebhookErrorSemantics:
    def test_invalid_json_is_400(self, strict_app, client):
        with LogCapture() as capture:
            response = client.post(
                "/payment/webhook",
                content=b"{not json",
                headers={"X-KryptoGO-Signature": sign(b"{not json", KRYPTOGO_SECRET)},
            )

        assert response.status_code == 400
        invalid = [log for log in capture.logs() if log.get("event") == "webhook.invalid_json"]
        assert invalid and len(invalid[0]["payload_hash"]) == 64

    def test_non_object_json_is_400(self, strict_app, client):
        raw = b"[1, 2, 3]"
        response = client.post("/payment/webhook", content=raw, headers={"X-KryptoGO-Signature": sign(raw, KRYPTOGO_SECRET)})

        assert response.status_code == 400

    def test_wrong_signature_is_401(self, strict_app, client, pending_payment, ledger):
        record = ledger.find_by_id(pending_payment)

        with LogCapture() as capture:
            response = _kryptogo_post(
                client,
                {"payment_intent_id": record.provider_reference, "status": "success"},
                secret="forged-secret",
            )

        assert response.status_code == 401
        assert response.json()["errorCode"] == "WEBHOOK_SIGNATURE_INVALID"
        assert ledger.find_by_id(pending_payment).status == PaymentStatus.PENDING
        assert "webhook.signature_invalid" in capture.events()

    def test_missing_signature_is_401_under_strict_policy(self, strict_app, client):
        response = client.post("/payment/webhook", content=json_body({"status": "success"}))

        assert response.status_code == 401

    def test_missing_secret_is_500(self, app, client):
        app.dependency_overrides[get_webhook_verifier] = lambda: WebhookVerifier(SignaturePolicy.strict())

        with LogCapture() as capture:
            response = _kryptogo_post(client, {"payment_intent_id": "pi_1", "status": "success"})

        assert response.status_code == 500
        assert response.json()["errorCode"] == "CONFIGURATION_ERROR"
        assert "webhook.provider_misconfig" in capture.events()

    def test_processing_error_after_verification_is_200(self, strict_app, client, pending_payment, ledger):
        record = ledger.find_by_id(pending_payment)

        with patch(
            "planner_api.billing.reconciliation.PaymentService.apply_webhook_event",
            side_effect=RuntimeError("ledger unavailable"),
        ):
            with LogCapture() as capture:
                response = _kryptogo_post(client, {"payment_intent_id": record.provider_reference, "status": "success"})

        assert response.status_code == 200
        assert response.json() == {"received": True, "outcome": "error"}
        errors = [log for log in capture.logs() if log.get("event") == "webhook.processing_failed"]
        assert errors and errors[0]["level"] == "ERROR"

    def test_unknown_provider_path_is_404(self, strict_app, client):
        response = client.post("/payment/webhook/paypal", content=json_body({}))

        assert response.status_code == 404

    def test_relaxed_policy_accepts_unsigned_in_test_env(self, client, pending_payment, ledger):
        record = ledger.find_by_id(pending_payment)

        response = client.post(
            "/payment/webhook",
            content=json_body({"payment_intent_id": record.provider_reference, "status": "success"}),
        )

        assert response.status_code == 200
        assert ledger.find_by_id(pending_payment).status == PaymentStatus.COMPLETED

    def test_unset_env_rejects_unsigned(self, client, pending_payment, ledger, monkeypatch):
        monkeypatch.delenv("PLANNER_ENV")
        monkeypatch.setenv("KRYPTOGO_WEBHOOK_SECRET", KRYPTOGO_SECRET)
        record = ledger.find_by_id(pending_payment)

        response = client.post(
            "/payment/webhook",
            content=json_body({"payment_intent_id": record.provider_reference, "status": "success"}),
        )

        assert response.status_code == 401
        assert ledger.find_by_id(pending_payment).status == PaymentStatus.PENDING

    def test_unset_env_without_secret_does_not_apply(self, client, pending_payment, ledger, monkeypatch):
        monkeypatch.delenv("PLANNER_ENV")
        record = ledger.find_by_id(pending_payment)

        response = client.post(
            "/payment/webhook",
            content=json_body({"payment_intent_id": record.provider_reference, "status": "success"}),
        )

        assert response.status_code == 500
        assert response.json()["errorCode"] == "CONFIGURATION_ERROR"
        assert ledger.find_by_id(pending_payment).status == PaymentStatus.PENDING


class TestKryptoGOWebhook:
    def test_success_completes_payment(self, strict_app, client, pending_payment, ledger, audit_sink):
        record = ledger.find_by_id(pending_payment)
        payload = {"payment_intent_id": record.provider_reference, "status": "success", "tx_hash": "0xabc"}

        response = _kryptogo_post(client, payload)

        assert response.status_code == 200
        assert response.json() == {"received": True, "outcome": "applied"}
        assert ledger.find_by_id(pending_payment).status == PaymentStatus.COMPLETED
        assert len(audit_sink.records(ENTITLEMENT_GRANTED)) == 1

    def test_duplicate_delivery_is_idempotent(self, strict_app, client, pending_payment, ledger, audit_sink):
        record = ledger.find_by_id(pending_payment)
        payload = {"payment_intent_id": record.provider_reference, "status": "success"}

        first = _kryptogo_post(client, payload)
        second = _kryptogo_post(client, payload)

        assert first.json()["outcome"] == "applied"
        assert second.status_code == 200
        assert second.json()["outcome"] == "duplicate"
        assert len(audit_sink.records(ENTITLEMENT_GRANTED)) == 1

    def test_provider_path_alias(self, strict_app, client, pending_payment, ledger):
        record = ledger.find_by_id(pending_payment)

        response = _kryptogo_post(
            client,
            {"payment_intent_id": record.provider_reference, "status": "failed"},
            path="/payment/webhook/kryptogo",
        )

        assert response.json()["outcome"] == "applied"
        assert ledger.find_by_id(pending_payment).status == PaymentStatus.FAILED

    def test_unknown_status_is_ignored(self, strict_app, client, pending_payment, ledger):
        record = ledger.find_by_id(pending_payment)

        response = _kryptogo_post(client, {"payment_intent_id": record.provider_reference, "status": "refunded"})

        assert response.status_code == 200
        assert response.json()["outcome"] == "ignored"
        assert ledger.find_by_id(pending_payment).status == PaymentStatus.PENDING

    def test_unknown_payment_is_acknowledged(self, strict_app, client):
        response = _kryptogo_post(client, {"payment_intent_id": "pi_missing", "status": "success"})

        assert response.status_code == 200
        assert response.json()["outcome"] == "unknown_payment"

    def test_webhook_then_verify_still_returns_token(self, strict_app, client, pending_payment, ledger, audit_sink):
        record = ledger.find_by_id(pending_payment)
        _kryptogo_post(client, {"payment_intent_id": record.provider_reference, "status": "success"})

        response = client.post("/payment/verify", json={"paymentId": pending_payment, "proof": "0xabc"})

        assert response.status_code == 200
        assert response.json()["token"]
        assert len(audit_sink.records(ENTITLEMENT_GRANTED)) == 1


class TestLemonSqueezyWebhook:
    @pytest.fixture
    def lemonsqueezy_payment(self, client, stored_report):
        register_provider(FakeProvider("lemonsqueezy", currencies=("USD",)))
        body = {"amount": "10.00", "currency": "USD", "reportId": stored_report.id, "provider": "lemonsqueezy"}
        return client.post("/payment/initialize", json=body).json()["paymentId"]

    @staticmethod
    def _post(client, payment_id, total=1000, secret=LEMONSQUEEZY_SECRET):
        raw = json_body(
            {
                "meta": {"event_name": "order_created", "custom_data": {"payment_id": payment_id}},
                "data": {"id": "9001", "attributes": {"status": "paid", "total": total, "currency": "USD"}},
            }
        )
        return client.post(
            "/payment/webhook/lemonsqueezy",
            content=raw,
            headers={"Content-Type": "application/json", "X-Signature": sign(raw, secret)},
        )

    def test_order_created_completes_payment(self, strict_app, client, lemonsqueezy_payment, ledger):
        response = self._post(client, lemonsqueezy_payment)

        assert response.json()["outcome"] == "applied"
        assert ledger.find_by_id(lemonsqueezy_payment).status == PaymentStatus.COMPLETED

    def test_kryptogo_secret_does_not_verify_lemonsqueezy(self, strict_app, client, lemonsqueezy_payment):
        response = self._post(client, lemonsqueezy_payment, secret=KRYPTOGO_SECRET)

        assert response.status_code == 401

    def test_amount_mismatch_is_acknowledged_without_completion(self, strict_app, client, lemonsqueezy_payment, ledger):
        response = self._post(client, lemonsqueezy_payment, total=1)

        assert response.status_code == 200
        assert response.json()["outcome"] == "amount_mismatch"
        assert ledger.find_by_id(lemonsqueezy_payment).status == PaymentStatus.PENDING
