"""
Tests for API Routes.

Endpoints are exercised through the FastAPI test client with the gateway
and dispatcher overridden by the test fixtures.
"""

from decimal import Decimal
from typing import Any

import pytest
from conftest import (
    PAYPAL_SECRET,
    PAYPAL_WEBHOOK_ID,
    VALID_CARD_NUMBER,
    make_intent,
    mock_webhook_body,
    sign_mock,
)
from starlette.datastructures import Headers

from paygate.api.dependencies import get_app_settings
from paygate.api.routes import payment_data_from_request, signature_header
from paygate.config import Settings
from paygate.models.api import IntentStatus, ProcessPaymentRequest, ProviderName
from paygate.services.webhook_signatures import compute_paypal_signature


def _process_body(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "amount": "49.99",
        "currency": "usd",
        "payment_method": {
            "type": "card",
            "card": {
                "number": VALID_CARD_NUMBER,
                "expiry_month": 12,
                "expiry_year": 2035,
                "cvc": "123",
                "name": "Test User",
            },
            "billing_address": {
                "line1": "123 Test Street",
                "city": "Test City",
                "postal_code": "12345",
                "country": "US",
            },
        },
        "customer": {"email": "buyer@example.com"},
    }
    body.update(overrides)
    return body


# ============================================================================
# Conversion Helper Tests
# ============================================================================


class TestPaymentDataFromRequest:
    """Tests for request to domain conversion."""

    def test_converts_card_request(self):
        data = payment_data_from_request(ProcessPaymentRequest(**_process_body()))

        assert data.amount == Decimal("49.99")
        assert data.currency == "USD"
        assert data.payment_method.card.last4 == "4242"
        assert data.payment_method.billing_address.line1 == "123 Test Street"
        assert data.customer.email == "buyer@example.com"
        assert data.shipping is None

    def test_converts_shipping(self):
        request = ProcessPaymentRequest(
            **_process_body(
                shipping={"name": "Recipient", "address": {"line1": "1 Dock Road"}}
            )
        )
        data = payment_data_from_request(request)

        assert data.shipping.name == "Recipient"
        assert data.shipping.address.line1 == "1 Dock Road"


class TestSignatureHeader:
    """Tests for provider signature header selection."""

    def test_stripe(self):
        headers = Headers({"Stripe-Signature": "t=1,v1=abc"})
        assert signature_header(ProviderName.STRIPE, headers) == "t=1,v1=abc"

    def test_square(self):
        headers = Headers({"X-Square-HmacSha256-Signature": "c2ln"})
        assert signature_header(ProviderName.SQUARE, headers) == "c2ln"

    def test_paypal_joins_transmission_headers(self):
        headers = Headers(
            {
                "PayPal-Transmission-Id": "tx-1",
                "PayPal-Transmission-Time": "2026-10-19T12:00:00Z",
                "PayPal-Transmission-Sig": "c2ln",
            }
        )
        assert signature_header(ProviderName.PAYPAL, headers) == "tx-1|2026-10-19T12:00:00Z|c2ln"

    def test_paypal_missing_part(self):
        headers = Headers({"PayPal-Transmission-Id": "tx-1", "PayPal-Transmission-Sig": "c2ln"})
        assert signature_header(ProviderName.PAYPAL, headers) == ""

    def test_absent_header(self):
        assert signature_header(ProviderName.MOCK, Headers({})) == ""


# ============================================================================
# Payment Intent Endpoint Tests
# ============================================================================


class TestIntentEndpoints:
    """Tests for /v1/payments/intents."""

    def test_create_intent(self, client, intent_store):
        response = client.post(
            "/v1/payments/intents",
            json={"amount": "49.99", "currency": "usd", "metadata": {"order_id": "ord_1"}},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["id"].startswith("pi_mock_")
        assert body["status"] == "requires_payment_method"
        assert body["currency"] == "USD"
        assert Decimal(body["amount"]) == Decimal("49.99")
        assert body["metadata"] == {"order_id": "ord_1"}
        assert len(intent_store) == 1

    @pytest.mark.parametrize(
        "payload",
        [
            {"amount": "0", "currency": "USD"},
            {"amount": "-5", "currency": "USD"},
            {"amount": "10", "currency": "US"},
            {"currency": "USD"},
        ],
    )
    def test_create_intent_rejects_invalid_body(self, client, payload):
        response = client.post("/v1/payments/intents", json=payload)
        assert response.status_code == 422

    def test_get_intent(self, client, intent_store):
        created = client.post("/v1/payments/intents", json={"amount": "10", "currency": "EUR"})
        intent_id = created.json()["id"]

        response = client.get(f"/v1/payments/intents/{intent_id}")

        assert response.status_code == 200
        assert response.json()["id"] == intent_id

    def test_get_unknown_intent(self, client):
        response = client.get("/v1/payments/intents/pi_missing")
        assert response.status_code == 404

    def test_cancel_intent(self, client, order_hooks):
        created = client.post("/v1/payments/intents", json={"amount": "10", "currency": "USD"})
        intent_id = created.json()["id"]

        response = client.post(f"/v1/payments/intents/{intent_id}/cancel")

        assert response.status_code == 200
        assert response.json()["status"] == "canceled"
        order_hooks.update_order_status.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cancel_finished_intent(self, client, intent_store):
        await intent_store.set(make_intent("pi_done", status=IntentStatus.SUCCEEDED))

        response = client.post("/v1/payments/intents/pi_done/cancel")

        assert response.status_code == 409
        assert response.json()["detail"] == "Payment intent is already succeeded"

    def test_cancel_unknown_intent(self, client):
        response = client.post("/v1/payments/intents/pi_missing/cancel")
        assert response.status_code == 404


# ============================================================================
# Process Payment Endpoint Tests
# ============================================================================


class TestProcessEndpoint:
    """Tests for /v1/payments/process."""

    def test_success(self, client):
        response = client.post("/v1/payments/process", json=_process_body())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["transaction_id"].startswith("TXN_")
        assert body["error"] is None

    def test_success_settles_bound_intent(self, client):
        created = client.post("/v1/payments/intents", json={"amount": "49.99", "currency": "USD"})
        intent_id = created.json()["id"]

        response = client.post(
            "/v1/payments/process", json=_process_body(payment_intent_id=intent_id)
        )

        assert response.json()["success"] is True
        assert client.get(f"/v1/payments/intents/{intent_id}").json()["status"] == "succeeded"

    def test_card_number_with_newline_is_validation_failure(self, client):
        body = _process_body()
        body["payment_method"]["card"]["number"] = VALID_CARD_NUMBER + "\n"

        response = client.post("/v1/payments/process", json=body)

        assert response.status_code == 200
        assert response.json()["error"]["type"] == "validation_error"

    def test_canceled_intent_is_not_charged(self, client):
        created = client.post("/v1/payments/intents", json={"amount": "49.99", "currency": "USD"})
        intent_id = created.json()["id"]
        client.post(f"/v1/payments/intents/{intent_id}/cancel")

        response = client.post(
            "/v1/payments/process", json=_process_body(payment_intent_id=intent_id)
        )

        result = response.json()
        assert result["success"] is False
        assert result["error"]["message"] == "Payment intent is already canceled"
        assert client.get(f"/v1/payments/intents/{intent_id}").json()["status"] == "canceled"

    def test_validation_failure_is_200(self, client):
        body = _process_body()
        body["payment_method"]["card"]["number"] = "4242424242424241"

        response = client.post("/v1/payments/process", json=body)

        assert response.status_code == 200
        result = response.json()
        assert result["success"] is False
        assert result["error"]["type"] == "validation_error"
        assert result["error"]["code"] == "validation_error"

    def test_malformed_body_is_422_without_echo(self, client):
        response = client.post(
            "/v1/payments/process",
            json={"amount": "49.99", "payment_method": {"type": "card", "card": {"cvc": "999"}}},
        )

        assert response.status_code == 422
        assert "999" not in response.text


# ============================================================================
# Webhook Endpoint Tests
# ============================================================================


class TestWebhookEndpoint:
    """Tests for /v1/payments/webhooks/{provider}."""

    @pytest.mark.asyncio
    async def test_signed_mock_event(self, client, intent_store, order_hooks):
        await intent_store.set(make_intent("pi_mock_test"))
        payload = mock_webhook_body("payment_intent.succeeded", {"id": "pi_mock_test"})

        response = client.post(
            "/v1/payments/webhooks/mock",
            content=payload,
            headers={"X-Mock-Signature": sign_mock(payload), "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}
        order_hooks.update_order_status.assert_awaited_once()

    def test_bad_signature(self, client, order_hooks):
        payload = mock_webhook_body("payment_intent.succeeded", {"id": "pi_mock_test"})

        response = client.post(
            "/v1/payments/webhooks/mock",
            content=payload,
            headers={"X-Mock-Signature": "sha256=" + "0" * 64},
        )

        assert response.status_code == 400
        order_hooks.update_order_status.assert_not_awaited()

    def test_unknown_provider(self, client):
        response = client.post("/v1/payments/webhooks/adyen", content=b"{}")
        assert response.status_code == 404

    def test_paypal_headers(self, client, order_hooks):
        payload = (
            b'{"id":"WH-1","event_type":"PAYMENT.CAPTURE.COMPLETED",'
            b'"resource":{"id":"CAP-1","supplementary_data":{"related_ids":{"order_id":"O-1"}}}}'
        )
        joined = compute_paypal_signature(
            payload, PAYPAL_SECRET, PAYPAL_WEBHOOK_ID, "tx-1", "2026-10-19T12:00:00Z"
        )
        transmission_id, transmission_time, signature = joined.split("|")

        response = client.post(
            "/v1/payments/webhooks/paypal",
            content=payload,
            headers={
                "PayPal-Transmission-Id": transmission_id,
                "PayPal-Transmission-Time": transmission_time,
                "PayPal-Transmission-Sig": signature,
            },
        )

        assert response.status_code == 200
        order_hooks.update_order_status.assert_awaited_once_with(
            "O-1", IntentStatus.SUCCEEDED, None
        )


# ============================================================================
# Development and Service Endpoint Tests
# ============================================================================


class TestTestCardsEndpoint:
    """Tests for /v1/payments/test-cards."""

    def test_development(self, client):
        response = client.get("/v1/payments/test-cards")

        assert response.status_code == 200
        body = response.json()
        assert body["success"][0]["number"] == "4242424242424242"
        assert {card["number"] for card in body["authentication"]} == {
            "4000000000003220",
            "4000000000003238",
        }
        assert len(body["decline"]) == 4

    def test_production_forbidden(self, app, client):
        app.dependency_overrides[get_app_settings] = lambda: Settings(
            _env_file=None, environment="production"
        )

        response = client.get("/v1/payments/test-cards")

        assert response.status_code == 403


class TestServiceEndpoints:
    """Tests for /health and /metrics."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["provider"] == "mock"

    def test_metrics(self, client):
        client.get("/health")
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "paygate_http_requests_total" in response.text
