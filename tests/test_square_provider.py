"""
Tests for the Square adapter.
"""

import json
import re
from decimal import Decimal
from typing import Any

import httpx
import pytest
from conftest import make_payment_data

from paygate.models.api import ErrorType, IntentStatus, NextActionType, PaymentMethodType
from paygate.models.domain import Address, PaymentMethodData
from paygate.services.square_provider import SQUARE_API_VERSION, SquareProvider, idempotency_key


def _provider(response: httpx.Response | Exception, calls: list[httpx.Request]) -> SquareProvider:
    def route(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if isinstance(response, Exception):
            raise response
        return response

    client = httpx.AsyncClient(transport=httpx.MockTransport(route))
    return SquareProvider("sq-access-token", client=client)


def _nonce_payment(**overrides: Any):
    return make_payment_data(
        payment_method=PaymentMethodData(
            type=PaymentMethodType.CARD,
            billing_address=Address(line1="123 Test Street", country="US"),
            token="cnon:card-nonce-ok",
        ),
        **overrides,
    )


def _payment(status: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "payment": {
                "id": "PAY-1",
                "status": status,
                "receipt_url": "https://squareup.com/receipt/preview/PAY-1",
            }
        },
    )


def _errors(status_code: int, code: str, category: str) -> httpx.Response:
    return httpx.Response(
        status_code,
        json={"errors": [{"code": code, "category": category, "detail": f"{code} detail"}]},
    )


class TestCreateIntent:
    """Tests for local intent allocation."""

    @pytest.mark.asyncio
    async def test_allocates_local_id(self):
        calls: list[httpx.Request] = []
        intent = await _provider(_payment("COMPLETED"), calls).create_intent(
            Decimal("49.99"), "usd"
        )

        assert re.fullmatch(r"sq_[0-9a-f]{24}", intent.id)
        assert intent.status == IntentStatus.REQUIRES_PAYMENT_METHOD
        assert intent.currency == "USD"
        assert calls == []


class TestProcessPayment:
    """Tests for payment outcomes."""

    @pytest.mark.asyncio
    async def test_missing_token(self):
        calls: list[httpx.Request] = []
        result = await _provider(_payment("COMPLETED"), calls).process_payment(
            make_payment_data()
        )

        assert result.error.type == ErrorType.VALIDATION_ERROR
        assert calls == []

    @pytest.mark.asyncio
    async def test_completed(self):
        calls: list[httpx.Request] = []
        data = _nonce_payment(payment_intent_id="sq_abc", description="Order 1")
        result = await _provider(_payment("COMPLETED"), calls).process_payment(data)

        assert result.success is True
        assert result.transaction_id == "PAY-1"
        assert result.receipt_url == "https://squareup.com/receipt/preview/PAY-1"
        assert result.payment_intent.id == "sq_abc"
        assert result.payment_intent.status == IntentStatus.SUCCEEDED

        request = calls[0]
        assert request.url.path == "/v2/payments"
        assert request.headers["Authorization"] == "Bearer sq-access-token"
        assert request.headers["Square-Version"] == SQUARE_API_VERSION
        body = json.loads(request.content)
        assert body["source_id"] == "cnon:card-nonce-ok"
        assert body["idempotency_key"] == idempotency_key("sq_abc", "cnon:card-nonce-ok")
        assert len(body["idempotency_key"]) <= 45
        assert body["reference_id"] == "sq_abc"
        assert body["amount_money"] == {"amount": 4999, "currency": "USD"}
        assert body["note"] == "Order 1"
        assert body["buyer_email_address"] == "buyer@example.com"

    @pytest.mark.asyncio
    async def test_new_source_after_decline_uses_new_key(self):
        calls: list[httpx.Request] = []
        provider = _provider(_errors(402, "GENERIC_DECLINE", "PAYMENT_METHOD_ERROR"), calls)

        for token in ("cnon:first", "cnon:second", "cnon:second"):
            data = make_payment_data(
                payment_intent_id="sq_abc",
                payment_method=PaymentMethodData(
                    type=PaymentMethodType.CARD,
                    billing_address=Address(line1="123 Test Street", country="US"),
                    token=token,
                ),
            )
            await provider.process_payment(data)

        bodies = [json.loads(request.content) for request in calls]
        keys = [body["idempotency_key"] for body in bodies]
        assert keys[0] != keys[1]
        assert keys[1] == keys[2]
        assert {body["reference_id"] for body in bodies} == {"sq_abc"}

    @pytest.mark.asyncio
    async def test_zero_decimal_currency(self):
        calls: list[httpx.Request] = []
        data = _nonce_payment(amount=Decimal("5000"), currency="JPY")
        await _provider(_payment("COMPLETED"), calls).process_payment(data)

        assert json.loads(calls[0].content)["amount_money"] == {"amount": 5000, "currency": "JPY"}

    @pytest.mark.asyncio
    async def test_approved_is_processing(self):
        result = await _provider(_payment("APPROVED"), []).process_payment(_nonce_payment())
        assert result.success is True
        assert result.payment_intent.status == IntentStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_card_declined(self):
        response = _errors(402, "GENERIC_DECLINE", "PAYMENT_METHOD_ERROR")
        result = await _provider(response, []).process_payment(_nonce_payment())

        assert result.success is False
        assert result.error.code == "generic_decline"
        assert result.error.type == ErrorType.CARD_ERROR

    @pytest.mark.asyncio
    async def test_verification_required(self):
        response = _errors(402, "CARD_DECLINED_VERIFICATION_REQUIRED", "PAYMENT_METHOD_ERROR")
        result = await _provider(response, []).process_payment(_nonce_payment())

        assert result.requires_action is True
        assert result.error.type == ErrorType.AUTHENTICATION_ERROR
        assert result.next_action.type == NextActionType.USE_PROVIDER_SDK

    @pytest.mark.asyncio
    async def test_server_error(self):
        response = _errors(500, "INTERNAL_SERVER_ERROR", "API_ERROR")
        result = await _provider(response, []).process_payment(_nonce_payment())

        assert result.error.code == "internal_server_error"
        assert result.error.type == ErrorType.API_ERROR

    @pytest.mark.asyncio
    async def test_non_json_error(self):
        result = await _provider(httpx.Response(503, text="unavailable"), []).process_payment(
            _nonce_payment()
        )
        assert result.error.code == "api_error"
        assert result.error.type == ErrorType.API_ERROR

    @pytest.mark.asyncio
    async def test_transport_error(self):
        result = await _provider(httpx.ReadTimeout("timed out"), []).process_payment(
            _nonce_payment()
        )
        assert result.success is False
        assert result.error.type == ErrorType.API_ERROR
