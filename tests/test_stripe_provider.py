"""
Tests for the Stripe adapter.

Stripe API calls are patched with AsyncMocks returning real StripeObjects so
the translation layer is exercised without network access.
"""

from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
import stripe
from conftest import make_payment_data

from paygate.exceptions import PaymentProviderError
from paygate.models.api import ErrorType, IntentStatus, NextActionType, PaymentMethodType
from paygate.models.domain import Address, Customer, PaymentMethodData
from paygate.services.stripe_provider import StripeProvider, intent_from_stripe

API_KEY = "sk_test_paygate"


def _stripe_intent(**overrides: Any) -> stripe.PaymentIntent:
    values: dict[str, Any] = {
        "id": "pi_123",
        "object": "payment_intent",
        "amount": 4999,
        "currency": "usd",
        "status": "requires_payment_method",
        "client_secret": "pi_123_secret_abc",
        "created": 1767225600,
        "metadata": {"order_id": "ord_1"},
    }
    values.update(overrides)
    return stripe.PaymentIntent.construct_from(values, API_KEY)


def _token_payment(**overrides: Any):
    return make_payment_data(
        payment_method=PaymentMethodData(
            type=PaymentMethodType.CARD,
            billing_address=Address(line1="123 Test Street", country="US"),
            token="pm_card_visa",
        ),
        **overrides,
    )


@pytest.fixture
def provider() -> StripeProvider:
    return StripeProvider(api_key=API_KEY)


class TestIntentConversion:
    """Tests for StripeObject to PaymentIntent conversion."""

    def test_amount_and_currency(self):
        intent = intent_from_stripe(_stripe_intent())
        assert intent.amount == Decimal("49.99")
        assert intent.currency == "USD"
        assert intent.status == IntentStatus.REQUIRES_PAYMENT_METHOD
        assert intent.metadata == {"order_id": "ord_1"}

    def test_zero_decimal_currency(self):
        intent = intent_from_stripe(_stripe_intent(amount=5000, currency="jpy"))
        assert intent.amount == Decimal("5000")

    @pytest.mark.parametrize(
        ("stripe_status", "status"),
        [
            ("requires_action", IntentStatus.REQUIRES_CONFIRMATION),
            ("requires_capture", IntentStatus.PROCESSING),
            ("succeeded", IntentStatus.SUCCEEDED),
            ("canceled", IntentStatus.CANCELED),
        ],
    )
    def test_status_mapping(self, stripe_status, status):
        assert intent_from_stripe(_stripe_intent(status=stripe_status)).status == status


class TestCreateIntent:
    """Tests for intent creation."""

    @pytest.mark.asyncio
    async def test_create_intent(self, provider):
        with patch.object(
            stripe.PaymentIntent, "create_async", AsyncMock(return_value=_stripe_intent())
        ) as create:
            intent = await provider.create_intent(
                Decimal("49.99"),
                "USD",
                customer=Customer(email="buyer@example.com"),
                metadata={"order_id": "ord_1"},
            )

        assert intent.id == "pi_123"
        assert intent.client_secret == "pi_123_secret_abc"
        kwargs = create.await_args.kwargs
        assert kwargs["amount"] == 4999
        assert kwargs["currency"] == "usd"
        assert kwargs["api_key"] == API_KEY
        assert kwargs["receipt_email"] == "buyer@example.com"

    @pytest.mark.asyncio
    async def test_create_intent_failure(self, provider):
        error = stripe.APIConnectionError("connection reset")
        with patch.object(stripe.PaymentIntent, "create_async", AsyncMock(side_effect=error)):
            with pytest.raises(PaymentProviderError, match="Stripe intent creation failed"):
                await provider.create_intent(Decimal("10.00"), "USD")


class TestProcessPayment:
    """Tests for confirmation outcomes."""

    @pytest.mark.asyncio
    async def test_missing_token(self, provider):
        result = await provider.process_payment(make_payment_data())
        assert result.success is False
        assert result.error.type == ErrorType.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_create_and_confirm_success(self, provider):
        succeeded = _stripe_intent(
            status="succeeded",
            latest_charge={"id": "ch_1", "receipt_url": "https://pay.stripe.com/receipts/ch_1"},
        )
        with patch.object(
            stripe.PaymentIntent, "create_async", AsyncMock(return_value=succeeded)
        ) as create:
            result = await provider.process_payment(_token_payment())

        assert result.success is True
        assert result.transaction_id == "ch_1"
        assert result.receipt_url == "https://pay.stripe.com/receipts/ch_1"
        assert result.payment_intent.status == IntentStatus.SUCCEEDED
        kwargs = create.await_args.kwargs
        assert kwargs["confirm"] is True
        assert kwargs["payment_method"] == "pm_card_visa"
        assert kwargs["expand"] == ["latest_charge"]

    @pytest.mark.asyncio
    async def test_confirm_existing_intent(self, provider):
        succeeded = _stripe_intent(status="succeeded", latest_charge="ch_2")
        with patch.object(
            stripe.PaymentIntent, "confirm_async", AsyncMock(return_value=succeeded)
        ) as confirm:
            result = await provider.process_payment(_token_payment(payment_intent_id="pi_123"))

        assert result.success is True
        assert result.transaction_id == "ch_2"
        assert result.receipt_url is None
        assert confirm.await_args.args == ("pi_123",)

    @pytest.mark.asyncio
    async def test_requires_action_with_redirect(self, provider):
        pending = _stripe_intent(
            status="requires_action",
            next_action={
                "type": "redirect_to_url",
                "redirect_to_url": {"url": "https://hooks.stripe.com/3ds/abc"},
            },
        )
        with patch.object(stripe.PaymentIntent, "create_async", AsyncMock(return_value=pending)):
            result = await provider.process_payment(_token_payment())

        assert result.success is False
        assert result.requires_action is True
        assert result.error.type == ErrorType.AUTHENTICATION_ERROR
        assert result.next_action.type == NextActionType.REDIRECT_TO_URL
        assert result.next_action.redirect_to_url == "https://hooks.stripe.com/3ds/abc"

    @pytest.mark.asyncio
    async def test_requires_action_via_sdk(self, provider):
        pending = _stripe_intent(status="requires_action", next_action={"type": "use_stripe_sdk"})
        with patch.object(stripe.PaymentIntent, "create_async", AsyncMock(return_value=pending)):
            result = await provider.process_payment(_token_payment())

        assert result.next_action.type == NextActionType.USE_PROVIDER_SDK

    @pytest.mark.asyncio
    async def test_card_error(self, provider):
        error = stripe.CardError(
            "Your card has insufficient funds.",
            None,
            "card_declined",
            json_body={
                "error": {
                    "type": "card_error",
                    "code": "card_declined",
                    "decline_code": "insufficient_funds",
                    "message": "Your card has insufficient funds.",
                }
            },
        )
        with patch.object(stripe.PaymentIntent, "create_async", AsyncMock(side_effect=error)):
            result = await provider.process_payment(_token_payment())

        assert result.success is False
        assert result.error.code == "insufficient_funds"
        assert result.error.type == ErrorType.CARD_ERROR
        assert result.error.message == "Your card has insufficient funds."

    @pytest.mark.asyncio
    async def test_connection_error(self, provider):
        error = stripe.APIConnectionError("connection reset")
        with patch.object(stripe.PaymentIntent, "create_async", AsyncMock(side_effect=error)):
            result = await provider.process_payment(_token_payment())

        assert result.success is False
        assert result.error.code == "api_error"
        assert result.error.type == ErrorType.API_ERROR

    @pytest.mark.asyncio
    async def test_payment_failed_status(self, provider):
        failed = _stripe_intent(
            status="requires_payment_method",
            last_payment_error={"code": "card_declined", "message": "Declined"},
        )
        with patch.object(stripe.PaymentIntent, "create_async", AsyncMock(return_value=failed)):
            result = await provider.process_payment(_token_payment())

        assert result.success is False
        assert result.error.code == "card_declined"
        assert result.error.type == ErrorType.CARD_ERROR
