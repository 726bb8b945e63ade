"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fixtures for testing:
- Deterministic random sources and sleep stand-ins for the mock simulator
- Valid payment requests
- Order hooks, intent stores and webhook dispatchers
- API test client with service overrides
"""

import json
import os
import random
from collections.abc import Iterator
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

# Set required environment variables BEFORE importing app modules
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("PAYMENT_PROVIDER", "mock")
os.environ.setdefault("MOCK_WEBHOOK_SECRET", "whsec_test_mock_secret")
os.environ.setdefault("LOG_FORMAT", "console")

from paygate.models.api import IntentStatus, PaymentMethodType, ProviderName
from paygate.models.domain import (
    Address,
    CardData,
    Customer,
    PaymentData,
    PaymentIntent,
    PaymentMethodData,
)
from paygate.services.gateway import PaymentGateway
from paygate.services.intent_store import IdempotencyRegistry, InMemoryIntentStore
from paygate.services.mock_provider import MockPaymentProvider
from paygate.services.webhook_signatures import WebhookSignatureVerifier, compute_mock_signature
from paygate.services.webhooks import WebhookDispatcher

MOCK_SECRET = "whsec_test_mock_secret"
PAYPAL_SECRET = "paypal_test_secret"
PAYPAL_WEBHOOK_ID = "WH-TEST-1"
SQUARE_SECRET = "square_test_signature_key"
SQUARE_NOTIFICATION_URL = "https://shop.example.com/v1/payments/webhooks/square"
STRIPE_SECRET = "whsec_test_stripe_secret"

VALID_CARD_NUMBER = "4242424242424242"


class FixedRandom(random.Random):
    """
    Random source with scripted draws.

    random() returns the scripted values in order and then repeats the last
    one; uniform() always returns its lower bound.
    """

    def __init__(self, *draws: float) -> None:
        super().__init__(0)
        self._draws = list(draws) or [0.5]

    def random(self) -> float:
        if len(self._draws) > 1:
            return self._draws.pop(0)
        return self._draws[0]

    def uniform(self, a: float, b: float) -> float:
        return a


# ============================================================================
# Payment Request Fixtures
# ============================================================================


def make_payment_data(**overrides: Any) -> PaymentData:
    """Valid card payment request; keyword overrides replace top-level fields."""
    defaults: dict[str, Any] = {
        "amount": Decimal("49.99"),
        "currency": "USD",
        "payment_method": PaymentMethodData(
            type=PaymentMethodType.CARD,
            billing_address=Address(
                line1="123 Test Street",
                city="Test City",
                state="CA",
                postal_code="12345",
                country="US",
            ),
            card=CardData(
                number=VALID_CARD_NUMBER,
                expiry_month=12,
                expiry_year=2035,
                cvc="123",
                name="Test User",
            ),
        ),
        "customer": Customer(id="cus_1", email="buyer@example.com", name="Test User"),
    }
    defaults.update(overrides)
    return PaymentData(**defaults)


def make_intent(
    intent_id: str = "pi_mock_test",
    status: IntentStatus = IntentStatus.REQUIRES_PAYMENT_METHOD,
    provider: ProviderName = ProviderName.MOCK,
) -> PaymentIntent:
    return PaymentIntent(
        id=intent_id,
        provider=provider,
        amount=Decimal("49.99"),
        currency="USD",
        status=status,
        created_at=datetime(2026, 1, 1, tzinfo=UTC),
    )


def mock_webhook_body(event_type: str, obj: dict[str, Any], event_id: str = "evt_1") -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode()


def sign_mock(payload: bytes) -> str:
    return compute_mock_signature(payload, MOCK_SECRET)


@pytest.fixture
def payment_data() -> PaymentData:
    """Valid card payment request."""
    return make_payment_data()


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def fake_sleep() -> AsyncMock:
    """Stand-in for asyncio.sleep that returns immediately."""
    return AsyncMock(return_value=None)


@pytest.fixture
def success_provider(fake_sleep: AsyncMock) -> MockPaymentProvider:
    """Mock simulator forced into the success band."""
    return MockPaymentProvider(rng=FixedRandom(0.5), sleep=fake_sleep)


@pytest.fixture
def order_hooks() -> MagicMock:
    """Order collaborator with awaitable hooks."""
    hooks = MagicMock()
    hooks.update_order_status = AsyncMock(return_value=None)
    hooks.notify_dispute = AsyncMock(return_value=None)
    return hooks


@pytest.fixture
def intent_store() -> InMemoryIntentStore:
    return InMemoryIntentStore()


@pytest.fixture
def gateway(
    success_provider: MockPaymentProvider,
    intent_store: InMemoryIntentStore,
    order_hooks: MagicMock,
) -> PaymentGateway:
    """Gateway over the forced-success simulator."""
    return PaymentGateway(success_provider, store=intent_store, hooks=order_hooks)


@pytest.fixture
def verifier() -> WebhookSignatureVerifier:
    return WebhookSignatureVerifier(
        secrets={
            ProviderName.MOCK: MOCK_SECRET,
            ProviderName.PAYPAL: PAYPAL_SECRET,
            ProviderName.SQUARE: SQUARE_SECRET,
            ProviderName.STRIPE: STRIPE_SECRET,
        },
        paypal_webhook_id=PAYPAL_WEBHOOK_ID,
        square_notification_url=SQUARE_NOTIFICATION_URL,
    )


@pytest.fixture
def dispatcher(
    verifier: WebhookSignatureVerifier,
    intent_store: InMemoryIntentStore,
    order_hooks: MagicMock,
) -> WebhookDispatcher:
    return WebhookDispatcher(
        verifier=verifier,
        store=intent_store,
        hooks=order_hooks,
        registry=IdempotencyRegistry(),
    )


# ============================================================================
# FastAPI Test Client Fixtures
# ============================================================================


@pytest.fixture
def app() -> FastAPI:
    """Create FastAPI app for testing."""
    from paygate.main import app as main_app

    return main_app


@pytest.fixture
def client(
    app: FastAPI, gateway: PaymentGateway, dispatcher: WebhookDispatcher
) -> Iterator[TestClient]:
    """Test client whose routes use the test gateway and dispatcher."""
    from paygate.api.dependencies import get_dispatcher, get_gateway

    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
