"""
Mock Payment Provider - development and CI simulator.

Returns a realistic spread of outcomes (decline, insufficient funds, 3-D
Secure challenge, success) after simulated network latency, without any
network access. Randomness and sleeping are injectable so tests can force
each outcome band deterministically.
"""

import asyncio
import random
import secrets
import string
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal

from structlog import get_logger

from paygate.config import MockSettings
from paygate.models.api import ErrorType, IntentStatus, NextActionType, ProviderName
from paygate.models.domain import Customer, NextAction, PaymentData, PaymentIntent, PaymentResult
from paygate.services.payment_provider import failure_result

logger = get_logger(__name__)

BASE36_ALPHABET = string.digits + string.ascii_lowercase
THREE_D_SECURE_URL = "/payments/3d-secure-mock"


def to_base36(value: int) -> str:
    """Encode a non-negative integer in lower-case base36."""
    if value < 0:
        raise ValueError(f"Cannot encode negative value: {value}")
    if value == 0:
        return "0"
    chars: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        chars.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(chars))


def random_base36(length: int) -> str:
    return "".join(secrets.choice(BASE36_ALPHABET) for _ in range(length))


def generate_transaction_id(now_ms: int | None = None) -> str:
    """TXN_<base36 millisecond timestamp>_<6 random chars>, upper case."""
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return f"TXN_{to_base36(now_ms).upper()}_{random_base36(6).upper()}"


def generate_opaque_id(length: int = 24) -> str:
    return random_base36(length)


@dataclass(frozen=True)
class MockOutcomeBands:
    """
    Probability of each failure outcome; the remainder succeeds.

    Bands are laid out in order on [0, 1): declined, insufficient funds,
    authentication required, success.
    """

    decline_rate: float = 0.05
    insufficient_funds_rate: float = 0.03
    authentication_rate: float = 0.02

    @property
    def decline_upper(self) -> float:
        return self.decline_rate

    @property
    def insufficient_funds_upper(self) -> float:
        return self.decline_rate + self.insufficient_funds_rate

    @property
    def authentication_upper(self) -> float:
        return self.decline_rate + self.insufficient_funds_rate + self.authentication_rate


class MockPaymentProvider:
    """
    Simulated payment provider.

    Implements the PaymentProvider protocol without contacting any network.
    """

    name = ProviderName.MOCK

    def __init__(
        self,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        latency_seconds: tuple[float, float] = (1.5, 3.5),
        bands: MockOutcomeBands | None = None,
        receipt_base_url: str = "https://payments.example.com/receipts",
    ) -> None:
        """
        Initialize the simulator.

        Args:
            rng: Random source for latency and outcome draws (seed it for repeatability)
            sleep: Awaitable sleep used for simulated latency; must be cancelable
            latency_seconds: Inclusive (min, max) latency bounds
            bands: Outcome probabilities
            receipt_base_url: Base URL for generated receipt links
        """
        self._rng = rng or random.Random()
        self._sleep = sleep
        self.latency_seconds = latency_seconds
        self.bands = bands or MockOutcomeBands()
        self.receipt_base_url = receipt_base_url.rstrip("/")

    @classmethod
    def from_settings(
        cls,
        settings: MockSettings,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> "MockPaymentProvider":
        return cls(
            rng=rng,
            sleep=sleep,
            latency_seconds=(settings.latency_min_seconds, settings.latency_max_seconds),
            bands=MockOutcomeBands(
                decline_rate=settings.decline_rate,
                insufficient_funds_rate=settings.insufficient_funds_rate,
                authentication_rate=settings.authentication_rate,
            ),
            receipt_base_url=settings.receipt_base_url,
        )

    async def create_intent(
        self,
        amount: Decimal,
        currency: str,
        customer: Customer | None = None,
        metadata: dict[str, str] | None = None,
    ) -> PaymentIntent:
        intent_id = f"pi_mock_{generate_opaque_id()}"
        intent = PaymentIntent(
            id=intent_id,
            provider=self.name,
            amount=amount,
            currency=currency.upper(),
            status=IntentStatus.REQUIRES_PAYMENT_METHOD,
            client_secret=f"{intent_id}_secret_{generate_opaque_id()}",
            metadata=dict(metadata or {}),
        )
        logger.info(
            "mock_payment_intent_created",
            payment_intent_id=intent.id,
            amount=str(amount),
            currency=intent.currency,
        )
        return intent

    async def process_payment(self, data: PaymentData) -> PaymentResult:
        """
        Simulate a charge.

        Sleeps for the sampled latency (cancellation propagates to the
        caller), then draws one value r in [0, 1) to pick the outcome band.
        """
        low, high = self.latency_seconds
        latency = self._rng.uniform(low, high)
        await self._sleep(latency)

        r = self._rng.random()

        if r < self.bands.decline_upper:
            outcome = failure_result(
                "card_declined", "Your card was declined.", ErrorType.CARD_ERROR
            )
        elif r < self.bands.insufficient_funds_upper:
            outcome = failure_result(
                "insufficient_funds", "Your card has insufficient funds.", ErrorType.CARD_ERROR
            )
        elif r < self.bands.authentication_upper:
            outcome = failure_result(
                "authentication_required",
                "This payment requires additional authentication.",
                ErrorType.AUTHENTICATION_ERROR,
                next_action=NextAction(
                    type=NextActionType.REDIRECT_TO_URL,
                    redirect_to_url=THREE_D_SECURE_URL,
                ),
            )
        else:
            outcome = self._success(data)

        logger.info(
            "mock_payment_processed",
            latency_seconds=round(latency, 3),
            draw=round(r, 4),
            success=outcome.success,
            error_code=outcome.error.code if outcome.error else None,
        )
        return outcome

    def _success(self, data: PaymentData) -> PaymentResult:
        transaction_id = generate_transaction_id()
        intent = PaymentIntent(
            id=data.payment_intent_id or f"pi_mock_{generate_opaque_id()}",
            provider=self.name,
            amount=data.amount,
            currency=data.currency.upper(),
            status=IntentStatus.SUCCEEDED,
            metadata=dict(data.metadata),
        )
        return PaymentResult(
            success=True,
            payment_intent=intent,
            transaction_id=transaction_id,
            receipt_url=f"{self.receipt_base_url}/{transaction_id}",
        )
