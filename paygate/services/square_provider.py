"""
Square Payment Provider Implementation.

Uses the Square Payments API. Square has no intent object, so create_intent
allocates a local sq_ identifier that later travels as the reference_id of
the payment request. Each attempt gets its own idempotency key derived from
the intent and the payment source, so a declined card can be replaced.
"""

import hashlib
import secrets
from decimal import Decimal
from typing import Any

import httpx
from structlog import get_logger

from paygate.models.api import ErrorType, IntentStatus, NextActionType, ProviderName
from paygate.models.domain import Customer, NextAction, PaymentData, PaymentIntent, PaymentResult
from paygate.services.payment_provider import (
    failure_result,
    missing_token_result,
    to_minor_units,
)

logger = get_logger(__name__)

SQUARE_API_VERSION = "2024-01-18"

_VERIFICATION_CODES = frozenset({"CARD_DECLINED_VERIFICATION_REQUIRED"})

# Square caps idempotency keys at 45 characters
_IDEMPOTENCY_KEY_LENGTH = 40


def idempotency_key(intent_id: str, source_id: str) -> str:
    """Stable per (intent, source) key: retrying a source dedupes, a new source charges."""
    digest = hashlib.sha256(f"{intent_id}:{source_id}".encode()).hexdigest()
    return digest[:_IDEMPOTENCY_KEY_LENGTH]


class SquareProvider:
    """
    Square payment provider implementation.

    Implements the PaymentProvider protocol for Square.
    """

    name = ProviderName.SQUARE

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://connect.squareupsandbox.com",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize Square provider.

        Args:
            access_token: Square access token
            base_url: API host (sandbox or production)
            client: Optional shared HTTP client; a short-lived one is used per call otherwise
        """
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self._client = client

    async def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Square-Version": SQUARE_API_VERSION,
            "Content-Type": "application/json",
        }
        if self._client is not None:
            return await self._client.post(url, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=30.0) as client:
            return await client.post(url, json=payload, headers=headers)

    async def create_intent(
        self,
        amount: Decimal,
        currency: str,
        customer: Customer | None = None,
        metadata: dict[str, str] | None = None,
    ) -> PaymentIntent:
        intent = PaymentIntent(
            id=f"sq_{secrets.token_hex(12)}",
            provider=self.name,
            amount=amount,
            currency=currency.upper(),
            status=IntentStatus.REQUIRES_PAYMENT_METHOD,
            metadata=dict(metadata or {}),
        )
        logger.info("square_payment_intent_allocated", payment_intent_id=intent.id)
        return intent

    async def process_payment(self, data: PaymentData) -> PaymentResult:
        """Create a Square payment with the card nonce / token as source_id."""
        source_id = data.payment_method.token
        if not source_id:
            return missing_token_result(self.name)

        intent_id = data.payment_intent_id or f"sq_{secrets.token_hex(12)}"
        payload: dict[str, Any] = {
            "source_id": source_id,
            "idempotency_key": idempotency_key(intent_id, source_id),
            "amount_money": {
                "amount": to_minor_units(data.amount, data.currency),
                "currency": data.currency.upper(),
            },
            "autocomplete": True,
            "reference_id": intent_id[:40],
        }
        if data.description:
            payload["note"] = data.description[:500]
        if data.customer is not None and data.customer.email:
            payload["buyer_email_address"] = data.customer.email

        try:
            response = await self._post("/v2/payments", payload)
        except httpx.HTTPError as exc:
            logger.error("square_payment_transport_failed", error=str(exc))
            return failure_result(
                "api_error", "The payment provider could not be reached.", ErrorType.API_ERROR
            )

        try:
            body: dict[str, Any] = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400 or body.get("errors"):
            return self._failure_from_errors(response.status_code, body.get("errors") or [])

        payment = body.get("payment") or {}
        status = payment.get("status")
        logger.info("square_payment_created", payment_id=payment.get("id"), status=status)

        if status in ("COMPLETED", "APPROVED", "PENDING"):
            intent = PaymentIntent(
                id=intent_id,
                provider=self.name,
                amount=data.amount,
                currency=data.currency.upper(),
                status=IntentStatus.SUCCEEDED if status == "COMPLETED" else IntentStatus.PROCESSING,
                metadata=dict(data.metadata),
            )
            return PaymentResult(
                success=True,
                payment_intent=intent,
                transaction_id=payment.get("id"),
                receipt_url=payment.get("receipt_url"),
            )

        return failure_result(
            "payment_failed",
            f"Square payment finished with status {status}",
            ErrorType.CARD_ERROR,
        )

    @staticmethod
    def _failure_from_errors(status_code: int, errors: list[dict[str, Any]]) -> PaymentResult:
        first = errors[0] if errors else {}
        code = str(first.get("code") or "api_error")
        category = first.get("category")
        detail = str(first.get("detail") or "Square request failed")
        logger.warning("square_payment_failed", status=status_code, code=code, category=category)

        if code in _VERIFICATION_CODES:
            return failure_result(
                "authentication_required",
                detail,
                ErrorType.AUTHENTICATION_ERROR,
                next_action=NextAction(type=NextActionType.USE_PROVIDER_SDK),
            )
        if category == "PAYMENT_METHOD_ERROR":
            return failure_result(code.lower(), detail, ErrorType.CARD_ERROR)
        return failure_result(code.lower(), detail, ErrorType.API_ERROR)
