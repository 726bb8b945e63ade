"""
PayPal Payment Provider Implementation.

Uses the PayPal REST v2 Orders API. PayPal models a payment as an order that
the buyer approves and the merchant then captures, so intents start in
requires_confirmation and the approved order id doubles as the payment token.
"""

import time
from decimal import Decimal
from typing import Any

import httpx
from structlog import get_logger

from paygate.exceptions import PaymentProviderError
from paygate.models.api import ErrorType, IntentStatus, NextActionType, ProviderName
from paygate.models.domain import Customer, NextAction, PaymentData, PaymentIntent, PaymentResult
from paygate.services.payment_provider import failure_result, missing_token_result

logger = get_logger(__name__)

_DECLINE_ISSUES = frozenset(
    {"INSTRUMENT_DECLINED", "TRANSACTION_REFUSED", "PAYER_CANNOT_PAY", "CARD_EXPIRED"}
)
_ACTION_ISSUES = frozenset({"PAYER_ACTION_REQUIRED", "ORDER_NOT_APPROVED"})


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _find_link(body: dict[str, Any], *rels: str) -> str | None:
    for link in body.get("links") or []:
        if link.get("rel") in rels and link.get("href"):
            return str(link["href"])
    return None


class PayPalProvider:
    """
    PayPal payment provider implementation.

    Implements the PaymentProvider protocol for PayPal.
    """

    name = ProviderName.PAYPAL

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str = "https://api-m.sandbox.paypal.com",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize PayPal provider.

        Args:
            client_id: REST app client id
            client_secret: REST app secret
            base_url: API host (sandbox or live)
            client: Optional shared HTTP client; a short-lived one is used per call otherwise
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._access_token: str | None = None
        self._token_expires_at: float = 0

    @classmethod
    def from_api_key(
        cls, api_key: str, base_url: str, client: httpx.AsyncClient | None = None
    ) -> "PayPalProvider":
        """Build from a "client_id:client_secret" credential string."""
        client_id, _, client_secret = api_key.partition(":")
        return cls(client_id, client_secret, base_url=base_url, client=client)

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        if self._client is not None:
            return await self._client.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=30.0) as client:
            return await client.request(method, url, **kwargs)

    async def _get_access_token(self) -> str:
        """OAuth client-credentials token, reused until one minute before expiry."""
        now = time.time()
        if self._access_token and now < self._token_expires_at - 60:
            return self._access_token

        response = await self._send(
            "POST",
            "/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        if response.status_code != 200:
            logger.error("paypal_auth_failed", status=response.status_code)
            raise PaymentProviderError("Invalid PayPal API credentials")

        body = response.json()
        self._access_token = str(body["access_token"])
        self._token_expires_at = now + float(body.get("expires_in", 300))
        return self._access_token

    async def _api(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        token = await self._get_access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            **kwargs.pop("headers", {}),
        }
        return await self._send(method, path, headers=headers, **kwargs)

    async def create_intent(
        self,
        amount: Decimal,
        currency: str,
        customer: Customer | None = None,
        metadata: dict[str, str] | None = None,
    ) -> PaymentIntent:
        """
        Create a PayPal order with intent CAPTURE.

        Raises:
            PaymentProviderError: If the order cannot be created
        """
        metadata = dict(metadata or {})
        purchase_unit: dict[str, Any] = {
            "amount": {"currency_code": currency.upper(), "value": f"{amount:.2f}"},
        }
        if "order_id" in metadata:
            purchase_unit["custom_id"] = metadata["order_id"]

        logger.info("creating_paypal_order", amount=str(amount), currency=currency)
        try:
            response = await self._api(
                "POST",
                "/v2/checkout/orders",
                json={"intent": "CAPTURE", "purchase_units": [purchase_unit]},
            )
        except httpx.HTTPError as exc:
            logger.error("paypal_order_transport_failed", error=str(exc))
            raise PaymentProviderError(f"PayPal order creation failed: {exc}") from exc

        if response.status_code >= 400:
            logger.error("paypal_order_failed", status=response.status_code, body=response.text)
            raise PaymentProviderError(f"PayPal order creation failed: {response.status_code}")

        body = _json_body(response)
        logger.info("paypal_order_created", order_id=body["id"], status=body.get("status"))
        return PaymentIntent(
            id=str(body["id"]),
            provider=self.name,
            amount=amount,
            currency=currency.upper(),
            status=IntentStatus.REQUIRES_CONFIRMATION,
            client_secret=_find_link(body, "approve", "payer-action"),
            metadata=metadata,
        )

    async def process_payment(self, data: PaymentData) -> PaymentResult:
        """Capture the approved order named by the token (or the bound intent id)."""
        order_id = data.payment_method.token or data.payment_intent_id
        if not order_id:
            return missing_token_result(self.name)

        try:
            response = await self._api(
                "POST",
                f"/v2/checkout/orders/{order_id}/capture",
                headers={"PayPal-Request-Id": f"capture-{order_id}"},
            )
        except PaymentProviderError as exc:
            return failure_result("api_error", exc.message, ErrorType.API_ERROR)
        except httpx.HTTPError as exc:
            logger.error("paypal_capture_transport_failed", order_id=order_id, error=str(exc))
            return failure_result(
                "api_error", "The payment provider could not be reached.", ErrorType.API_ERROR
            )

        body = _json_body(response)

        if response.status_code >= 400:
            return self._failure_from_error(order_id, response.status_code, body)

        capture = self._first_capture(body)
        capture_status = (capture or {}).get("status", body.get("status"))
        logger.info("paypal_order_captured", order_id=order_id, status=capture_status)

        if capture_status in ("COMPLETED", "PENDING"):
            intent = PaymentIntent(
                id=order_id,
                provider=self.name,
                amount=data.amount,
                currency=data.currency.upper(),
                status=IntentStatus.SUCCEEDED
                if capture_status == "COMPLETED"
                else IntentStatus.PROCESSING,
                metadata=dict(data.metadata),
            )
            return PaymentResult(
                success=True,
                payment_intent=intent,
                transaction_id=(capture or {}).get("id") or order_id,
            )

        return failure_result(
            "payment_declined",
            f"PayPal capture finished with status {capture_status}",
            ErrorType.CARD_ERROR,
        )

    @staticmethod
    def _first_capture(body: dict[str, Any]) -> dict[str, Any] | None:
        for unit in body.get("purchase_units") or []:
            captures = (unit.get("payments") or {}).get("captures") or []
            if captures:
                return dict(captures[0])
        return None

    def _failure_from_error(
        self, order_id: str, status_code: int, body: dict[str, Any]
    ) -> PaymentResult:
        details = body.get("details") or [{}]
        issue = str(details[0].get("issue") or body.get("name") or "api_error")
        description = str(
            details[0].get("description") or body.get("message") or "PayPal request failed"
        )
        logger.warning(
            "paypal_capture_failed", order_id=order_id, status=status_code, issue=issue
        )

        if issue in _DECLINE_ISSUES:
            return failure_result(issue.lower(), description, ErrorType.CARD_ERROR)
        if issue in _ACTION_ISSUES:
            href = _find_link(body, "payer-action", "approve", "redirect")
            action = (
                NextAction(type=NextActionType.REDIRECT_TO_URL, redirect_to_url=href)
                if href
                else NextAction(type=NextActionType.USE_PROVIDER_SDK)
            )
            return failure_result(
                "authentication_required",
                description,
                ErrorType.AUTHENTICATION_ERROR,
                next_action=action,
            )
        return failure_result(issue.lower(), description, ErrorType.API_ERROR)
