"""
Stripe Payment Provider Implementation.

Thin translation between the payment core and the Stripe PaymentIntents API.
The API key is passed per request; nothing is written to stripe's module
globals.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import stripe
from structlog import get_logger

from paygate.exceptions import PaymentProviderError
from paygate.models.api import ErrorType, IntentStatus, NextActionType, ProviderName
from paygate.models.domain import (
    Customer,
    ErrorDetail,
    NextAction,
    PaymentData,
    PaymentIntent,
    PaymentResult,
)
from paygate.services.payment_provider import (
    failure_result,
    from_minor_units,
    missing_token_result,
    to_minor_units,
)

logger = get_logger(__name__)

_STATUS_MAP: dict[str, IntentStatus] = {
    "requires_payment_method": IntentStatus.REQUIRES_PAYMENT_METHOD,
    "requires_confirmation": IntentStatus.REQUIRES_CONFIRMATION,
    "requires_action": IntentStatus.REQUIRES_CONFIRMATION,
    "processing": IntentStatus.PROCESSING,
    "requires_capture": IntentStatus.PROCESSING,
    "succeeded": IntentStatus.SUCCEEDED,
    "canceled": IntentStatus.CANCELED,
}


def _error_from_stripe(last_error: Any) -> ErrorDetail:
    return ErrorDetail(
        code=last_error.get("decline_code") or last_error.get("code") or "card_declined",
        message=last_error.get("message") or "Payment failed",
        type=ErrorType.CARD_ERROR,
    )


def intent_from_stripe(payment_intent: Any) -> PaymentIntent:
    """Convert a Stripe PaymentIntent object into the core PaymentIntent."""
    currency = str(payment_intent.get("currency", "")).upper()
    created = payment_intent.get("created")
    last_error = payment_intent.get("last_payment_error")
    return PaymentIntent(
        id=payment_intent["id"],
        provider=ProviderName.STRIPE,
        amount=from_minor_units(int(payment_intent["amount"]), currency),
        currency=currency,
        status=_STATUS_MAP.get(payment_intent["status"], IntentStatus.PROCESSING),
        client_secret=payment_intent.get("client_secret"),
        metadata={str(k): str(v) for k, v in (payment_intent.get("metadata") or {}).items()},
        created_at=datetime.fromtimestamp(created, tz=UTC) if created else datetime.now(UTC),
        last_error=_error_from_stripe(last_error) if last_error else None,
    )


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol for Stripe.
    """

    name = ProviderName.STRIPE

    def __init__(self, api_key: str) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
        """
        self.api_key = api_key

    async def create_intent(
        self,
        amount: Decimal,
        currency: str,
        customer: Customer | None = None,
        metadata: dict[str, str] | None = None,
    ) -> PaymentIntent:
        """
        Create a Stripe PaymentIntent.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            logger.info(
                "creating_stripe_payment_intent",
                amount=str(amount),
                currency=currency,
            )

            params: dict[str, Any] = {
                "amount": to_minor_units(amount, currency),
                "currency": currency.lower(),
                "metadata": dict(metadata or {}),
            }
            if customer is not None and customer.email:
                params["receipt_email"] = customer.email

            payment_intent = await stripe.PaymentIntent.create_async(
                api_key=self.api_key, **params
            )

            logger.info(
                "stripe_payment_intent_created",
                payment_intent_id=payment_intent.id,
                status=payment_intent.status,
            )

            return intent_from_stripe(payment_intent)

        except stripe.StripeError as exc:
            logger.error(
                "stripe_payment_intent_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Stripe intent creation failed: {exc}") from exc

    async def process_payment(self, data: PaymentData) -> PaymentResult:
        """
        Confirm an existing intent, or create-and-confirm one, with the supplied token.
        """
        token = data.payment_method.token
        if not token:
            return missing_token_result(self.name)

        return_url = data.metadata.get("return_url")
        try:
            if data.payment_intent_id:
                params: dict[str, Any] = {"payment_method": token, "expand": ["latest_charge"]}
                if return_url:
                    params["return_url"] = return_url
                payment_intent = await stripe.PaymentIntent.confirm_async(
                    data.payment_intent_id, api_key=self.api_key, **params
                )
            else:
                params = {
                    "amount": to_minor_units(data.amount, data.currency),
                    "currency": data.currency.lower(),
                    "payment_method": token,
                    "confirm": True,
                    "metadata": dict(data.metadata),
                    "expand": ["latest_charge"],
                }
                if data.description:
                    params["description"] = data.description
                if data.customer is not None and data.customer.email:
                    params["receipt_email"] = data.customer.email
                if return_url:
                    params["return_url"] = return_url
                payment_intent = await stripe.PaymentIntent.create_async(
                    api_key=self.api_key, **params
                )

        except stripe.CardError as exc:
            logger.warning(
                "stripe_card_declined",
                code=exc.code,
                payment_intent_id=data.payment_intent_id,
            )
            decline_code = getattr(exc.error, "decline_code", None) if exc.error else None
            return failure_result(
                decline_code or exc.code or "card_declined",
                exc.user_message or "Your card was declined.",
                ErrorType.CARD_ERROR,
            )
        except stripe.StripeError as exc:
            logger.error(
                "stripe_payment_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                payment_intent_id=data.payment_intent_id,
            )
            return failure_result(
                exc.code or "api_error",
                "The payment provider could not process the request.",
                ErrorType.API_ERROR,
            )

        return self._result_from_intent(payment_intent)

    def _result_from_intent(self, payment_intent: Any) -> PaymentResult:
        intent = intent_from_stripe(payment_intent)
        status = payment_intent["status"]

        logger.info(
            "stripe_payment_intent_confirmed",
            payment_intent_id=intent.id,
            status=status,
        )

        if status in ("succeeded", "processing", "requires_capture"):
            charge = payment_intent.get("latest_charge")
            if isinstance(charge, str) or charge is None:
                transaction_id = charge or intent.id
                receipt_url = None
            else:
                transaction_id = charge.get("id") or intent.id
                receipt_url = charge.get("receipt_url")
            return PaymentResult(
                success=True,
                payment_intent=intent,
                transaction_id=transaction_id,
                receipt_url=receipt_url,
            )

        if status == "requires_action":
            next_action = payment_intent.get("next_action") or {}
            redirect = next_action.get("redirect_to_url") if next_action else None
            if redirect and redirect.get("url"):
                action = NextAction(
                    type=NextActionType.REDIRECT_TO_URL, redirect_to_url=redirect["url"]
                )
            else:
                action = NextAction(type=NextActionType.USE_PROVIDER_SDK)
            return failure_result(
                "authentication_required",
                "This payment requires additional authentication.",
                ErrorType.AUTHENTICATION_ERROR,
                next_action=action,
                payment_intent=intent,
            )

        if status == "canceled":
            return failure_result(
                "payment_canceled",
                "The payment was canceled by the provider.",
                ErrorType.API_ERROR,
                payment_intent=intent,
            )

        error = intent.last_error
        return failure_result(
            error.code if error else "card_declined",
            error.message if error else "Your card was declined.",
            ErrorType.CARD_ERROR,
            payment_intent=intent,
        )
