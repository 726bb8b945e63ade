"""
Payment Provider Protocol - Provider-agnostic interface.

Any payment backend (Stripe, PayPal, Square, the mock simulator) implements
this interface so the gateway never branches on the provider name.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from paygate.models.api import ErrorType, ProviderName
from paygate.models.domain import (
    Customer,
    ErrorDetail,
    NextAction,
    PaymentData,
    PaymentIntent,
    PaymentResult,
)

# ISO 4217 currencies without minor units
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
        "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
    }
)


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a major-unit amount to the integer minor units providers expect."""
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int, currency: str) -> Decimal:
    """Convert provider minor units back to a major-unit Decimal."""
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(amount_minor)
    return (Decimal(amount_minor) / 100).quantize(Decimal("0.01"))


def failure_result(
    code: str,
    message: str,
    error_type: ErrorType,
    next_action: NextAction | None = None,
    payment_intent: PaymentIntent | None = None,
) -> PaymentResult:
    """Build a failed PaymentResult carrying a canonical error."""
    return PaymentResult(
        success=False,
        payment_intent=payment_intent,
        error=ErrorDetail(code=code, message=message, type=error_type),
        requires_action=next_action is not None,
        next_action=next_action,
    )


def missing_token_result(provider: ProviderName) -> PaymentResult:
    """Real providers need a tokenized instrument; raw card data never leaves the core."""
    return failure_result(
        "validation_error",
        f"A {provider.value} payment token is required",
        ErrorType.VALIDATION_ERROR,
    )


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    Failures of process_payment are reported in the returned PaymentResult,
    never as exceptions, and always carry one of the four canonical error
    types. create_intent raises PaymentProviderError when the provider call
    fails.
    """

    name: ProviderName

    async def create_intent(
        self,
        amount: Decimal,
        currency: str,
        customer: Customer | None = None,
        metadata: dict[str, str] | None = None,
    ) -> PaymentIntent:
        """
        Create a payment intent with the provider.

        Args:
            amount: Amount in major currency units
            currency: ISO 4217 code
            customer: Optional customer details
            metadata: Optional string metadata stored with the intent

        Returns:
            Intent in requires_payment_method (or requires_confirmation for
            order-then-capture providers)

        Raises:
            PaymentProviderError: If intent creation fails
        """
        ...

    async def process_payment(self, data: PaymentData) -> PaymentResult:
        """
        Attempt the charge.

        Args:
            data: Validated payment request

        Returns:
            Normalized payment result
        """
        ...
