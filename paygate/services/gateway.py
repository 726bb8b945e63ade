"""
Payment Gateway - Provider-agnostic facade used by checkout.

The gateway owns exactly one provider adapter, chosen once from explicit
configuration. Every payment request is validated before the adapter is
called, every adapter call runs under a deadline, and no exception escapes
process_payment: failures come back as PaymentResult errors.
"""

import asyncio
import random
import time
from dataclasses import replace
from decimal import Decimal

import httpx
from structlog import get_logger

from paygate.config import GatewayConfig
from paygate.exceptions import (
    ConfigurationError,
    IntentNotFoundError,
    PaymentProviderError,
    ProviderTimeoutError,
)
from paygate.models.api import ErrorType, IntentStatus, PaymentMethodType, ProviderName
from paygate.models.domain import Customer, ErrorDetail, PaymentData, PaymentIntent, PaymentResult
from paygate.observability.metrics import metrics
from paygate.observability.tracing import trace_operation
from paygate.services.intent_store import InMemoryIntentStore, IntentLocks, IntentStore
from paygate.services.mock_provider import MockPaymentProvider
from paygate.services.order_hooks import LoggingOrderHooks, OrderStatusHooks
from paygate.services.payment_provider import PaymentProvider, failure_result
from paygate.services.paypal_provider import PayPalProvider
from paygate.services.square_provider import SquareProvider
from paygate.services.stripe_provider import StripeProvider
from paygate.services.validation import (
    ValidationPolicy,
    ValidationResult,
    validate_payment_data,
)

logger = get_logger(__name__)


def build_provider(
    config: GatewayConfig,
    rng: random.Random | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> PaymentProvider:
    """
    Construct the adapter named by config.provider.

    Args:
        config: Gateway configuration
        rng: Random source for the mock simulator
        http_client: Shared HTTP client for the PayPal and Square adapters

    Raises:
        ConfigurationError: If a real provider is selected without credentials
    """
    if config.provider != ProviderName.MOCK and not config.api_key:
        raise ConfigurationError(f"No API key configured for {config.provider.value}")

    if config.provider == ProviderName.STRIPE:
        return StripeProvider(api_key=config.api_key)
    if config.provider == ProviderName.PAYPAL:
        return PayPalProvider.from_api_key(
            config.api_key, base_url=config.paypal_base_url, client=http_client
        )
    if config.provider == ProviderName.SQUARE:
        return SquareProvider(
            access_token=config.api_key, base_url=config.square_base_url, client=http_client
        )
    return MockPaymentProvider.from_settings(config.mock, rng=rng)


class PaymentGateway:
    """
    Checkout-facing payment facade.

    Usage:
        gateway = PaymentGateway.from_config(settings.gateway_config())
        intent = await gateway.create_payment_intent(Decimal("49.99"), "USD")
        result = await gateway.process_payment(payment_data)
    """

    def __init__(
        self,
        provider: PaymentProvider,
        store: IntentStore | None = None,
        hooks: OrderStatusHooks | None = None,
        timeout_seconds: float = 30.0,
        policy: ValidationPolicy | None = None,
        locks: IntentLocks | None = None,
    ) -> None:
        self._provider = provider
        self.store: IntentStore = store if store is not None else InMemoryIntentStore()
        self.hooks: OrderStatusHooks = hooks if hooks is not None else LoggingOrderHooks()
        self.timeout_seconds = timeout_seconds
        self.policy = policy
        self.locks = locks if locks is not None else IntentLocks()

    @classmethod
    def from_config(
        cls,
        config: GatewayConfig,
        store: IntentStore | None = None,
        hooks: OrderStatusHooks | None = None,
        rng: random.Random | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "PaymentGateway":
        """Select the provider once and wire the gateway around it."""
        policy = None
        if config.max_amount is not None or config.supported_currencies is not None:
            policy = ValidationPolicy(
                max_amount=config.max_amount,
                supported_currencies=config.supported_currencies,
            )
        return cls(
            provider=build_provider(config, rng=rng, http_client=http_client),
            store=store,
            hooks=hooks,
            timeout_seconds=config.timeout_seconds,
            policy=policy,
        )

    @property
    def provider_name(self) -> ProviderName:
        return self._provider.name

    # ========================================================================
    # Intents
    # ========================================================================

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        customer: Customer | None = None,
        metadata: dict[str, str] | None = None,
    ) -> PaymentIntent:
        """
        Create an intent with the configured provider and track it.

        Raises:
            ValueError: If amount is not positive or currency is not a 3-letter code
            PaymentProviderError: If the provider fails or misses the deadline
        """
        if amount <= 0:
            raise ValueError(f"Intent amount must be positive: {amount}")
        if len(currency) != 3:
            raise ValueError(f"Invalid currency code: {currency}")

        provider = self.provider_name.value
        with trace_operation("provider.create_intent", provider=provider, currency=currency):
            try:
                intent = await asyncio.wait_for(
                    self._provider.create_intent(amount, currency, customer, metadata),
                    timeout=self.timeout_seconds,
                )
            except TimeoutError as exc:
                logger.error(
                    "payment_intent_timeout",
                    provider=provider,
                    timeout_seconds=self.timeout_seconds,
                )
                metrics.record_error("timeout", "create_intent")
                raise ProviderTimeoutError("create_intent", self.timeout_seconds) from exc
            except PaymentProviderError as exc:
                metrics.record_error(exc.code, "create_intent")
                raise
            except Exception as exc:
                logger.exception("payment_intent_failed", provider=provider)
                metrics.record_error(type(exc).__name__, "create_intent")
                raise PaymentProviderError(str(exc)) from exc

        await self.store.set(intent)
        metrics.record_intent_created(provider)
        logger.info(
            "payment_intent_created",
            provider=provider,
            payment_intent_id=intent.id,
            status=intent.status.value,
        )
        return intent

    async def get_payment_intent(self, intent_id: str) -> PaymentIntent:
        """
        Look up a tracked intent.

        Raises:
            IntentNotFoundError: If the intent is not in the store
        """
        intent = await self.store.get(intent_id)
        if intent is None:
            raise IntentNotFoundError(intent_id)
        return intent

    async def cancel_payment_intent(self, intent_id: str) -> PaymentIntent:
        """
        Cancel a non-terminal intent and tell the order collaborator.

        Raises:
            IntentNotFoundError: If the intent is not in the store
            InvalidStatusTransitionError: If the intent is already terminal
        """
        async with self.locks.for_intent(intent_id):
            intent = await self.get_payment_intent(intent_id)
            canceled = intent.transition_to(IntentStatus.CANCELED)
            await self.store.set(canceled)
        metrics.record_transition(intent.status.value, canceled.status.value)
        logger.info("payment_intent_canceled", payment_intent_id=intent_id)
        await self._notify(intent_id, canceled.status, None)
        return canceled

    # ========================================================================
    # Payments
    # ========================================================================

    async def process_payment(self, data: PaymentData) -> PaymentResult:
        """
        Validate and charge a payment request.

        Args:
            data: Payment request from checkout

        Returns:
            PaymentResult; a failed result always carries an error
        """
        provider = self.provider_name.value

        validation = validate_payment_data(data, policy=self.policy)
        if validation.valid and data.payment_intent_id:
            validation = await self._check_bound_intent(data)
        if not validation.valid:
            logger.info(
                "payment_validation_failed",
                provider=provider,
                field=validation.field,
                reason=validation.message,
                payment_intent_id=data.payment_intent_id,
            )
            metrics.record_payment(
                provider, False, 0.0, error_type=ErrorType.VALIDATION_ERROR.value
            )
            return failure_result(
                "validation_error",
                validation.message or "Invalid payment request",
                ErrorType.VALIDATION_ERROR,
            )

        card = data.payment_method.card
        logger.info(
            "payment_processing_started",
            provider=provider,
            amount=str(data.amount),
            currency=data.currency,
            method_type=data.payment_method.type.value,
            card_last4=card.last4
            if card is not None and data.payment_method.type == PaymentMethodType.CARD
            else None,
            payment_intent_id=data.payment_intent_id,
        )

        start = time.perf_counter()
        with trace_operation(
            "provider.process_payment",
            provider=provider,
            payment_intent_id=data.payment_intent_id,
        ) as span:
            result = await self._call_provider(data)
            span.set_attribute("payment.success", result.success)
        duration = time.perf_counter() - start

        metrics.record_payment(
            provider,
            result.success,
            duration,
            amount=float(data.amount),
            error_type=result.error.type.value if result.error else None,
        )

        if data.payment_intent_id:
            await self._apply_outcome(data.payment_intent_id, result)

        logger.info(
            "payment_processing_completed",
            provider=provider,
            success=result.success,
            error_code=result.error.code if result.error else None,
            transaction_id=result.transaction_id,
            duration_seconds=round(duration, 3),
        )
        return result

    async def _check_bound_intent(self, data: PaymentData) -> ValidationResult:
        """
        Refuse to charge against a tracked intent that is terminal or was
        created for a different amount or currency. Untracked ids pass through.
        """
        intent = await self.store.get(data.payment_intent_id or "")
        if intent is None:
            return ValidationResult.ok()
        if intent.status.is_terminal:
            return ValidationResult.fail(
                "payment_intent_id", f"Payment intent is already {intent.status.value}"
            )
        if data.amount != intent.amount or data.currency.upper() != intent.currency.upper():
            return ValidationResult.fail(
                "amount", "Payment amount or currency does not match the payment intent"
            )
        return ValidationResult.ok()

    async def _call_provider(self, data: PaymentData) -> PaymentResult:
        provider = self.provider_name.value
        try:
            result = await asyncio.wait_for(
                self._provider.process_payment(data), timeout=self.timeout_seconds
            )
        except TimeoutError:
            logger.warning(
                "payment_provider_timeout",
                provider=provider,
                timeout_seconds=self.timeout_seconds,
            )
            metrics.record_error("timeout", "process_payment")
            return failure_result(
                "timeout",
                f"The payment provider did not respond within {self.timeout_seconds}s.",
                ErrorType.API_ERROR,
            )
        except Exception as exc:
            logger.exception("payment_provider_exception", provider=provider)
            metrics.record_error(type(exc).__name__, "process_payment")
            return failure_result(
                "api_error",
                "The payment could not be processed. Please try again.",
                ErrorType.API_ERROR,
            )

        if not result.success and result.error is None:
            logger.warning("payment_failure_without_error", provider=provider)
            return replace(
                result,
                error=ErrorDetail(
                    code="api_error",
                    message="The payment provider reported a failure without details.",
                    type=ErrorType.API_ERROR,
                ),
            )
        return result

    async def _apply_outcome(self, intent_id: str, result: PaymentResult) -> None:
        """Move a tracked intent according to a provider outcome and notify the order hook."""
        async with self.locks.for_intent(intent_id):
            updated = await self._record_outcome(intent_id, result)
        if updated is not None:
            await self._notify(intent_id, updated.status, result.error)

    async def _record_outcome(
        self, intent_id: str, result: PaymentResult
    ) -> PaymentIntent | None:
        intent = await self.store.get(intent_id)
        if intent is None:
            return None

        target: IntentStatus | None = None
        if result.success:
            reported = result.payment_intent.status if result.payment_intent else None
            target = (
                IntentStatus.PROCESSING
                if reported == IntentStatus.PROCESSING
                else IntentStatus.SUCCEEDED
            )
        elif result.error is not None and result.error.type == ErrorType.AUTHENTICATION_ERROR:
            target = IntentStatus.REQUIRES_CONFIRMATION

        updated = intent
        if target is not None and intent.can_transition_to(target):
            updated = intent.transition_to(target, error=result.error)
            metrics.record_transition(intent.status.value, target.value)
        elif target is not None and target != intent.status:
            logger.warning(
                "payment_outcome_not_applied",
                payment_intent_id=intent_id,
                current_status=intent.status.value,
                requested_status=target.value,
            )
        elif result.error is not None:
            updated = replace(intent, last_error=result.error)

        await self.store.set(updated)
        return updated

    async def _notify(
        self, intent_id: str, status: IntentStatus, error: ErrorDetail | None
    ) -> None:
        try:
            await self.hooks.update_order_status(intent_id, status, error)
        except Exception:
            logger.exception(
                "order_hook_failed",
                payment_intent_id=intent_id,
                status=status.value,
            )
            metrics.record_error("order_hook_failed", "update_order_status")
