"""
Exception Classes - Strongly typed exception hierarchy.

These never cross PaymentGateway.process_payment; failures there are
reported as PaymentResult errors instead.
"""


class PaymentCoreError(Exception):
    """Base exception for all payment core errors."""

    pass


class ConfigurationError(PaymentCoreError):
    """Raised when critical configuration is missing or invalid."""

    pass


class PaymentProviderError(PaymentCoreError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str, code: str = "api_error") -> None:
        self.message = message
        self.code = code
        super().__init__(f"Payment provider error: {message}")


class ProviderTimeoutError(PaymentProviderError):
    """Raised when a provider call exceeds the caller's deadline."""

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{operation} timed out after {timeout_seconds}s", code="timeout")


class WebhookVerificationError(PaymentCoreError):
    """Raised when webhook verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class WebhookPayloadError(PaymentCoreError):
    """Raised when a verified webhook body cannot be interpreted."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook payload error: {message}")


class InvalidStatusTransitionError(PaymentCoreError):
    """Raised when an intent would move backward or leave a terminal status."""

    def __init__(self, intent_id: str, current: str, requested: str) -> None:
        self.intent_id = intent_id
        self.current = current
        self.requested = requested
        super().__init__(f"Intent {intent_id} cannot move from {current} to {requested}")


class IntentNotFoundError(PaymentCoreError):
    """Raised when an intent id is not in the in-flight store."""

    def __init__(self, intent_id: str) -> None:
        self.intent_id = intent_id
        super().__init__(f"Payment intent not found: {intent_id}")
