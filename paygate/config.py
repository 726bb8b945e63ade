"""
Application Configuration - Pydantic Settings for type-safe config.

FAIL FAST - Provider credentials and simulator parameters are validated at
startup. The gateway never reads settings directly; it receives an explicit
GatewayConfig built from them.
"""

import sys
from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from paygate.exceptions import ConfigurationError
from paygate.models.api import ProviderName


@dataclass(frozen=True)
class MockSettings:
    """Parameters for the development payment simulator."""

    latency_min_seconds: float = 1.5
    latency_max_seconds: float = 3.5
    decline_rate: float = 0.05
    insufficient_funds_rate: float = 0.03
    authentication_rate: float = 0.02
    receipt_base_url: str = "https://payments.example.com/receipts"


@dataclass(frozen=True)
class GatewayConfig:
    """The configuration surface the payment core recognises."""

    provider: ProviderName
    api_key: str = ""
    webhook_secrets: dict[ProviderName, str] = field(default_factory=dict)
    timeout_seconds: float = 30.0
    paypal_base_url: str = "https://api-m.sandbox.paypal.com"
    paypal_webhook_id: str = ""
    square_base_url: str = "https://connect.squareupsandbox.com"
    square_notification_url: str = ""
    max_amount: Decimal | None = None
    supported_currencies: frozenset[str] | None = None
    mock: MockSettings = field(default_factory=MockSettings)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    environment: str = "development"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Payment Orchestration API"
    api_version: str = "0.1.0"
    api_description: str = "Checkout payment orchestration core"

    # Provider selection
    payment_provider: ProviderName = ProviderName.MOCK
    provider_timeout_seconds: float = 30.0

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # sk_test_... or sk_live_...
    stripe_webhook_secret: str = ""  # whsec_...

    # Payment Provider - PayPal
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_webhook_id: str = ""
    paypal_webhook_secret: str = ""
    paypal_base_url: str = "https://api-m.sandbox.paypal.com"

    # Payment Provider - Square
    square_access_token: str = ""
    square_webhook_signature_key: str = ""
    square_webhook_notification_url: str = ""
    square_base_url: str = "https://connect.squareupsandbox.com"

    # Mock simulator
    mock_webhook_secret: str = "whsec_mock_development"
    mock_latency_min_seconds: float = 1.5
    mock_latency_max_seconds: float = 3.5
    mock_decline_rate: float = 0.05
    mock_insufficient_funds_rate: float = 0.03
    mock_authentication_rate: float = 0.02
    receipt_base_url: str = "https://payments.example.com/receipts"

    # Order limits (disabled when unset)
    max_payment_amount: Decimal | None = None
    supported_currencies: str = ""  # Comma-separated ISO codes, e.g. "USD,CAD,EUR,GBP"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability
    metrics_enabled: bool = True
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "paygate-api"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        A real provider without credentials would only fail on the first
        checkout, so refuse to start instead.
        """
        errors: list[str] = []

        if self.payment_provider == ProviderName.STRIPE and not self.stripe_api_key:
            errors.append("STRIPE_API_KEY is required when PAYMENT_PROVIDER=stripe")
        if self.payment_provider == ProviderName.PAYPAL and not (
            self.paypal_client_id and self.paypal_client_secret
        ):
            errors.append(
                "PAYPAL_CLIENT_ID and PAYPAL_CLIENT_SECRET are required "
                "when PAYMENT_PROVIDER=paypal"
            )
        if self.payment_provider == ProviderName.SQUARE and not self.square_access_token:
            errors.append("SQUARE_ACCESS_TOKEN is required when PAYMENT_PROVIDER=square")

        if self.provider_timeout_seconds <= 0:
            errors.append("PROVIDER_TIMEOUT_SECONDS must be positive")
        if not 0 <= self.mock_latency_min_seconds <= self.mock_latency_max_seconds:
            errors.append("MOCK_LATENCY_MIN_SECONDS must be between 0 and MOCK_LATENCY_MAX_SECONDS")

        rates = (
            self.mock_decline_rate,
            self.mock_insufficient_funds_rate,
            self.mock_authentication_rate,
        )
        if any(rate < 0 for rate in rates) or sum(rates) > 1:
            errors.append("Mock outcome rates must be non-negative and sum to at most 1")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def currency_allowlist(self) -> frozenset[str] | None:
        """Parse SUPPORTED_CURRENCIES into a set (None = any currency)."""
        codes = {c.strip().upper() for c in self.supported_currencies.split(",") if c.strip()}
        return frozenset(codes) or None

    def provider_api_key(self) -> str:
        """API credential of the selected provider."""
        if self.payment_provider == ProviderName.STRIPE:
            return self.stripe_api_key
        if self.payment_provider == ProviderName.PAYPAL:
            return f"{self.paypal_client_id}:{self.paypal_client_secret}"
        if self.payment_provider == ProviderName.SQUARE:
            return self.square_access_token
        return ""

    def gateway_config(self) -> GatewayConfig:
        """Build the explicit configuration handed to the gateway and dispatcher."""
        return GatewayConfig(
            provider=self.payment_provider,
            api_key=self.provider_api_key(),
            webhook_secrets={
                ProviderName.STRIPE: self.stripe_webhook_secret,
                ProviderName.PAYPAL: self.paypal_webhook_secret,
                ProviderName.SQUARE: self.square_webhook_signature_key,
                ProviderName.MOCK: self.mock_webhook_secret,
            },
            timeout_seconds=self.provider_timeout_seconds,
            paypal_base_url=self.paypal_base_url,
            paypal_webhook_id=self.paypal_webhook_id,
            square_base_url=self.square_base_url,
            square_notification_url=self.square_webhook_notification_url,
            max_amount=self.max_payment_amount,
            supported_currencies=self.currency_allowlist,
            mock=MockSettings(
                latency_min_seconds=self.mock_latency_min_seconds,
                latency_max_seconds=self.mock_latency_max_seconds,
                decline_rate=self.mock_decline_rate,
                insufficient_funds_rate=self.mock_insufficient_funds_rate,
                authentication_rate=self.mock_authentication_rate,
                receipt_base_url=self.receipt_base_url,
            ),
        )


@lru_cache
def get_settings() -> Settings:
    """Get application settings instance (loaded once)."""
    return Settings()
