"""
API Models - Enumerations and Pydantic models for request/response validation.

Request models only check shapes and types. Business validation of a payment
request belongs to the validator so that it is reported as a
``validation_error`` result instead of an HTTP 422.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class ProviderName(str, Enum):
    """Payment provider backends."""

    STRIPE = "stripe"
    PAYPAL = "paypal"
    SQUARE = "square"
    MOCK = "mock"


class IntentStatus(str, Enum):
    """Payment intent lifecycle, in forward order."""

    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (IntentStatus.SUCCEEDED, IntentStatus.CANCELED)


class PaymentMethodType(str, Enum):
    """Payment instrument types."""

    CARD = "card"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    APPLE_PAY = "apple_pay"
    GOOGLE_PAY = "google_pay"


class ErrorType(str, Enum):
    """Canonical failure classes carried by every failed PaymentResult."""

    CARD_ERROR = "card_error"
    VALIDATION_ERROR = "validation_error"
    API_ERROR = "api_error"
    AUTHENTICATION_ERROR = "authentication_error"


class NextActionType(str, Enum):
    """What the caller must do to resume a payment that needs action."""

    REDIRECT_TO_URL = "redirect_to_url"
    USE_PROVIDER_SDK = "use_provider_sdk"


class CardBrand(str, Enum):
    """Card networks recognised from the number prefix."""

    VISA = "visa"
    MASTERCARD = "mastercard"
    AMEX = "amex"
    DISCOVER = "discover"
    JCB = "jcb"
    DINERS = "diners"
    UNKNOWN = "unknown"


# ============================================================================
# Payment Request Models
# ============================================================================


class AddressModel(BaseModel):
    """Postal address."""

    line1: str = ""
    line2: str | None = None
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""


class CardModel(BaseModel):
    """Raw card fields as entered at checkout."""

    number: str
    expiry_month: int
    expiry_year: int
    cvc: str
    name: str = ""


class PaymentMethodModel(BaseModel):
    """Instrument used for one payment."""

    type: PaymentMethodType
    card: CardModel | None = None
    token: str | None = Field(None, max_length=255)
    billing_address: AddressModel = Field(default_factory=AddressModel)


class CustomerModel(BaseModel):
    """Customer contact details."""

    id: str | None = None
    email: str | None = None
    name: str | None = None
    phone: str | None = None


class ShippingModel(BaseModel):
    """Shipping recipient."""

    name: str
    address: AddressModel


class ProcessPaymentRequest(BaseModel):
    """POST /v1/payments/process request body."""

    amount: Decimal
    currency: str
    payment_method: PaymentMethodModel
    customer: CustomerModel | None = None
    shipping: ShippingModel | None = None
    description: str = ""
    metadata: dict[str, str] = Field(default_factory=dict)
    payment_intent_id: str | None = Field(None, max_length=255)


class CreateIntentRequest(BaseModel):
    """POST /v1/payments/intents request body."""

    amount: Decimal = Field(..., gt=0)
    currency: str = Field(..., min_length=3, max_length=3)
    customer: CustomerModel | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Ensure currency is uppercase ISO 4217 code."""
        return v.upper()


# ============================================================================
# Payment Response Models
# ============================================================================


class ErrorDetailModel(BaseModel):
    """Normalized failure description."""

    code: str
    message: str
    type: ErrorType


class NextActionModel(BaseModel):
    """Step-up action required to complete a payment."""

    type: NextActionType
    redirect_to_url: str | None = None


class PaymentIntentResponse(BaseModel):
    """Payment intent as returned to callers."""

    id: str
    provider: ProviderName
    amount: Decimal
    currency: str
    status: IntentStatus
    client_secret: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: datetime
    last_error: ErrorDetailModel | None = None


class PaymentResultResponse(BaseModel):
    """POST /v1/payments/process response."""

    success: bool
    payment_intent: PaymentIntentResponse | None = None
    transaction_id: str | None = None
    receipt_url: str | None = None
    error: ErrorDetailModel | None = None
    requires_action: bool = False
    next_action: NextActionModel | None = None


class WebhookAckResponse(BaseModel):
    """POST /v1/payments/webhooks/{provider} response."""

    received: bool


class SandboxCard(BaseModel):
    """A well-known sandbox card number."""

    number: str
    brand: CardBrand
    description: str


class SandboxCardsResponse(BaseModel):
    """GET /v1/payments/test-cards response."""

    success: list[SandboxCard]
    decline: list[SandboxCard]
    authentication: list[SandboxCard]


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    provider: ProviderName
    version: str
