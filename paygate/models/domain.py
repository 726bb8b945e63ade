"""
Domain Models - Internal payment models using dataclasses.

Amounts are Decimal values in major currency units. Intents are immutable;
a status change produces a new PaymentIntent via transition_to().
"""

import hashlib
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal

from paygate.exceptions import InvalidStatusTransitionError
from paygate.models.api import (
    CardBrand,
    ErrorType,
    IntentStatus,
    NextActionType,
    PaymentMethodType,
    ProviderName,
)

# Forward order of non-terminal progress; CANCELED sits outside the sequence.
_STATUS_ORDER: dict[IntentStatus, int] = {
    IntentStatus.REQUIRES_PAYMENT_METHOD: 0,
    IntentStatus.REQUIRES_CONFIRMATION: 1,
    IntentStatus.PROCESSING: 2,
    IntentStatus.SUCCEEDED: 3,
}


def can_transition(current: IntentStatus, new: IntentStatus) -> bool:
    """Return True if an intent may move from current to new."""
    if current.is_terminal or current == new:
        return False
    if new == IntentStatus.CANCELED:
        return True
    return _STATUS_ORDER[new] > _STATUS_ORDER[current]


@dataclass(frozen=True)
class ErrorDetail:
    """Normalized failure description."""

    code: str
    message: str
    type: ErrorType


@dataclass(frozen=True)
class NextAction:
    """Step-up action the caller must follow before resuming."""

    type: NextActionType
    redirect_to_url: str | None = None


@dataclass(frozen=True)
class Address:
    """Postal address."""

    line1: str
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""
    line2: str | None = None


@dataclass(frozen=True)
class Customer:
    """Customer contact details."""

    id: str | None = None
    email: str | None = None
    name: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class Shipping:
    """Shipping recipient."""

    name: str
    address: Address


@dataclass(frozen=True)
class CardData:
    """Raw card fields. Never logged and never persisted."""

    number: str
    expiry_month: int
    expiry_year: int
    cvc: str
    name: str = ""

    @property
    def digits(self) -> str:
        return self.number.replace(" ", "")

    @property
    def last4(self) -> str:
        return self.digits[-4:]

    def __repr__(self) -> str:
        return f"CardData(last4={self.last4!r}, expiry={self.expiry_month}/{self.expiry_year})"


@dataclass(frozen=True)
class PaymentMethodData:
    """Instrument supplied with one payment request."""

    type: PaymentMethodType
    billing_address: Address
    card: CardData | None = None
    token: str | None = None


@dataclass(frozen=True)
class PaymentData:
    """One checkout payment request."""

    amount: Decimal
    currency: str
    payment_method: PaymentMethodData
    customer: Customer | None = None
    shipping: Shipping | None = None
    description: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    payment_intent_id: str | None = None


@dataclass(frozen=True)
class CardDetails:
    """Non-sensitive card facts kept on a reusable payment method."""

    brand: CardBrand
    last4: str
    expiry_month: int
    expiry_year: int
    fingerprint: str


@dataclass(frozen=True)
class PaymentMethod:
    """Reusable instrument reference (never raw card data)."""

    id: str
    type: PaymentMethodType
    card_details: CardDetails | None = None
    paypal_email: str | None = None
    is_default: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_card(cls, method_id: str, card: CardData, is_default: bool = False) -> "PaymentMethod":
        """Build a reference from raw card fields, keeping only brand, last4 and a fingerprint."""
        from paygate.services.validation import detect_card_brand

        fingerprint = hashlib.sha256(
            f"{card.digits}:{card.expiry_month}:{card.expiry_year}".encode()
        ).hexdigest()[:16]
        return cls(
            id=method_id,
            type=PaymentMethodType.CARD,
            card_details=CardDetails(
                brand=detect_card_brand(card.digits),
                last4=card.last4,
                expiry_month=card.expiry_month,
                expiry_year=card.expiry_year,
                fingerprint=fingerprint,
            ),
            is_default=is_default,
        )


@dataclass(frozen=True)
class PaymentIntent:
    """One attempted charge and its lifecycle status."""

    id: str
    provider: ProviderName
    amount: Decimal
    currency: str
    status: IntentStatus
    client_secret: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_error: ErrorDetail | None = None

    def __post_init__(self) -> None:
        """Validate intent constraints."""
        if self.amount <= 0:
            raise ValueError(f"Intent amount must be positive: {self.amount}")
        if len(self.currency) != 3:
            raise ValueError(f"Invalid currency code: {self.currency}")

    def can_transition_to(self, status: IntentStatus) -> bool:
        return can_transition(self.status, status)

    def transition_to(
        self, status: IntentStatus, error: ErrorDetail | None = None
    ) -> "PaymentIntent":
        """
        Move the intent to a new status.

        Raises:
            InvalidStatusTransitionError: If the move is backward, repeats the
                current status, or starts from a terminal status
        """
        if not self.can_transition_to(status):
            raise InvalidStatusTransitionError(self.id, self.status.value, status.value)
        return replace(self, status=status, last_error=error or self.last_error)


@dataclass(frozen=True)
class PaymentResult:
    """Normalized outcome of a payment attempt."""

    success: bool
    payment_intent: PaymentIntent | None = None
    transaction_id: str | None = None
    receipt_url: str | None = None
    error: ErrorDetail | None = None
    requires_action: bool = False
    next_action: NextAction | None = None


@dataclass(frozen=True)
class DisputeDetails:
    """Dispute facts forwarded to the order collaborator."""

    dispute_id: str
    provider: ProviderName
    reason: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    status: str | None = None


@dataclass(frozen=True)
class WebhookEvent:
    """Verified and parsed provider notification."""

    provider: ProviderName
    payload: bytes
    signature: str
    event_id: str
    type: str
    canonical_type: str | None
    object_id: str | None
    intent_id: str | None
    data_object: dict[str, object] = field(default_factory=dict)
