"""
Payment Request Validator.

Pure, synchronous checks that run before any provider is contacted. The first
failing rule short-circuits with a human-readable message.
"""

import re
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal

from paygate.models.api import CardBrand, PaymentMethodType
from paygate.models.domain import CardData, PaymentData

CARD_NUMBER_PATTERN = re.compile(r"[0-9]{13,19}")
CVC_PATTERN = re.compile(r"[0-9]{3,4}")

_DEFAULT_GROUPS = (4, 4, 4, 4)
_AMEX_GROUPS = (4, 6, 5)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a payment request."""

    valid: bool
    message: str | None = None
    field: str | None = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def fail(cls, field: str, message: str) -> "ValidationResult":
        return cls(valid=False, message=message, field=field)


@dataclass(frozen=True)
class ValidationPolicy:
    """Optional merchant limits layered on top of the structural rules."""

    max_amount: Decimal | None = None
    supported_currencies: frozenset[str] | None = None


# ============================================================================
# Card Number Helpers
# ============================================================================


def _strip(number: str) -> str:
    return re.sub(r"[\s-]", "", number)


def luhn_checksum_valid(digits: str) -> bool:
    """
    Luhn check over a digit string.

    Walks right to left doubling every second digit (index 1, 3, 5 ... from
    the right), subtracting 9 from doubled values above 9.
    """
    total = 0
    for index, char in enumerate(reversed(digits)):
        digit = int(char)
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def validate_card_number(number: str) -> bool:
    """True if the number (spaces removed) is 13-19 digits and passes Luhn."""
    digits = number.replace(" ", "")
    if not CARD_NUMBER_PATTERN.fullmatch(digits):
        return False
    return luhn_checksum_valid(digits)


def validate_expiry(month: int, year: int, today: date | None = None) -> bool:
    """
    True if (year, month) is the current month or later.

    Two-digit years are read as 20YY.
    """
    if not 1 <= month <= 12:
        return False
    if 0 <= year < 100:
        year += 2000
    today = today or datetime.now(UTC).date()
    return (year, month) >= (today.year, today.month)


def validate_cvc(cvc: str) -> bool:
    return bool(CVC_PATTERN.fullmatch(cvc))


def detect_card_brand(number: str) -> CardBrand:
    """Card network from the number prefix (display only, never a validation rule)."""
    digits = _strip(number)
    if digits.startswith("4"):
        return CardBrand.VISA
    if len(digits) >= 2:
        prefix2 = int(digits[:2]) if digits[:2].isdigit() else -1
        if 51 <= prefix2 <= 55 or 22 <= prefix2 <= 27:
            return CardBrand.MASTERCARD
        if prefix2 in (34, 37):
            return CardBrand.AMEX
        if prefix2 == 35:
            return CardBrand.JCB
        if prefix2 in (36, 38):
            return CardBrand.DINERS
    if len(digits) >= 3 and digits[:3].isdigit() and 300 <= int(digits[:3]) <= 305:
        return CardBrand.DINERS
    if digits.startswith("6"):
        return CardBrand.DISCOVER
    return CardBrand.UNKNOWN


def _group(value: str, sizes: tuple[int, ...]) -> str:
    groups: list[str] = []
    position = 0
    for size in sizes:
        if position >= len(value):
            break
        groups.append(value[position : position + size])
        position += size
    while position < len(value):
        groups.append(value[position : position + 4])
        position += 4
    return " ".join(groups)


def _group_sizes(brand: CardBrand) -> tuple[int, ...]:
    return _AMEX_GROUPS if brand == CardBrand.AMEX else _DEFAULT_GROUPS


def format_card_number(number: str, brand: CardBrand | None = None) -> str:
    """Group digits in fours, or 4-6-5 for amex."""
    digits = _strip(number)
    return _group(digits, _group_sizes(brand or detect_card_brand(digits)))


def mask_card_number(number: str, mask_char: str = "*") -> str:
    """
    Keep the last four digits, mask the rest, and group like format_card_number.

    Raises:
        ValueError: If mask_char is not exactly one character
    """
    if len(mask_char) != 1:
        raise ValueError(f"mask_char must be a single character: {mask_char!r}")
    digits = _strip(number)
    if len(digits) < 4:
        return digits
    masked = mask_char * (len(digits) - 4) + digits[-4:]
    return _group(masked, _group_sizes(detect_card_brand(digits)))


# ============================================================================
# Request Validation
# ============================================================================


def _validate_card(card: CardData | None, today: date | None) -> ValidationResult:
    if card is None:
        return ValidationResult.fail("payment_method.card", "Card details are required")
    if not validate_card_number(card.number):
        return ValidationResult.fail("payment_method.card.number", "Invalid card number")
    if not validate_expiry(card.expiry_month, card.expiry_year, today):
        return ValidationResult.fail(
            "payment_method.card.expiry", "Card expiry date is invalid or in the past"
        )
    if not validate_cvc(card.cvc):
        return ValidationResult.fail("payment_method.card.cvc", "Invalid CVC")
    return ValidationResult.ok()


def validate_payment_data(
    data: PaymentData,
    today: date | None = None,
    policy: ValidationPolicy | None = None,
) -> ValidationResult:
    """
    Check a payment request for structural correctness.

    Args:
        data: The payment request
        today: Reference date for the expiry rule (defaults to the UTC date)
        policy: Optional amount and currency limits

    Returns:
        ValidationResult; the first failing rule wins
    """
    if data.amount <= 0:
        return ValidationResult.fail("amount", "Amount must be greater than 0")
    if len(data.currency) != 3:
        return ValidationResult.fail("currency", "Currency must be a 3-letter ISO code")

    if policy is not None:
        if policy.max_amount is not None and data.amount > policy.max_amount:
            return ValidationResult.fail(
                "amount", f"Amount exceeds the maximum of {policy.max_amount}"
            )
        if (
            policy.supported_currencies is not None
            and data.currency.upper() not in policy.supported_currencies
        ):
            return ValidationResult.fail(
                "currency", f"Currency {data.currency.upper()} is not supported"
            )

    if data.payment_method.type == PaymentMethodType.CARD:
        card_result = _validate_card(data.payment_method.card, today)
        if not card_result.valid:
            return card_result

    if not data.payment_method.billing_address.line1.strip():
        return ValidationResult.fail(
            "payment_method.billing_address.line1", "Billing address line 1 is required"
        )

    return ValidationResult.ok()
