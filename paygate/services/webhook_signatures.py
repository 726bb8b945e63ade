"""
Webhook Signature Verification.

SECURITY: Every provider webhook is authenticated with an HMAC-SHA256 check
against a configured secret before its body is parsed. Verification fails
closed: a missing secret, an empty or malformed header, or a mismatch all
raise WebhookVerificationError.

Header formats:
    stripe  Stripe-Signature          t=<unix>,v1=<hex hmac of "<t>.<body>">
    paypal  joined transmission hdrs  <transmission id>|<transmission time>|<base64 sig>
            signed message            <transmission id>|<time>|<webhook id>|<crc32(body)>
    square  x-square-hmacsha256-...   base64 hmac of notification_url + body
    mock    X-Mock-Signature          sha256=<hex hmac of body>
"""

import base64
import binascii
import hashlib
import hmac
import time
import zlib

import stripe
from structlog import get_logger

from paygate.exceptions import WebhookVerificationError
from paygate.models.api import ProviderName

logger = get_logger(__name__)

STRIPE_TOLERANCE_SECONDS = 300


def _hmac_sha256(secret: str, message: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()


def compute_stripe_signature(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header value for a payload."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    return f"t={timestamp},v1={_hmac_sha256(secret, signed).hex()}"


def compute_paypal_signature(
    payload: bytes, secret: str, webhook_id: str, transmission_id: str, transmission_time: str
) -> str:
    """Build the joined PayPal signature header value for a payload."""
    crc = zlib.crc32(payload) & 0xFFFFFFFF
    message = f"{transmission_id}|{transmission_time}|{webhook_id}|{crc}".encode()
    signature = base64.b64encode(_hmac_sha256(secret, message)).decode()
    return f"{transmission_id}|{transmission_time}|{signature}"


def compute_square_signature(payload: bytes, secret: str, notification_url: str) -> str:
    """Build an x-square-hmacsha256-signature header value for a payload."""
    return base64.b64encode(_hmac_sha256(secret, notification_url.encode() + payload)).decode()


def compute_mock_signature(payload: bytes, secret: str) -> str:
    """Build an X-Mock-Signature header value for a payload."""
    return f"sha256={_hmac_sha256(secret, payload).hex()}"


class WebhookSignatureVerifier:
    """
    Per-provider webhook authentication.

    Usage:
        verifier = WebhookSignatureVerifier(secrets={ProviderName.MOCK: "whsec_..."})
        verifier.verify(ProviderName.MOCK, body, header)  # raises on failure
    """

    def __init__(
        self,
        secrets: dict[ProviderName, str],
        paypal_webhook_id: str = "",
        square_notification_url: str = "",
        stripe_tolerance_seconds: int = STRIPE_TOLERANCE_SECONDS,
    ) -> None:
        self._secrets = dict(secrets)
        self.paypal_webhook_id = paypal_webhook_id
        self.square_notification_url = square_notification_url
        self.stripe_tolerance_seconds = stripe_tolerance_seconds

    def verify(self, provider: ProviderName, payload: bytes, signature: str) -> None:
        """
        Authenticate a webhook body.

        Raises:
            WebhookVerificationError: On a missing secret, empty or malformed
                header, or signature mismatch
        """
        secret = self._secrets.get(provider, "")
        if not secret:
            raise WebhookVerificationError(f"No webhook secret configured for {provider.value}")
        if not signature or not signature.strip():
            raise WebhookVerificationError("Missing signature header")

        if provider == ProviderName.STRIPE:
            self._verify_stripe(payload, signature, secret)
        elif provider == ProviderName.PAYPAL:
            self._verify_paypal(payload, signature, secret)
        elif provider == ProviderName.SQUARE:
            self._verify_square(payload, signature, secret)
        else:
            self._verify_mock(payload, signature, secret)

    def _verify_stripe(self, payload: bytes, signature: str, secret: str) -> None:
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), signature, secret, self.stripe_tolerance_seconds
            )
        except stripe.SignatureVerificationError as exc:
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except UnicodeDecodeError as exc:
            raise WebhookVerificationError("Stripe webhook body is not UTF-8") from exc

    def _verify_paypal(self, payload: bytes, signature: str, secret: str) -> None:
        if not self.paypal_webhook_id:
            raise WebhookVerificationError("No PayPal webhook id configured")
        parts = signature.split("|")
        if len(parts) != 3 or not all(parts):
            raise WebhookVerificationError("Malformed PayPal signature header")
        transmission_id, transmission_time, provided = parts
        try:
            provided_bytes = base64.b64decode(provided, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise WebhookVerificationError("Malformed PayPal signature encoding") from exc

        expected = compute_paypal_signature(
            payload, secret, self.paypal_webhook_id, transmission_id, transmission_time
        ).rsplit("|", 1)[1]
        if not hmac.compare_digest(base64.b64decode(expected), provided_bytes):
            raise WebhookVerificationError("Invalid PayPal webhook signature")

    def _verify_square(self, payload: bytes, signature: str, secret: str) -> None:
        if not self.square_notification_url:
            raise WebhookVerificationError("No Square notification URL configured")
        try:
            provided = base64.b64decode(signature.strip(), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise WebhookVerificationError("Malformed Square signature encoding") from exc

        expected = _hmac_sha256(secret, self.square_notification_url.encode() + payload)
        if not hmac.compare_digest(expected, provided):
            raise WebhookVerificationError("Invalid Square webhook signature")

    def _verify_mock(self, payload: bytes, signature: str, secret: str) -> None:
        scheme, _, digest = signature.strip().partition("=")
        if scheme != "sha256" or not digest:
            raise WebhookVerificationError("Malformed mock signature header")
        try:
            provided = bytes.fromhex(digest)
        except ValueError as exc:
            raise WebhookVerificationError("Malformed mock signature digest") from exc

        if not hmac.compare_digest(_hmac_sha256(secret, payload), provided):
            raise WebhookVerificationError("Invalid mock webhook signature")
