"""
Webhook Dispatcher - Verify, normalise and apply provider events.

Flow per delivery:
1. Verify the signature against the raw body (fail closed)
2. Parse the body and map the provider event to a canonical type
3. Claim the idempotency key, then under the intent lock check the transition
   and notify the order hook before writing the intent

Every provider's event vocabulary is normalised to Stripe-style canonical
names before anything is applied.
"""

import json
from collections.abc import Callable
from decimal import Decimal, InvalidOperation
from typing import Any

from structlog import get_logger

from paygate.exceptions import WebhookPayloadError, WebhookVerificationError
from paygate.models.api import ErrorType, IntentStatus, ProviderName
from paygate.models.domain import DisputeDetails, ErrorDetail, WebhookEvent
from paygate.observability.metrics import metrics
from paygate.observability.tracing import trace_operation
from paygate.services.intent_store import IdempotencyRegistry, IntentLocks, IntentStore
from paygate.services.order_hooks import OrderStatusHooks
from paygate.services.payment_provider import from_minor_units
from paygate.services.webhook_signatures import WebhookSignatureVerifier

logger = get_logger(__name__)

# Canonical event types
PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
PAYMENT_REQUIRES_ACTION = "payment_intent.requires_action"
PAYMENT_PROCESSING = "payment_intent.processing"
PAYMENT_CANCELED = "payment_intent.canceled"
DISPUTE_CREATED = "charge.dispute.created"

CANONICAL_STATUS: dict[str, IntentStatus] = {
    PAYMENT_SUCCEEDED: IntentStatus.SUCCEEDED,
    PAYMENT_FAILED: IntentStatus.CANCELED,
    PAYMENT_REQUIRES_ACTION: IntentStatus.REQUIRES_CONFIRMATION,
    PAYMENT_PROCESSING: IntentStatus.PROCESSING,
    PAYMENT_CANCELED: IntentStatus.CANCELED,
}

_STRIPE_EVENTS = frozenset({*CANONICAL_STATUS, DISPUTE_CREATED})

_PAYPAL_EVENTS: dict[str, str] = {
    "PAYMENT.CAPTURE.COMPLETED": PAYMENT_SUCCEEDED,
    "CHECKOUT.ORDER.COMPLETED": PAYMENT_SUCCEEDED,
    "PAYMENT.CAPTURE.DENIED": PAYMENT_FAILED,
    "CHECKOUT.ORDER.APPROVED": PAYMENT_REQUIRES_ACTION,
    "CUSTOMER.DISPUTE.CREATED": DISPUTE_CREATED,
}

_SQUARE_PAYMENT_STATUS: dict[str, str] = {
    "COMPLETED": PAYMENT_SUCCEEDED,
    "FAILED": PAYMENT_FAILED,
    "CANCELED": PAYMENT_FAILED,
}


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _optional_str(value: Any) -> str | None:
    return str(value) if value else None


# ============================================================================
# Event Parsing
# ============================================================================


def _parse_stripe(
    provider: ProviderName, payload: bytes, signature: str, body: dict[str, Any]
) -> WebhookEvent:
    """Stripe event envelope; the mock simulator emits the same shape."""
    event_id = body.get("id")
    event_type = body.get("type")
    if not event_id or not event_type:
        raise WebhookPayloadError("Event id and type are required")

    obj = _as_dict(_as_dict(body.get("data")).get("object"))
    if event_type == DISPUTE_CREATED:
        object_id = _optional_str(obj.get("charge"))
        intent_id = _optional_str(obj.get("payment_intent"))
    else:
        object_id = _optional_str(obj.get("id"))
        intent_id = object_id if str(event_type).startswith("payment_intent.") else None

    return WebhookEvent(
        provider=provider,
        payload=payload,
        signature=signature,
        event_id=str(event_id),
        type=str(event_type),
        canonical_type=event_type if event_type in _STRIPE_EVENTS else None,
        object_id=object_id,
        intent_id=intent_id,
        data_object=obj,
    )


def _parse_paypal(
    provider: ProviderName, payload: bytes, signature: str, body: dict[str, Any]
) -> WebhookEvent:
    event_id = body.get("id")
    event_type = body.get("event_type")
    if not event_id or not event_type:
        raise WebhookPayloadError("Event id and event_type are required")

    event_type = str(event_type)
    resource = _as_dict(body.get("resource"))
    object_id = _optional_str(resource.get("id"))
    intent_id: str | None = None

    if event_type.startswith("PAYMENT.CAPTURE."):
        related = _as_dict(_as_dict(resource.get("supplementary_data")).get("related_ids"))
        intent_id = _optional_str(related.get("order_id")) or object_id
    elif event_type.startswith("CHECKOUT.ORDER."):
        intent_id = object_id
    elif event_type == "CUSTOMER.DISPUTE.CREATED":
        transactions = resource.get("disputed_transactions") or [{}]
        object_id = _optional_str(_as_dict(transactions[0]).get("seller_transaction_id"))

    return WebhookEvent(
        provider=provider,
        payload=payload,
        signature=signature,
        event_id=str(event_id),
        type=event_type,
        canonical_type=_PAYPAL_EVENTS.get(event_type),
        object_id=object_id,
        intent_id=intent_id,
        data_object=resource,
    )


def _parse_square(
    provider: ProviderName, payload: bytes, signature: str, body: dict[str, Any]
) -> WebhookEvent:
    event_id = body.get("event_id")
    event_type = body.get("type")
    if not event_id or not event_type:
        raise WebhookPayloadError("event_id and type are required")

    event_type = str(event_type)
    data = _as_dict(body.get("data"))
    obj = _as_dict(data.get("object"))
    canonical: str | None = None
    object_id: str | None = None
    intent_id: str | None = None
    data_object: dict[str, Any] = obj

    if event_type == "payment.updated":
        payment = _as_dict(obj.get("payment"))
        data_object = payment
        canonical = _SQUARE_PAYMENT_STATUS.get(str(payment.get("status")))
        object_id = _optional_str(payment.get("id")) or _optional_str(data.get("id"))
        intent_id = _optional_str(payment.get("reference_id")) or object_id
    elif event_type == "dispute.created":
        dispute = _as_dict(obj.get("dispute"))
        data_object = dispute
        canonical = DISPUTE_CREATED
        object_id = _optional_str(_as_dict(dispute.get("disputed_payment")).get("payment_id"))

    return WebhookEvent(
        provider=provider,
        payload=payload,
        signature=signature,
        event_id=str(event_id),
        type=event_type,
        canonical_type=canonical,
        object_id=object_id,
        intent_id=intent_id,
        data_object=data_object,
    )


_PARSERS: dict[
    ProviderName, Callable[[ProviderName, bytes, str, dict[str, Any]], WebhookEvent]
] = {
    ProviderName.STRIPE: _parse_stripe,
    ProviderName.MOCK: _parse_stripe,
    ProviderName.PAYPAL: _parse_paypal,
    ProviderName.SQUARE: _parse_square,
}


def parse_event(provider: ProviderName, payload: bytes, signature: str) -> WebhookEvent:
    """
    Parse a verified webhook body into a WebhookEvent.

    Raises:
        WebhookPayloadError: If the body is not a JSON object or lacks an event id/type
    """
    try:
        body = json.loads(payload)
    except ValueError as exc:
        raise WebhookPayloadError("Body is not valid JSON") from exc
    if not isinstance(body, dict):
        raise WebhookPayloadError("Body must be a JSON object")
    return _PARSERS[provider](provider, payload, signature, body)


# ============================================================================
# Event Details
# ============================================================================


def failure_detail(event: WebhookEvent) -> ErrorDetail:
    """Error recorded on an intent moved to canceled by a failure event."""
    obj = event.data_object
    if event.provider in (ProviderName.STRIPE, ProviderName.MOCK):
        last_error = _as_dict(obj.get("last_payment_error"))
        return ErrorDetail(
            code=str(
                last_error.get("decline_code") or last_error.get("code") or "payment_failed"
            ),
            message=str(last_error.get("message") or "The payment failed."),
            type=ErrorType.CARD_ERROR,
        )
    if event.provider == ProviderName.SQUARE and obj.get("status") == "CANCELED":
        return ErrorDetail(
            code="payment_canceled",
            message="The payment was canceled by the provider.",
            type=ErrorType.API_ERROR,
        )
    return ErrorDetail(
        code="payment_declined",
        message=f"{event.provider.value} reported the payment as failed.",
        type=ErrorType.CARD_ERROR,
    )


def _decimal(value: Any) -> Decimal | None:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def dispute_details(event: WebhookEvent) -> DisputeDetails:
    """Extract the dispute facts forwarded to the order collaborator."""
    obj = event.data_object
    amount: Decimal | None = None
    currency: str | None = None

    if event.provider == ProviderName.PAYPAL:
        money = _as_dict(obj.get("dispute_amount"))
        currency = _optional_str(money.get("currency_code"))
        amount = _decimal(money.get("value")) if money.get("value") is not None else None
        return DisputeDetails(
            dispute_id=str(obj.get("dispute_id") or event.event_id),
            provider=event.provider,
            reason=_optional_str(obj.get("reason")),
            amount=amount,
            currency=currency,
            status=_optional_str(obj.get("status")),
        )

    if event.provider == ProviderName.SQUARE:
        money = _as_dict(obj.get("amount_money"))
        currency = _optional_str(money.get("currency"))
        if isinstance(money.get("amount"), int) and currency:
            amount = from_minor_units(money["amount"], currency)
        return DisputeDetails(
            dispute_id=str(obj.get("id") or obj.get("dispute_id") or event.event_id),
            provider=event.provider,
            reason=_optional_str(obj.get("reason")),
            amount=amount,
            currency=currency,
            status=_optional_str(obj.get("state")),
        )

    currency = _optional_str(obj.get("currency"))
    currency = currency.upper() if currency else None
    if isinstance(obj.get("amount"), int) and currency:
        amount = from_minor_units(obj["amount"], currency)
    return DisputeDetails(
        dispute_id=str(obj.get("id") or event.event_id),
        provider=event.provider,
        reason=_optional_str(obj.get("reason")),
        amount=amount,
        currency=currency,
        status=_optional_str(obj.get("status")),
    )


# ============================================================================
# Dispatcher
# ============================================================================


class WebhookDispatcher:
    """
    Applies verified provider events to tracked intents.

    handle() returns True when the delivery is accepted (applied, replayed or
    deliberately ignored) and False when it must be rejected.
    """

    def __init__(
        self,
        verifier: WebhookSignatureVerifier,
        store: IntentStore,
        hooks: OrderStatusHooks,
        registry: IdempotencyRegistry | None = None,
        locks: IntentLocks | None = None,
    ) -> None:
        self.verifier = verifier
        self.store = store
        self.hooks = hooks
        self.registry = registry if registry is not None else IdempotencyRegistry()
        self.locks = locks if locks is not None else IntentLocks()

    def verify_signature(self, provider: ProviderName, payload: bytes, signature: str) -> bool:
        try:
            self.verifier.verify(provider, payload, signature)
        except WebhookVerificationError as exc:
            logger.warning(
                "webhook_signature_rejected", provider=provider.value, reason=exc.message
            )
            return False
        return True

    async def handle(
        self, provider: ProviderName, raw_payload: bytes, signature_header: str
    ) -> bool:
        """
        Verify and apply one webhook delivery.

        Args:
            provider: Provider the route was called for
            raw_payload: Raw request body, exactly as received
            signature_header: Provider signature header value

        Returns:
            True to acknowledge the delivery, False to reject it
        """
        with trace_operation("webhook.handle", provider=provider.value) as span:
            if not self.verify_signature(provider, raw_payload, signature_header):
                metrics.record_webhook(provider.value, "rejected")
                return False

            try:
                event = parse_event(provider, raw_payload, signature_header)
            except WebhookPayloadError as exc:
                logger.warning(
                    "webhook_payload_rejected", provider=provider.value, reason=exc.message
                )
                metrics.record_webhook(provider.value, "rejected")
                return False

            span.set_attribute("webhook.event_type", event.type)
            logger.info(
                "webhook_received",
                provider=provider.value,
                event_id=event.event_id,
                event_type=event.type,
                canonical_type=event.canonical_type,
                payment_intent_id=event.intent_id,
            )

            if event.canonical_type is None:
                logger.info(
                    "webhook_event_ignored",
                    provider=provider.value,
                    event_id=event.event_id,
                    event_type=event.type,
                )
                metrics.record_webhook(provider.value, "ignored")
                return True

            if event.canonical_type == DISPUTE_CREATED:
                return await self._apply_dispute(event)
            return await self._apply_status(event, CANONICAL_STATUS[event.canonical_type])

    async def _apply_status(self, event: WebhookEvent, new_status: IntentStatus) -> bool:
        provider = event.provider.value
        if not event.intent_id:
            logger.warning(
                "webhook_missing_intent", provider=provider, event_id=event.event_id
            )
            metrics.record_webhook(provider, "rejected")
            return False

        key = f"{provider}:{event.intent_id}:{new_status.value}"
        if not self.registry.claim(key):
            logger.info("webhook_replay_ignored", idempotency_key=key, event_id=event.event_id)
            metrics.record_webhook(provider, "replayed")
            return True

        error = failure_detail(event) if event.canonical_type == PAYMENT_FAILED else None
        hook_notified = False

        try:
            async with self.locks.for_intent(event.intent_id):
                intent = await self.store.get(event.intent_id)
                updated = None
                if intent is not None:
                    if intent.status == new_status:
                        logger.info(
                            "webhook_already_applied",
                            payment_intent_id=intent.id,
                            status=new_status.value,
                        )
                        metrics.record_webhook(provider, "replayed")
                        return True
                    if not intent.can_transition_to(new_status):
                        logger.warning(
                            "webhook_transition_rejected",
                            payment_intent_id=intent.id,
                            current_status=intent.status.value,
                            requested_status=new_status.value,
                            event_id=event.event_id,
                        )
                        self.registry.release(key)
                        metrics.record_webhook(provider, "rejected")
                        return False
                    updated = intent.transition_to(new_status, error=error)
                else:
                    logger.info(
                        "webhook_intent_not_tracked",
                        payment_intent_id=event.intent_id,
                        status=new_status.value,
                    )

                await self.hooks.update_order_status(event.intent_id, new_status, error)
                hook_notified = True

                if updated is not None and intent is not None:
                    await self.store.set(updated)
                    metrics.record_transition(intent.status.value, new_status.value)

        except Exception:
            # Once the order hook has fired the claim stays, so a retry cannot fire it again
            if not hook_notified:
                self.registry.release(key)
            logger.exception(
                "webhook_apply_failed",
                provider=provider,
                event_id=event.event_id,
                payment_intent_id=event.intent_id,
                order_notified=hook_notified,
            )
            metrics.record_webhook(provider, "failed")
            return False

        logger.info(
            "webhook_applied",
            provider=provider,
            event_id=event.event_id,
            payment_intent_id=event.intent_id,
            status=new_status.value,
        )
        metrics.record_webhook(provider, "accepted")
        return True

    async def _apply_dispute(self, event: WebhookEvent) -> bool:
        provider = event.provider.value
        key = f"{provider}:dispute:{event.event_id}"
        if not self.registry.claim(key):
            logger.info("webhook_replay_ignored", idempotency_key=key, event_id=event.event_id)
            metrics.record_webhook(provider, "replayed")
            return True

        details = dispute_details(event)
        charge_id = event.object_id or details.dispute_id
        try:
            await self.hooks.notify_dispute(charge_id, details)
        except Exception:
            self.registry.release(key)
            logger.exception(
                "webhook_dispute_failed",
                provider=provider,
                event_id=event.event_id,
                dispute_id=details.dispute_id,
            )
            metrics.record_webhook(provider, "failed")
            return False

        logger.warning(
            "payment_dispute_received",
            provider=provider,
            charge_id=charge_id,
            dispute_id=details.dispute_id,
            reason=details.reason,
        )
        metrics.record_webhook(provider, "accepted")
        return True
