"""
API Routes - Payment endpoints for checkout.

Request bodies are converted to domain dataclasses here; services never see
pydantic models.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.datastructures import Headers
from structlog import get_logger

from paygate.api.dependencies import get_dispatcher, get_gateway, require_development
from paygate.exceptions import (
    IntentNotFoundError,
    InvalidStatusTransitionError,
    PaymentProviderError,
)
from paygate.models.api import (
    AddressModel,
    CardBrand,
    CreateIntentRequest,
    CustomerModel,
    ErrorDetailModel,
    NextActionModel,
    PaymentIntentResponse,
    PaymentResultResponse,
    ProcessPaymentRequest,
    ProviderName,
    SandboxCard,
    SandboxCardsResponse,
    WebhookAckResponse,
)
from paygate.models.domain import (
    Address,
    CardData,
    Customer,
    ErrorDetail,
    PaymentData,
    PaymentIntent,
    PaymentMethodData,
    PaymentResult,
    Shipping,
)
from paygate.services.gateway import PaymentGateway
from paygate.services.webhooks import WebhookDispatcher

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/payments", tags=["payments"])


# ============================================================================
# Model Conversion
# ============================================================================


def _address(model: AddressModel) -> Address:
    return Address(
        line1=model.line1,
        line2=model.line2,
        city=model.city,
        state=model.state,
        postal_code=model.postal_code,
        country=model.country,
    )


def _customer(model: CustomerModel | None) -> Customer | None:
    if model is None:
        return None
    return Customer(id=model.id, email=model.email, name=model.name, phone=model.phone)


def payment_data_from_request(request: ProcessPaymentRequest) -> PaymentData:
    """Convert a process-payment request body into PaymentData."""
    method = request.payment_method
    card = None
    if method.card is not None:
        card = CardData(
            number=method.card.number,
            expiry_month=method.card.expiry_month,
            expiry_year=method.card.expiry_year,
            cvc=method.card.cvc,
            name=method.card.name,
        )
    shipping = None
    if request.shipping is not None:
        shipping = Shipping(
            name=request.shipping.name, address=_address(request.shipping.address)
        )
    return PaymentData(
        amount=request.amount,
        currency=request.currency.upper(),
        payment_method=PaymentMethodData(
            type=method.type,
            billing_address=_address(method.billing_address),
            card=card,
            token=method.token,
        ),
        customer=_customer(request.customer),
        shipping=shipping,
        description=request.description,
        metadata=dict(request.metadata),
        payment_intent_id=request.payment_intent_id,
    )


def _error_model(error: ErrorDetail | None) -> ErrorDetailModel | None:
    if error is None:
        return None
    return ErrorDetailModel(code=error.code, message=error.message, type=error.type)


def intent_response(intent: PaymentIntent) -> PaymentIntentResponse:
    return PaymentIntentResponse(
        id=intent.id,
        provider=intent.provider,
        amount=intent.amount,
        currency=intent.currency,
        status=intent.status,
        client_secret=intent.client_secret,
        metadata=intent.metadata,
        created_at=intent.created_at,
        last_error=_error_model(intent.last_error),
    )


def result_response(result: PaymentResult) -> PaymentResultResponse:
    next_action = None
    if result.next_action is not None:
        next_action = NextActionModel(
            type=result.next_action.type,
            redirect_to_url=result.next_action.redirect_to_url,
        )
    return PaymentResultResponse(
        success=result.success,
        payment_intent=intent_response(result.payment_intent)
        if result.payment_intent
        else None,
        transaction_id=result.transaction_id,
        receipt_url=result.receipt_url,
        error=_error_model(result.error),
        requires_action=result.requires_action,
        next_action=next_action,
    )


def signature_header(provider: ProviderName, headers: Headers) -> str:
    """
    Pick the signature header value for a provider.

    PayPal splits its signature across three transmission headers; they are
    joined as "<id>|<time>|<signature>". A missing part yields an empty value.
    """
    if provider == ProviderName.STRIPE:
        return headers.get("stripe-signature", "")
    if provider == ProviderName.PAYPAL:
        parts = [
            headers.get("paypal-transmission-id", ""),
            headers.get("paypal-transmission-time", ""),
            headers.get("paypal-transmission-sig", ""),
        ]
        return "|".join(parts) if all(parts) else ""
    if provider == ProviderName.SQUARE:
        return headers.get("x-square-hmacsha256-signature", "")
    return headers.get("x-mock-signature", "")


# ============================================================================
# Payment Intents
# ============================================================================


@router.post(
    "/intents",
    response_model=PaymentIntentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_intent(
    request: CreateIntentRequest,
    gateway: PaymentGateway = Depends(get_gateway),
) -> PaymentIntentResponse:
    """Create a payment intent with the configured provider."""
    try:
        intent = await gateway.create_payment_intent(
            amount=request.amount,
            currency=request.currency,
            customer=_customer(request.customer),
            metadata=request.metadata,
        )
    except PaymentProviderError as exc:
        logger.error("create_intent_failed", error=exc.message, code=exc.code)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment provider unavailable",
        ) from exc

    return intent_response(intent)


@router.get("/intents/{intent_id}", response_model=PaymentIntentResponse)
async def get_intent(
    intent_id: str,
    gateway: PaymentGateway = Depends(get_gateway),
) -> PaymentIntentResponse:
    """Current status of a tracked payment intent."""
    try:
        intent = await gateway.get_payment_intent(intent_id)
    except IntentNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment intent not found",
        ) from exc

    return intent_response(intent)


@router.post("/intents/{intent_id}/cancel", response_model=PaymentIntentResponse)
async def cancel_intent(
    intent_id: str,
    gateway: PaymentGateway = Depends(get_gateway),
) -> PaymentIntentResponse:
    """Cancel a payment intent that has not finished yet."""
    try:
        intent = await gateway.cancel_payment_intent(intent_id)
    except IntentNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment intent not found",
        ) from exc
    except InvalidStatusTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Payment intent is already {exc.current}",
        ) from exc

    return intent_response(intent)


# ============================================================================
# Payments
# ============================================================================


@router.post("/process", response_model=PaymentResultResponse)
async def process_payment(
    request: ProcessPaymentRequest,
    gateway: PaymentGateway = Depends(get_gateway),
) -> PaymentResultResponse:
    """
    Charge a payment.

    Always answers 200; declines and validation failures are reported in the
    result body.
    """
    result = await gateway.process_payment(payment_data_from_request(request))
    return result_response(result)


# ============================================================================
# Webhooks
# ============================================================================


@router.post("/webhooks/{provider}", response_model=WebhookAckResponse)
async def receive_webhook(
    provider: str,
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> WebhookAckResponse:
    """
    Receive a provider webhook.

    The raw body is passed through untouched; signatures are computed over
    the exact bytes the provider sent.
    """
    try:
        provider_name = ProviderName(provider)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Unknown payment provider",
        ) from exc

    payload = await request.body()
    accepted = await dispatcher.handle(
        provider_name, payload, signature_header(provider_name, request.headers)
    )
    if not accepted:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook rejected",
        )

    return WebhookAckResponse(received=True)


# ============================================================================
# Development Helpers
# ============================================================================

SANDBOX_CARDS = SandboxCardsResponse(
    success=[
        SandboxCard(number="4242424242424242", brand=CardBrand.VISA, description="Visa - Success"),
        SandboxCard(
            number="5555555555554444",
            brand=CardBrand.MASTERCARD,
            description="Mastercard - Success",
        ),
        SandboxCard(
            number="378282246310005",
            brand=CardBrand.AMEX,
            description="American Express - Success",
        ),
        SandboxCard(
            number="6011111111111117", brand=CardBrand.DISCOVER, description="Discover - Success"
        ),
    ],
    decline=[
        SandboxCard(number="4000000000000002", brand=CardBrand.VISA, description="Card declined"),
        SandboxCard(
            number="4000000000009995", brand=CardBrand.VISA, description="Insufficient funds"
        ),
        SandboxCard(number="4000000000009987", brand=CardBrand.VISA, description="Lost card"),
        SandboxCard(number="4000000000009979", brand=CardBrand.VISA, description="Stolen card"),
    ],
    authentication=[
        SandboxCard(
            number="4000000000003220", brand=CardBrand.VISA, description="3D Secure required"
        ),
        SandboxCard(
            number="4000000000003238",
            brand=CardBrand.VISA,
            description="3D Secure required (fail)",
        ),
    ],
)


@router.get(
    "/test-cards",
    response_model=SandboxCardsResponse,
    dependencies=[Depends(require_development)],
)
async def list_test_cards() -> SandboxCardsResponse:
    """Sandbox card numbers for manual checkout testing (development only)."""
    return SANDBOX_CARDS
