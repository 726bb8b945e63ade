"""
FastAPI Dependencies - Access to the wired payment services.

The gateway and dispatcher are built once in the application lifespan and
kept on app.state; routes receive them through these dependencies so tests
can override them.
"""

from fastapi import Depends, HTTPException, Request, status

from paygate.config import Settings, get_settings
from paygate.services.gateway import PaymentGateway
from paygate.services.webhooks import WebhookDispatcher


def get_app_settings() -> Settings:
    return get_settings()


def get_gateway(request: Request) -> PaymentGateway:
    """Payment gateway built at startup."""
    gateway: PaymentGateway = request.app.state.gateway
    return gateway


def get_dispatcher(request: Request) -> WebhookDispatcher:
    """Webhook dispatcher built at startup."""
    dispatcher: WebhookDispatcher = request.app.state.dispatcher
    return dispatcher


def require_development(settings: Settings = Depends(get_app_settings)) -> None:
    """Reject the request outside the development environment."""
    if not settings.is_development:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Test cards are only available in development",
        )
