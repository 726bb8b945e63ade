"""
Main Application - FastAPI application setup.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest

from paygate.api.routes import router
from paygate.config import get_settings
from paygate.models.api import HealthResponse
from paygate.observability import (
    get_logger,
    log_context,
    metrics,
    setup_logging,
    setup_tracing,
)
from paygate.observability.tracing import instrument_fastapi
from paygate.services.gateway import PaymentGateway
from paygate.services.intent_store import IdempotencyRegistry
from paygate.services.order_hooks import LoggingOrderHooks
from paygate.services.webhook_signatures import WebhookSignatureVerifier
from paygate.services.webhooks import WebhookDispatcher

settings = get_settings()

# Setup logging before anything else
setup_logging(settings)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Builds the gateway and webhook dispatcher once from the gateway
    configuration, and closes the shared HTTP client on shutdown.
    """
    config = settings.gateway_config()
    http_client = httpx.AsyncClient(timeout=config.timeout_seconds)
    hooks = LoggingOrderHooks()

    gateway = PaymentGateway.from_config(config, hooks=hooks, http_client=http_client)
    app.state.gateway = gateway
    app.state.dispatcher = WebhookDispatcher(
        verifier=WebhookSignatureVerifier(
            secrets=config.webhook_secrets,
            paypal_webhook_id=config.paypal_webhook_id,
            square_notification_url=config.square_notification_url,
        ),
        store=gateway.store,
        hooks=hooks,
        registry=IdempotencyRegistry(),
        locks=gateway.locks,
    )
    metrics.set_service_info(settings.api_version, settings.service_name)

    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        environment=settings.environment,
        provider=config.provider.value,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
    )

    yield

    logger.info("application_shutting_down")
    await http_client.aclose()


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Log request validation errors without echoing request bodies (they may hold card data)."""
    sanitized_errors = [
        {"type": error.get("type"), "loc": error.get("loc"), "msg": error.get("msg")}
        for error in exc.errors()
    ]

    logger.warning(
        "request_validation_error",
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
    )
    return JSONResponse(
        status_code=422,
        content={"detail": sanitized_errors},
    )


# Setup tracing
setup_tracing(settings)
instrument_fastapi(app, settings)


# Request logging middleware
@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")
    endpoint = request.url.path
    method = request.method

    # Every log line emitted while handling the request carries its id
    with log_context(request_id=request_id):
        logger.info("request_started", method=method, path=endpoint)
        metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            metrics.record_http_request(endpoint, method, response.status_code, duration)

            logger.info(
                "request_completed",
                method=method,
                path=endpoint,
                status_code=response.status_code,
                duration_seconds=duration,
            )

            return response
        except Exception as e:
            duration = time.time() - start_time
            metrics.record_http_request(endpoint, method, 500, duration)
            metrics.record_error(type(e).__name__, "http_request")

            logger.error(
                "request_failed",
                method=method,
                path=endpoint,
                error=str(e),
                duration_seconds=duration,
                exc_info=True,
            )
            raise
        finally:
            metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).dec()


app.include_router(router)


@app.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Liveness check reporting the active provider."""
    gateway: PaymentGateway = request.app.state.gateway
    return HealthResponse(
        status="healthy",
        provider=gateway.provider_name,
        version=settings.api_version,
    )


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    if not settings.metrics_enabled:
        return PlainTextResponse("", status_code=404)
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "paygate.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        log_level=settings.log_level.lower(),
    )
