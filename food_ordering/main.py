"""
FastAPI Application Entry Point

Food Ordering Backend - Orders & Payment Reconciliation
Supports both Mock payment providers (development) and Stripe/SSLCommerz
(staging/production).

Endpoints:
    - /api/orders...: Order lifecycle (create, list, status, cancel, delete)
    - POST /api/payment/stripe/create-session: Stripe Checkout session
    - POST /api/payment/stripe/webhook: Signed Stripe events
    - POST /api/payment/stripe/verify: Client-side session confirmation
    - POST /api/payment/initiate: SSLCommerz session
    - POST /api/payment/verify: SSLCommerz validation by val_id
    - POST /api/payment/success|fail|cancel|ipn: SSLCommerz callbacks
    - GET /health: System health check
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional, Union

import uvicorn
from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from food_ordering.auth import CurrentUser, get_current_user
from food_ordering.core.config import Settings, get_settings, setup_logging
from food_ordering.core.exceptions import (
    Forbidden,
    OrderingError,
    OrderNotFound,
    ValidationError,
)
from food_ordering.database import engine, get_db, init_db
from food_ordering.models import Order, PaymentMethod, PaymentStatus
from food_ordering.schemas import (
    CreateSessionRequest,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    OrderCreate,
    OrderResponse,
    OrderStatsResponse,
    OrderStatusUpdate,
    SessionResponse,
    SSLCommerzVerifyRequest,
    StripeVerifyRequest,
    VerifyResponse,
    WeeklySalesEntry,
)
from food_ordering.services.checkout import start_payment_session
from food_ordering.services.orders import OrderService
from food_ordering.services.payment import (
    BasePaymentProvider,
    CallbackChannel,
    PaymentEvent,
    get_payment_provider,
)
from food_ordering.services.reconciliation import (
    ReconciliationEngine,
    ReconciliationResult,
    payment_summary,
)
from food_ordering.tasks import record_completed_payment

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

def check_provider_config(config: Settings) -> list[str]:
    """
    Missing provider settings for a real-services environment.

    Production refuses to start without them; staging only warns.
    """
    missing = config.validate_production_config()
    if missing and config.is_production:
        raise RuntimeError(f"Missing production config: {', '.join(missing)}")
    return missing


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    logger.info("✅ Database initialized")

    # Validate production config before touching real providers
    if settings.use_real_services:
        missing = check_provider_config(settings)
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    for method in PaymentMethod:
        try:
            provider = get_payment_provider(method)
            logger.info(f"✅ Payment Provider ({method.value}): {type(provider).__name__}")
        except ValueError as e:
            logger.warning(f"⚠️ Payment Provider ({method.value}) unavailable: {e}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Order lifecycle and payment reconciliation for a food ordering "
        "platform. Payments run through Stripe Checkout or SSLCommerz."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


# =============================================================================
# DEPENDENCIES
# =============================================================================

def _record_in_ledger(order: Order, event: PaymentEvent) -> None:
    """Queue the ledger row for a payment that just completed."""
    record_completed_payment.delay(payment_summary(order, event))


reconciliation_engine = ReconciliationEngine(on_completed=_record_in_ledger)


def get_reconciliation_engine() -> ReconciliationEngine:
    return reconciliation_engine


def get_stripe_provider() -> BasePaymentProvider:
    return get_payment_provider(PaymentMethod.STRIPE)


def get_sslcommerz_provider() -> BasePaymentProvider:
    return get_payment_provider(PaymentMethod.SSLCOMMERZ)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def frontend_redirect(path: str, order_id: Optional[str] = None) -> RedirectResponse:
    """303 back to the storefront after a gateway callback."""
    url = f"{settings.frontend_url.rstrip('/')}/{path}"
    if order_id:
        url = f"{url}?orderId={order_id}"
    return RedirectResponse(url, status_code=303)


async def load_authorized_order(
    db: AsyncSession,
    order_id: str,
    user: CurrentUser,
) -> Order:
    order = await db.get(Order, order_id)
    if order is None:
        raise OrderNotFound(order_id)
    if not user.can_access(order.owner_id):
        raise Forbidden("Access denied")
    return order


async def confirm_with_provider(
    provider: BasePaymentProvider,
    event: PaymentEvent,
) -> Optional[PaymentEvent]:
    """
    Replace an unsigned ``completed`` callback with the provider's own
    answer for its validation handle. Returns None when the provider does
    not confirm the payment.
    """
    if not event.provider_ref:
        logger.warning(f"{provider.provider_name}: completion for {event.order_id} has no val_id, ignored")
        return None

    outcome = await provider.verify_session(event.provider_ref)
    if not outcome.is_completed:
        logger.warning(
            f"{provider.provider_name}: {event.provider_ref} not confirmed "
            f"(status={outcome.raw_status}), callback ignored"
        )
        return None

    if outcome.order_id and event.order_id and outcome.order_id != event.order_id:
        logger.warning(
            f"{provider.provider_name}: {event.provider_ref} belongs to order "
            f"{outcome.order_id}, not {event.order_id}; callback ignored"
        )
        return None

    confirmed = outcome.to_event(provider.provider_name, trusted=True)
    confirmed.order_id = confirmed.order_id or event.order_id
    confirmed.transaction_id = confirmed.transaction_id or event.transaction_id
    confirmed.metadata = dict(event.metadata, confirmed=True)
    return confirmed


async def apply_form_callback(
    db: AsyncSession,
    provider: BasePaymentProvider,
    reconciler: ReconciliationEngine,
    form: dict[str, Any],
    channel: CallbackChannel,
) -> Optional[ReconciliationResult]:
    """Parse, optionally confirm, and reconcile an SSLCommerz form post."""
    event = await provider.handle_callback(form, channel=channel)
    if event is None:
        return None

    if event.outcome == PaymentStatus.COMPLETED and settings.sslcommerz_verify_callbacks:
        event = await confirm_with_provider(provider, event)
        if event is None:
            return None

    return await reconciler.apply(db, event)


def verify_failed(message: str, status: Optional[str]) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=VerifyResponse(success=False, message=message, status=status).model_dump(
            by_alias=True, exclude_none=True
        ),
    )


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍔 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db)
) -> HealthResponse:
    """Verify the database and both payment providers."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(select(1))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    # Check payment providers
    provider_status: dict[str, str] = {}
    for method in PaymentMethod:
        try:
            healthy = await get_payment_provider(method).health_check()
            provider_status[method.value] = "healthy" if healthy else "unhealthy"
        except (ValueError, OrderingError) as e:
            provider_status[method.value] = f"unhealthy: {e}"
            logger.error(f"Payment provider {method.value} health check failed: {e}")

    overall = "operational" if all(
        s == "healthy" for s in [db_status, *provider_status.values()]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        payment_providers=provider_status,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    status_code=201,
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Create Order",
)
async def create_order(
    order_data: OrderCreate,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
) -> OrderResponse:
    """Create a pending order for the caller."""
    order = await OrderService(db).create(user.user_id, order_data)
    return OrderResponse.model_validate(order)


@app.get(
    "/api/orders",
    response_model=list[OrderResponse],
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="List All Orders (admin)",
)
async def list_orders(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
) -> list[OrderResponse]:
    orders = await OrderService(db).list_all(user)
    return [OrderResponse.model_validate(order) for order in orders]


@app.get(
    "/api/orders/my-orders",
    response_model=list[OrderResponse],
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="List My Orders",
)
async def list_my_orders(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
) -> list[OrderResponse]:
    orders = await OrderService(db).list_mine(user)
    return [OrderResponse.model_validate(order) for order in orders]


@app.get(
    "/api/orders/stats",
    response_model=OrderStatsResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def order_stats(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
) -> OrderStatsResponse:
    """Order count and revenue, cancelled orders excluded."""
    return OrderStatsResponse(**await OrderService(db).stats(user))


@app.get(
    "/api/orders/weekly-sales",
    response_model=list[WeeklySalesEntry],
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def weekly_sales(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
) -> list[WeeklySalesEntry]:
    """Sales of the last seven days per weekday, Monday first."""
    days = await OrderService(db).weekly_sales(user)
    return [WeeklySalesEntry(**day) for day in days]


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def get_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
) -> OrderResponse:
    """Get a specific order by ID."""
    order = await OrderService(db).get(order_id, user)
    return OrderResponse.model_validate(order)


@app.put(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Update Fulfillment Status (admin)",
)
async def update_order_status(
    order_id: str,
    update: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
) -> OrderResponse:
    order = await OrderService(db).update_status(order_id, update.status, user)
    return OrderResponse.model_validate(order)


@app.put(
    "/api/orders/{order_id}/cancel",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def cancel_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
) -> OrderResponse:
    """Cancel a pending order."""
    order = await OrderService(db).cancel(order_id, user)
    return OrderResponse.model_validate(order)


@app.delete(
    "/api/orders/{order_id}",
    response_model=MessageResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def delete_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
) -> MessageResponse:
    """Delete a cancelled order."""
    await OrderService(db).delete(order_id, user)
    return MessageResponse(message="Order removed")


# =============================================================================
# STRIPE ENDPOINTS
# =============================================================================

@app.post(
    "/api/payment/stripe/create-session",
    response_model=SessionResponse,
    responses={**ERROR_RESPONSES, 502: {"model": ErrorResponse}},
    tags=["Payment - Stripe"],
)
async def stripe_create_session(
    payload: CreateSessionRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    provider: BasePaymentProvider = Depends(get_stripe_provider),
) -> SessionResponse:
    """Open a Stripe Checkout session for an unpaid order."""
    _, session = await start_payment_session(
        db,
        provider,
        payload.order_id,
        user,
        payload.amount,
        payload.customer_info.model_dump(exclude_none=True),
    )
    return SessionResponse(
        transaction_id=session.transaction_id,
        session_id=session.session_handle,
        url=session.redirect_url,
    )


@app.post(
    "/api/payment/stripe/webhook",
    tags=["Payment - Stripe"],
    summary="Stripe Webhook Endpoint",
)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    provider: BasePaymentProvider = Depends(get_stripe_provider),
    reconciler: ReconciliationEngine = Depends(get_reconciliation_engine),
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> dict[str, bool]:
    """
    Handle signed events from Stripe.

    The raw body is verified before anything is parsed. Events that carry
    nothing to apply, redeliveries and events for unknown orders are all
    acknowledged with 200 so Stripe stops retrying them.

    Configure this URL in your Stripe dashboard:
        https://your-domain.com/api/payment/stripe/webhook
    """
    body = await request.body()

    event = await provider.handle_callback(body, stripe_signature, CallbackChannel.WEBHOOK)
    if event is None:
        return {"received": True}

    try:
        await reconciler.apply(db, event)
    except OrderNotFound as e:
        logger.warning(f"Stripe webhook dropped: {e.message}")

    return {"received": True}


@app.post(
    "/api/payment/stripe/verify",
    response_model=VerifyResponse,
    responses=ERROR_RESPONSES,
    tags=["Payment - Stripe"],
)
async def stripe_verify(
    payload: StripeVerifyRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    provider: BasePaymentProvider = Depends(get_stripe_provider),
    reconciler: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> Union[VerifyResponse, JSONResponse]:
    """Confirm a Stripe session after the customer returns to the storefront."""
    await load_authorized_order(db, payload.order_id, user)

    outcome = await provider.verify_session(payload.session_id)

    if outcome.order_id and outcome.order_id != payload.order_id:
        raise ValidationError("Session does not belong to this order")

    if not outcome.is_completed:
        return verify_failed("Payment not completed", outcome.raw_status)

    event = outcome.to_event(provider.provider_name)
    event.order_id = payload.order_id

    result = await reconciler.apply(db, event)
    return VerifyResponse(success=True, order=OrderResponse.model_validate(result.order))


# =============================================================================
# SSLCOMMERZ ENDPOINTS
# =============================================================================

@app.post(
    "/api/payment/initiate",
    response_model=SessionResponse,
    responses={**ERROR_RESPONSES, 502: {"model": ErrorResponse}},
    tags=["Payment - SSLCommerz"],
)
async def sslcommerz_initiate(
    payload: CreateSessionRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    provider: BasePaymentProvider = Depends(get_sslcommerz_provider),
) -> SessionResponse:
    """Open an SSLCommerz session; the client follows ``redirectUrl``."""
    _, session = await start_payment_session(
        db,
        provider,
        payload.order_id,
        user,
        payload.amount,
        payload.customer_info.model_dump(exclude_none=True),
    )
    return SessionResponse(
        transaction_id=session.transaction_id,
        session_id=session.session_handle,
        redirect_url=session.redirect_url,
    )


@app.post(
    "/api/payment/verify",
    response_model=VerifyResponse,
    responses=ERROR_RESPONSES,
    tags=["Payment - SSLCommerz"],
)
async def sslcommerz_verify(
    payload: SSLCommerzVerifyRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    provider: BasePaymentProvider = Depends(get_sslcommerz_provider),
    reconciler: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> Union[VerifyResponse, JSONResponse]:
    """Validate an SSLCommerz payment by its ``val_id``."""
    outcome = await provider.verify_session(payload.transaction_id)

    if not outcome.is_completed:
        return verify_failed("Payment validation failed", outcome.raw_status)

    event = outcome.to_event(provider.provider_name)
    order_id = await reconciler.resolve_order_id(db, event)
    await load_authorized_order(db, order_id, user)
    event.order_id = order_id

    result = await reconciler.apply(db, event)
    return VerifyResponse(success=True, order=OrderResponse.model_validate(result.order))


@app.post("/api/payment/success", tags=["Payment - SSLCommerz"])
async def sslcommerz_success(
    request: Request,
    db: AsyncSession = Depends(get_db),
    provider: BasePaymentProvider = Depends(get_sslcommerz_provider),
    reconciler: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> RedirectResponse:
    """Customer returned from the gateway after paying."""
    form = dict(await request.form())
    try:
        result = await apply_form_callback(db, provider, reconciler, form, CallbackChannel.SUCCESS)
    except OrderingError as e:
        logger.warning(f"SSLCommerz success callback not applied: {e.message}")
        return frontend_redirect("payment-failed", form.get("value_a"))

    if result is None or not result.is_completed:
        return frontend_redirect("payment-failed", form.get("value_a"))
    return frontend_redirect("payment-success", result.order.id)


@app.post("/api/payment/fail", tags=["Payment - SSLCommerz"])
async def sslcommerz_fail(
    request: Request,
    db: AsyncSession = Depends(get_db),
    provider: BasePaymentProvider = Depends(get_sslcommerz_provider),
    reconciler: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> RedirectResponse:
    """Gateway reported a failed payment."""
    form = dict(await request.form())
    try:
        await apply_form_callback(db, provider, reconciler, form, CallbackChannel.FAIL)
    except OrderingError as e:
        logger.warning(f"SSLCommerz fail callback not applied: {e.message}")

    return frontend_redirect("payment-failed", form.get("value_a"))


@app.post("/api/payment/cancel", tags=["Payment - SSLCommerz"])
async def sslcommerz_cancel(
    request: Request,
    provider: BasePaymentProvider = Depends(get_sslcommerz_provider),
) -> RedirectResponse:
    """Customer abandoned the gateway page; payment state is untouched."""
    form = dict(await request.form())
    await provider.handle_callback(form, channel=CallbackChannel.CANCEL)
    return frontend_redirect("checkout", form.get("value_a"))


@app.post("/api/payment/ipn", tags=["Payment - SSLCommerz"])
async def sslcommerz_ipn(
    request: Request,
    db: AsyncSession = Depends(get_db),
    provider: BasePaymentProvider = Depends(get_sslcommerz_provider),
    reconciler: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> Response:
    """Server-to-server notification; acknowledged with an empty 200."""
    form = dict(await request.form())
    try:
        await apply_form_callback(db, provider, reconciler, form, CallbackChannel.IPN)
    except OrderNotFound as e:
        logger.warning(f"SSLCommerz IPN dropped: {e.message}")

    return Response(status_code=200)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderingError)
async def ordering_error_handler(request: Request, exc: OrderingError) -> JSONResponse:
    """Render domain errors as ``{success, message, code}``."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Schema errors share the domain validation error shape."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"

    error = ValidationError(message)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": str(exc) if settings.debug else "An unexpected error occurred",
            "code": "internal_error",
        },
    )


if __name__ == "__main__":
    uvicorn.run(
        "food_ordering.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )
