"""
FastAPI Application Entry Point

Restaurant Order Desk - storefront and admin API over the order core.
Runs against the in-memory store in development and the SQL store in
staging/production.

Endpoints:
    - POST /api/orders: Place an order
    - GET /api/orders: List orders
    - GET /api/orders/today: Daily order tracking
    - GET /api/orders/stream: Live order feed (server-sent events)
    - GET /api/orders/{order_id}: Get one order
    - PATCH /api/orders/{order_id}/status: Change an order's status
    - POST /api/orders/{order_id}/advance: Move an order to its next status
    - GET /health: System health check

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
import redis.asyncio as aioredis

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from orderdesk.core.config import get_settings, setup_logging
from orderdesk.core.exceptions import (
    CollisionError,
    CorruptDataError,
    DocumentExistsError,
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
    OrderDeskError,
    TransientStoreError,
)
from orderdesk.schemas import (
    DailySummaryResponse,
    ErrorResponse,
    HealthResponse,
    Order,
    OrderCreate,
    OrderCreateResponse,
    OrderListResponse,
    StatusUpdateRequest,
    StatusUpdateResponse,
)
from orderdesk.services.order_ids import format_order_id
from orderdesk.services.orders import OrderService
from orderdesk.services.store import create_order_store
from orderdesk.tasks import queue_order_export

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the order store and service on startup, release them on shutdown.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    store = create_order_store(settings)
    await store.initialize()
    logger.info(f"✅ Order Store: {store.provider_name}")

    exporter = queue_order_export if settings.excel_export_enabled else None
    app.state.store = store
    app.state.order_service = OrderService.from_settings(store, settings, exporter=exporter)
    logger.info(f"✅ Excel export: {'enabled' if exporter else 'disabled'}")

    # Validate production config
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await store.close()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Restaurant ordering API: delivery order intake for the storefront and "
        "transactional order status management for the admin dashboard."
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


def get_order_service(request: Request) -> OrderService:
    """Dependency returning the service built by the lifespan."""
    return request.app.state.order_service


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍖 Welcome to {settings.restaurant_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "orders": "/api/orders",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(request: Request) -> HealthResponse:
    """Verify the order store and the Celery broker are reachable."""
    store = request.app.state.store
    store_status = "healthy" if await store.health_check() else "unhealthy"

    redis_status = "healthy"
    try:
        client = aioredis.from_url(settings.redis_url, socket_timeout=2)
        try:
            await client.ping()
        finally:
            await client.aclose()
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    # Redis only backs the Excel export
    needs_redis = settings.excel_export_enabled
    healthy = store_status == "healthy" and (redis_status == "healthy" or not needs_redis)

    return HealthResponse(
        status="operational" if healthy else "degraded",
        store=store_status,
        store_provider=store.provider_name,
        redis=redis_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderCreateResponse,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Place Order",
)
async def create_order(
    order_data: OrderCreate,
    service: OrderService = Depends(get_order_service),
) -> OrderCreateResponse:
    """
    Place a new delivery order. It starts in ``pending``.

    A 409 with error ``CollisionError`` means the generated order number was
    already taken; submitting again draws a new one.
    """
    logger.info(f"Creating order for: {order_data.customer.name}")

    order_id = await service.create_order(
        customer=order_data.customer,
        items=order_data.items,
        total=order_data.total,
        preferred_delivery_time=order_data.preferred_delivery_time,
    )

    return OrderCreateResponse(
        success=True,
        message="Order placed successfully!",
        order_id=order_id,
        display_id=format_order_id(order_id),
        status="pending",
        total=order_data.total,
        currency=settings.currency,
    )


@app.get(
    "/api/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None),
    service: OrderService = Depends(get_order_service),
) -> OrderListResponse:
    """Retrieve paginated list of orders, newest first."""
    total, orders = await service.list_orders(status=status, skip=skip, limit=limit)
    return OrderListResponse(total=total, orders=orders)


@app.get(
    "/api/orders/today",
    response_model=DailySummaryResponse,
    tags=["Orders"],
    summary="Daily Order Tracking",
)
async def todays_orders(
    q: Optional[str] = Query(None, description="Search order id, customer or item name"),
    service: OrderService = Depends(get_order_service),
) -> DailySummaryResponse:
    """Today's orders in the restaurant's timezone, with pending count."""
    return await service.daily_summary(search=q)


@app.get(
    "/api/orders/stream",
    tags=["Orders"],
    summary="Live Order Feed",
)
async def stream_orders(
    request: Request,
    service: OrderService = Depends(get_order_service),
) -> StreamingResponse:
    """
    Server-sent events: one full order snapshot per change.

    Store failures arrive as events with ``error`` set; the feed reconnects
    on its own.
    """
    async def events():
        feed = service.subscribe_orders()
        try:
            async for event in feed:
                if await request.is_disconnected():
                    break
                yield f"data: {event.model_dump_json(by_alias=True)}\n\n"
        finally:
            await feed.aclose()
            logger.debug("Order feed client disconnected")

    return StreamingResponse(events(), media_type="text/event-stream")


@app.get(
    "/api/orders/{order_id}",
    response_model=Order,
    responses={404: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def get_order(
    order_id: str,
    service: OrderService = Depends(get_order_service),
) -> Order:
    """Get a specific order by ID."""
    return await service.get_order(order_id)


async def _with_timeout(operation) -> Any:
    """
    Bound a status update by STATUS_UPDATE_TIMEOUT.

    On expiry the update may still have committed, so the client is told to
    re-read the order rather than assume nothing happened.
    """
    try:
        return await asyncio.wait_for(operation, timeout=settings.status_update_timeout)
    except asyncio.TimeoutError:
        logger.error(f"Status update timed out after {settings.status_update_timeout}s")
        raise HTTPException(
            status_code=503,
            detail="Status update timed out. Reload the order to check whether it was applied.",
        )


@app.patch(
    "/api/orders/{order_id}/status",
    response_model=StatusUpdateResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    tags=["Orders"],
    summary="Update Order Status",
)
async def update_order_status(
    order_id: str,
    body: StatusUpdateRequest,
    retry: bool = Query(False, description="Retry transient store failures with backoff"),
    service: OrderService = Depends(get_order_service),
) -> StatusUpdateResponse:
    """
    Move an order along pending → processing → completed, or cancel it.

    Use ``retry=true`` from screens where several operators work the same
    orders at once.
    """
    if retry:
        update = service.update_order_status_with_transaction(order_id, body.status)
    else:
        update = service.update_order_status(order_id, body.status)

    order = await _with_timeout(update)
    return StatusUpdateResponse(
        success=True,
        message=f"Order {format_order_id(order.id)} is now {order.status.value}",
        order=order,
    )


@app.post(
    "/api/orders/{order_id}/advance",
    response_model=StatusUpdateResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Advance Order",
)
async def advance_order(
    order_id: str,
    service: OrderService = Depends(get_order_service),
) -> StatusUpdateResponse:
    """Dashboard one-click action: Process Order / Complete Order."""
    order = await _with_timeout(service.advance_order(order_id))
    return StatusUpdateResponse(
        success=True,
        message=f"Order {format_order_id(order.id)} is now {order.status.value}",
        order=order,
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

ERROR_STATUS_CODES: dict[type, int] = {
    InvalidArgumentError: 400,
    NotFoundError: 404,
    InvalidTransitionError: 409,
    CollisionError: 409,
    DocumentExistsError: 409,
    CorruptDataError: 500,
    TransientStoreError: 503,
}


def status_code_for(exc: OrderDeskError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


@app.exception_handler(OrderDeskError)
async def order_desk_exception_handler(request: Request, exc: OrderDeskError) -> JSONResponse:
    """Translate order core errors into HTTP responses."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=type(exc).__name__, detail=exc.message).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
