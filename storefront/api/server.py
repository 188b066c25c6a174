"""
Storefront Checkout Server
==========================
FastAPI application with:
- Checkout session creation (pending order per session)
- Signed Stripe webhook intake with per-event dedupe
- Background order reconciliation
- Product catalog
- Health and admin endpoints

Run:
    python -m storefront.api.server
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog
import uvicorn
from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from storefront import __version__
from storefront.api.container import Services, build_services
from storefront.config import server_config
from storefront.exceptions import OrderNotFoundError, StorefrontError
from storefront.schemas.orders import CheckoutRequest, CheckoutResponse, utcnow


def configure_logging(level: str = server_config.LOG_LEVEL, json_logs: bool = server_config.LOG_JSON):
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_logs:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        # ConsoleRenderer formats exc_info itself
        processors.append(structlog.dev.ConsoleRenderer(colors=server_config.DEBUG))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level, logging.INFO)
        ),
    )


configure_logging()

logger = structlog.get_logger(component="server")

START_TIME = utcnow()


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    uptime_seconds: float
    database_connected: bool
    redis_connected: bool
    reconciliation_running: bool


def _uptime(started: datetime) -> float:
    return (utcnow() - started).total_seconds()


def get_services(request: Request) -> Services:
    return request.app.state.services


# =============================================================================
# ROUTES
# =============================================================================

router = APIRouter()


@router.get("/", response_class=PlainTextResponse)
async def liveness():
    return "Storefront checkout server is running"


@router.get("/health", response_model=HealthResponse)
async def health_check(services: Services = Depends(get_services)):
    """Health check endpoint"""
    database_connected = True
    if services.database is not None:
        database_connected = await services.database.health_check()

    return HealthResponse(
        status="healthy" if database_connected else "degraded",
        version=__version__,
        uptime_seconds=_uptime(START_TIME),
        database_connected=database_connected,
        redis_connected=services.ledger.is_redis_connected,
        reconciliation_running=services.loop.running,
    )


# -----------------------------------------------------------------------------
# Checkout
# -----------------------------------------------------------------------------

@router.post("/create-payment-intent", response_model=CheckoutResponse)
async def create_payment_intent(
    request: CheckoutRequest,
    services: Services = Depends(get_services),
):
    """
    Open a Stripe Checkout session for the cart and record a pending order.

    The browser redirects to the hosted payment page using the returned id.
    """
    session = await services.checkout.create_checkout(
        request.products,
        request.customer_details,
    )
    return CheckoutResponse(id=session.id, url=session.url)


@router.get("/orders/{session_id}")
async def get_order(session_id: str, services: Services = Depends(get_services)):
    order = await services.orders.get_by_session(session_id)
    if order is None:
        raise OrderNotFoundError(session_id)
    return order.model_dump(mode="json", by_alias=True)


# -----------------------------------------------------------------------------
# Webhook
# -----------------------------------------------------------------------------

@router.post("/webhook")
async def stripe_webhook(request: Request, services: Services = Depends(get_services)):
    """
    Stripe webhook intake.

    The signature is checked against the raw body before anything is
    parsed. Redelivered event ids are acknowledged without dispatch. If
    dispatch fails the event id is released and the error response makes
    Stripe deliver it again.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    event = services.authenticator.authenticate(payload, signature)
    log = logger.bind(event_id=event.id, event_type=event.type)

    if not await services.ledger.try_acquire(event.id):
        log.info("webhook_duplicate_ignored")
        return {"received": True}

    try:
        await services.router.route(event)
    except Exception:
        await services.ledger.release(event.id)
        log.error("webhook_dispatch_failed")
        raise

    return {"received": True}


# -----------------------------------------------------------------------------
# Catalog
# -----------------------------------------------------------------------------

@router.post("/products")
async def add_product(
    document: Dict[str, Any] = Body(...),
    services: Services = Depends(get_services),
):
    product_id = await services.products.insert(document)
    return {"acknowledged": True, "insertedId": product_id}


@router.get("/products")
async def list_products(
    page: int = Query(0, ge=0),
    limit: int = Query(10, ge=1, le=100),
    services: Services = Depends(get_services),
):
    return await services.products.list(skip=page * limit, limit=limit)


@router.get("/totalProducts")
async def total_products(services: Services = Depends(get_services)):
    return {"totalProducts": await services.products.count()}


# -----------------------------------------------------------------------------
# Admin
# -----------------------------------------------------------------------------

@router.get("/admin/metrics")
async def get_metrics(services: Services = Depends(get_services)):
    """Reconciliation counters and queue depth"""
    return {
        "uptime_seconds": _uptime(START_TIME),
        "reconciliation": dict(services.worker.metrics),
        "queue": await services.jobs.stats(),
        "redis_connected": services.ledger.is_redis_connected,
        "supported_events": services.router.supported_events,
    }


@router.get("/admin/reconciliation/dead")
async def list_dead_jobs(
    limit: int = Query(100, ge=1, le=1000),
    services: Services = Depends(get_services),
):
    jobs = await services.jobs.list_dead(limit)
    return [job.model_dump(mode="json") for job in jobs]


@router.post("/admin/reconciliation/{session_id}/requeue")
async def requeue_job(session_id: str, services: Services = Depends(get_services)):
    if not await services.jobs.requeue(session_id):
        return JSONResponse(
            status_code=404,
            content={
                "error_code": "reconciliation:not_dead",
                "message": f"No dead-lettered job for session {session_id}",
                "details": {"session_id": session_id},
            },
        )

    logger.info("reconciliation_requeued", session_id=session_id)
    return {"requeued": True, "session_id": session_id}


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the application.

    Args:
        services: Pre-wired services; production wiring is used when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic"""
        logger.info("server_starting", version=__version__, env=server_config.ENV)
        await app.state.services.startup()

        yield

        logger.info("server_shutting_down")
        await app.state.services.shutdown()

    app = FastAPI(
        title="Storefront Checkout",
        description="Stripe Checkout sessions, signed webhooks and order reconciliation",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services if services is not None else build_services()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        """Add response timing and request ID headers"""
        request_id = str(uuid4())[:8]
        start = time.perf_counter()

        response = await call_next(request)

        duration = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
        response.headers["X-Request-ID"] = request_id

        return response

    @app.exception_handler(StorefrontError)
    async def storefront_exception_handler(request: Request, exc: StorefrontError):
        log = logger.bind(path=request.url.path, error_code=exc.error_code)
        if exc.status_code >= 500:
            log.error("request_failed", error=exc.message, details=exc.details)
        else:
            log.warning("request_rejected", error=exc.message)

        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.warning("request_malformed", path=request.url.path, errors=len(exc.errors()))
        return JSONResponse(
            status_code=400,
            content={
                "error_code": "checkout:validation",
                "message": "Request body is malformed",
                "details": {"errors": len(exc.errors())},
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error("unhandled_exception",
                     path=request.url.path,
                     error_type=type(exc).__name__,
                     exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={
                "error_code": "internal_error",
                "message": "An unexpected error occurred",
                "details": {},
            },
        )

    app.include_router(router)
    return app


app = create_app()


# =============================================================================
# MAIN
# =============================================================================

def main():
    uvicorn.run(
        "storefront.api.server:app",
        host=server_config.HOST,
        port=server_config.PORT,
        reload=server_config.DEBUG,
        log_level=server_config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
