"""FastAPI application factory"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from farewelly_payments.api.dependencies import get_event_sink
from farewelly_payments.api.errors import domain_exception_handler
from farewelly_payments.api.middleware import RequestIDMiddleware, MetricsMiddleware
from farewelly_payments.api.v1 import disputes, payments, refunds, splits, webhooks
from farewelly_payments.domain.exceptions import DomainException
from farewelly_payments.infrastructure.clients.event_sink import HttpEventSink
from farewelly_payments.infrastructure.observability.logging import setup_logging
from farewelly_payments.config import settings

# Setup structured logging
setup_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let scheduled event deliveries finish before exit
    sink = get_event_sink()
    if isinstance(sink, HttpEventSink):
        await sink.drain()


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Farewelly Payments",
        description="Payment splitting, municipal burial eligibility and refund/dispute engine",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(DomainException, domain_exception_handler)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(splits.router, prefix="/v1", tags=["splits"])
    app.include_router(payments.router, prefix="/v1", tags=["payments"])
    app.include_router(refunds.router, prefix="/v1", tags=["refunds"])
    app.include_router(disputes.router, prefix="/v1", tags=["disputes"])
    app.include_router(webhooks.router, prefix="/v1", tags=["webhooks"])

    return app


app = create_app()
