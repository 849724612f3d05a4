"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from roundup_ledger.api.middleware import RequestIDMiddleware, MetricsMiddleware
from roundup_ledger.api.v1 import bank_connections, roundups, webhooks
from roundup_ledger.infrastructure.observability.logging import setup_logging
from roundup_ledger.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Round-Up Ledger",
        description="Bank-connected round-up accumulation and donation settlement service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(bank_connections.router, prefix="/v1", tags=["bank-connections"])
    app.include_router(roundups.router, prefix="/v1", tags=["round-ups"])
    app.include_router(webhooks.router, prefix="/v1", tags=["webhooks"])

    return app


app = create_app()
