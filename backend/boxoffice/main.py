"""
Box Office API - Main Application Entry Point

Ticket lifecycle core for a ticket marketplace:
- Oversell-proof inventory through conditional UPDATEs and soft holds
- Provider-agnostic checkout with idempotent payment confirmation
- Exactly-once door check-in and atomic peer-to-peer transfers
- Redis-cached catalog, structured logging, Prometheus metrics
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from boxoffice.api.errors import FailureError, failure_handler
from boxoffice.api.middleware import RequestLoggingMiddleware
from boxoffice.api.router import api_router
from boxoffice.core.config import get_settings
from boxoffice.core.logging import get_logger, setup_logging
from boxoffice.core.metrics import metrics_endpoint
from boxoffice.db.session import AsyncSessionLocal
from boxoffice.services.cache_service import close_redis, get_cache_stats, get_redis
from boxoffice.services.expiry_worker import ExpiryWorker

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        payment_provider=settings.PAYMENT_PROVIDER,
    )

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without catalog cache")

    worker = None
    if settings.EXPIRY_SWEEP_ENABLED:
        worker = ExpiryWorker(AsyncSessionLocal)
        worker.start()

    yield

    if worker is not None:
        await worker.stop()
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Ticket inventory, checkout, issuance, check-in and transfer API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)
app.add_exception_handler(FailureError, failure_handler)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": await get_cache_stats(),
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
