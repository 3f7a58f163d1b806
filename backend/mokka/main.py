"""
Mokka RSVP API - Main Application Entry Point

Seat reservation for the café's events:
- Overbooking-proof session capacity via conditional UPDATEs
- Self-service changes by reservation code or emailed verification code
- Redis-cached public availability listing
- Structured logging with request correlation and Prometheus metrics
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mokka.core.config import get_settings
from mokka.core.exceptions import register_exception_handlers
from mokka.core.logging import setup_logging, get_logger
from mokka.core.metrics import metrics_endpoint
from mokka.api.router import api_router
from mokka.api.middleware import RequestLoggingMiddleware
from mokka.db.session import Database
from mokka.services.cache_service import AvailabilityCache
from mokka.services.notification_service import Notifier

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: build the store handles, tear them down on exit."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    app.state.db = Database(settings.DATABASE_URL, echo=settings.DEBUG)
    app.state.cache = await AvailabilityCache.connect()
    app.state.notifier = Notifier()

    if not app.state.cache.enabled:
        logger.warning("redis_unavailable", message="Running without cache")

    yield

    await app.state.cache.close()
    await app.state.db.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Event-session seat reservation API for Mokka",
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

register_exception_handlers(app)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": await app.state.cache.stats(),
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()
