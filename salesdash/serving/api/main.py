"""
FastAPI Application Factory

Creates and configures the dashboard API application. The lifespan opens
the row store, the caches and one shared HTTP client, and puts the report
context and the Google Calendar client on ``app.state``.
"""

from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from salesdash.config import Settings, get_settings
from salesdash.config.logging import configure_logging
from salesdash.core.calendar import ReportingCalendar
from salesdash.database.connection import close_database, get_session_factory, init_database
from salesdash.database.repository import RowStore
from salesdash.integrations.google_calendar import GoogleCalendarClient
from salesdash.integrations.shopify import ShopifyAdminClient
from salesdash.integrations.shopifyql import ShopifyQLClient
from salesdash.reports.context import ReportContext
from salesdash.serving.api.middleware import RequestLoggingMiddleware
from salesdash.serving.api.routes import dashboard_router, google_router, health_router
from salesdash.serving.cache import build_caches, connect_redis

logger = structlog.get_logger(__name__)


def build_report_context(
    settings: Settings,
    store: RowStore,
    caches: dict,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ReportContext:
    timeout = settings.http_timeout_seconds
    return ReportContext(
        settings=settings,
        store=store,
        analytics=ShopifyQLClient(settings.shopify, caches["analytics"], http_client=http_client, timeout=timeout),
        shopify=ShopifyAdminClient(settings.shopify, caches["access_scopes"], http_client=http_client, timeout=timeout),
        calendar=ReportingCalendar(settings.reporting.reporting_timezone),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    configure_logging()

    logger.info("Starting dashboard API", env=settings.app_env, timezone=settings.reporting.reporting_timezone)

    # An unreachable row store fails startup
    await init_database()

    redis_client = None
    if settings.reporting.analytics_cache_backend == "redis":
        try:
            redis_client = await connect_redis(settings.redis.get_url(), settings.redis.socket_timeout)
        except Exception as e:
            logger.warning("Redis init failed, using in-memory caches", error=str(e))

    http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    store = RowStore.from_settings(get_session_factory(), settings)
    caches = build_caches(settings, redis_client)

    app.state.report_context = build_report_context(settings, store, caches, http_client)
    app.state.google_calendar = GoogleCalendarClient(
        settings.google, http_client=http_client, timeout=settings.http_timeout_seconds
    )

    yield

    logger.info("Shutting down...")
    await http_client.aclose()
    await close_database()
    if redis_client is not None:
        await redis_client.aclose()


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Unknown paths and unsupported methods both read as "not found"
    if exc.status_code in (404, 405):
        return JSONResponse(status_code=404, content={"error": "Not found"})
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


def create_api_app(settings: Optional[Settings] = None, use_lifespan: bool = True) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        settings: Application settings; defaults to ``get_settings()``
        use_lifespan: Tests pass False and fill ``app.state`` themselves

    Returns:
        Configured FastAPI app instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Sales Dashboard API",
        description="Read-only sales, marketing and product reports for the retail dashboard",
        version=settings.version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url=None,
        lifespan=lifespan if use_lifespan else None,
    )

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.add_exception_handler(StarletteHTTPException, http_error_handler)

    app.include_router(health_router, prefix="/api", tags=["Health"])
    app.include_router(google_router, prefix="/api/google", tags=["Google Calendar"])
    app.include_router(dashboard_router, prefix="/api", tags=["Dashboard"])

    return app
