"""Vision Board FastAPI application factory."""

import logging
import os
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text

from visionboard.config import Settings, get_settings
from visionboard.database import Database
from visionboard.errors import ServiceError, service_error_handler
from visionboard.middleware.error_handler import ErrorHandlerMiddleware
from visionboard.middleware.logging import LoggingMiddleware, setup_logging
from visionboard.middleware.rate_limit import RateLimitMiddleware
from visionboard.routers import admin, affirmations, auth, canva, gift_codes, sync
from visionboard.services.canva_client import CanvaClient
from visionboard.services.crypto_service import CryptoService
from visionboard.services.identity_store import FileIdentityStore, SqlIdentityStore

logger = logging.getLogger(__name__)


def _init_sentry(settings: Settings) -> None:
    """Initialise Sentry when a DSN is configured."""
    dsn = settings.sentry_dsn.get_secret_value()
    if not dsn:
        return

    import sentry_sdk

    sentry_sdk.init(
        dsn=dsn,
        environment=settings.app_env,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        send_default_pii=False,
    )
    logger.info("Sentry initialised (env=%s)", settings.app_env)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the store and upstream client on startup; close them on shutdown."""
    settings: Settings = app.state.settings
    setup_logging(debug=settings.debug)
    logger.info("Starting Vision Board API (env=%s)", settings.app_env)

    crypto = CryptoService(settings)
    database = None
    if settings.has_database:
        database = Database(settings.database_url, echo=settings.debug, pool_size=settings.db_pool_size).open()
        if settings.auto_create_schema:
            await database.create_schema()
        identity_store = SqlIdentityStore(database, crypto)
    else:
        logger.warning("DATABASE_URL not set; identities stored as JSON files under %s", settings.data_dir)
        identity_store = FileIdentityStore(settings.data_dir, crypto)

    app.state.database = database
    app.state.identity_store = identity_store
    app.state.canva_client = CanvaClient(settings)

    yield

    await app.state.canva_client.aclose()
    if database is not None:
        await database.close()
    logger.info("Vision Board API shutting down")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = get_settings()

    _init_sentry(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Canva OAuth, export jobs, gift codes and habit sync for the vision board app",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.database = None

    app.add_exception_handler(ServiceError, service_error_handler)

    # Middleware (order matters: outermost first)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(LoggingMiddleware)
    if settings.rate_limit_per_minute > 0:
        app.add_middleware(RateLimitMiddleware, settings=settings)
    origins = settings.cors_origins
    allow_all = origins == ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins if not allow_all else [],
        allow_origin_regex=r".*" if allow_all else None,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
        max_age=600,
    )

    app.include_router(auth.router)
    app.include_router(canva.router)
    app.include_router(sync.router)
    app.include_router(affirmations.router)
    app.include_router(gift_codes.router)
    app.include_router(admin.router)

    @app.get("/health")
    async def health():
        return {"ok": True, "status": "ok", "service": "visionboard-api"}

    @app.get("/health/ready")
    async def health_ready():
        """Deep health check: verifies DB and Redis connectivity."""
        checks: dict = {}

        database: Database | None = app.state.database
        if database is None:
            checks["database"] = "not_configured"
        else:
            try:
                async with database.session() as session:
                    await session.execute(text("SELECT 1"))
                checks["database"] = "ok"
            except Exception as e:
                checks["database"] = f"error: {type(e).__name__}"

        try:
            r = aioredis.from_url(settings.redis_url, decode_responses=True)
            await r.ping()
            await r.aclose()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {type(e).__name__}"

        all_ok = all(v in ("ok", "not_configured") for v in checks.values())
        return JSONResponse(
            status_code=200 if all_ok else 503,
            content={"status": "ready" if all_ok else "degraded", "checks": checks},
        )

    instrumentator = Instrumentator(
        excluded_handlers=["/health", "/health/ready", "/docs", "/redoc", "/openapi.json", "/metrics"],
    )
    instrumentator.instrument(app)

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint with multiprocess support."""
        from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest, multiprocess

        multiproc_dir = os.environ.get("PROMETHEUS_MULTIPROC_DIR")
        if multiproc_dir:
            registry = CollectorRegistry()
            multiprocess.MultiProcessCollector(registry)
            data = generate_latest(registry)
        else:
            data = generate_latest()

        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    return app


# Default app instance for uvicorn
app = create_app()
