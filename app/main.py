"""
SQUARE Bot - Main FastAPI Application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.core.middleware import setup_middleware, setup_exception_handlers
from app.api.routes import router as api_router
from app.db import models  # noqa: F401  (registers every table on Base.metadata)
from app.db.database import engine, Base
from app.domain.services.health_service import check_readiness
from app.runtime import build_runtime

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


def _parse_allowed_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins string into a clean list."""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


_OPENAPI_TAGS = [
    {"name": "webhooks", "description": "Inbound Telegram updates."},
    {"name": "bot", "description": "Bot administration: webhook, messaging, broadcasts, stats, exports."},
    {"name": "crm", "description": "Order progress callbacks from the fulfilment side."},
    {"name": "Health", "description": "Liveness and readiness probes."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Telegram bot for pricing and ordering products from POIZON.",
    openapi_tags=_OPENAPI_TAGS,
)

# Setup middleware (correlation ID, request logging)
setup_middleware(app)
setup_exception_handlers(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS)

# Safe dev default to support local frontend development without opening CORS in production.
if not allowed_origins and settings.DEBUG:
    allowed_origins = [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Admin-API-Key", "X-Correlation-ID"],
    )

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    """Create tables, load bot settings and start the update dispatcher"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")

    runtime = build_runtime()
    await runtime.settings_service.reload()
    app.state.runtime = runtime

    if not runtime.transport.is_configured:
        logger.warning("TELEGRAM_BOT_TOKEN is not set, outgoing messages will fail")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Drain queued updates, close HTTP clients and the DB pool"""
    logger.info("Shutting down application")
    runtime = getattr(app.state, "runtime", None)
    if runtime is not None:
        await runtime.aclose()
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="Liveness probe",
    description="The process is up and answering. Dependencies are not checked.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness probe",
    description=(
        "Checks the database, the product lookup service and the bot token. "
        "Returns 200 with status=healthy, or 503 with status=degraded."
    ),
    tags=["Health"],
)
async def readiness_check():
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        return JSONResponse(content={"status": "starting"}, status_code=503)

    result = await check_readiness(runtime.lookup, runtime.transport, runtime.session_factory)
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
