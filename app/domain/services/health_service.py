"""
Health checks - dependency probes for the readiness endpoint

Two levels:
- liveness: the process answers (no dependency checks)
- readiness: database and product lookup service reachable, bot token configured
"""
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.circuit_breaker import CircuitBreaker
from app.core.logging import get_logger
from app.db.database import AsyncSessionLocal
from app.domain.services.product_lookup_service import ProductLookupClient
from app.domain.services.telegram_transport import TelegramTransport

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# sanitised messages, no infrastructure details
_ERROR_DB = "error: db_unavailable"
_ERROR_PRODUCT_LOOKUP = "error: product_lookup_unavailable"
_ERROR_TELEGRAM = "error: bot_token_missing"


async def _check_db(session_factory: async_sessionmaker) -> str:
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("DB health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_product_lookup(lookup: ProductLookupClient) -> str:
    if await lookup.health_check():
        return _CHECK_OK
    return _ERROR_PRODUCT_LOOKUP


async def check_readiness(
    lookup: ProductLookupClient,
    transport: TelegramTransport,
    session_factory: Optional[async_sessionmaker] = None,
) -> dict[str, Any]:
    """
    Returns {"status": "healthy" | "degraded", <check>: "ok" | "error: ...",
    "circuit_breakers": {...}}. Breaker states are informational only.
    """
    checks = {
        "db": await _check_db(session_factory or AsyncSessionLocal),
        "product_lookup": await _check_product_lookup(lookup),
        "telegram": _CHECK_OK if transport.is_configured else _ERROR_TELEGRAM,
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {
        "status": _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED,
        **checks,
        "circuit_breakers": CircuitBreaker.snapshot(),
    }
