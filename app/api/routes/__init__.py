"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.bot import router as bot_router
from app.api.routes.crm import router as crm_router
from app.api.webhooks.telegram import router as telegram_router

router = APIRouter()

# Canonical webhook endpoint (documented)
router.include_router(telegram_router, prefix="/bot", tags=["webhooks"])
router.include_router(bot_router, prefix="/bot", tags=["bot"])
router.include_router(crm_router, prefix="/bot/notify", tags=["crm"])

# Backwards-compatible webhook endpoint
router.include_router(
    telegram_router,
    prefix="/telegram",
    tags=["webhooks"],
    include_in_schema=False
)
