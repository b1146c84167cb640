"""
Bot administration API - webhook management, messaging, broadcasts, stats and exports
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.api.dependencies.runtime import get_runtime
from app.core.circuit_breaker import CircuitBreaker
from app.core.config import settings
from app.core.exceptions import NotFoundException, ValidationException
from app.core.logging import get_logger
from app.db.database import get_db
from app.domain.services.admin_notification_service import BroadcastTarget
from app.domain.services.export_service import ExportFormat, export_users
from app.domain.services.stats_service import StatsService

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_api_key)])

TELEGRAM_MESSAGE_LIMIT = 4096


class WebhookSetRequest(BaseModel):
    """Falls back to TELEGRAM_WEBHOOK_URL when no url is given"""
    url: Optional[str] = None


class SendMessageRequest(BaseModel):
    chat_id: str = Field(min_length=1)
    text: str = Field(min_length=1, max_length=TELEGRAM_MESSAGE_LIMIT)


class BroadcastRequest(BaseModel):
    message: str = Field(min_length=1, max_length=TELEGRAM_MESSAGE_LIMIT)
    target: BroadcastTarget = BroadcastTarget.ACTIVE


@router.get(
    "/test",
    summary="Bot connectivity check",
    description="Calls getMe with the configured token.",
)
async def test_bot(runtime=Depends(get_runtime)):
    me = await runtime.transport.get_me()
    return {"success": True, "bot": me}


@router.get(
    "/stats",
    summary="Bot usage statistics",
)
async def bot_stats(
    runtime=Depends(get_runtime),
    db: AsyncSession = Depends(get_db),
):
    stats = await StatsService(db).get_stats()
    return {
        "success": True,
        "stats": stats,
        "runtime": {
            "live_sessions": len(runtime.sessions),
            "active_mailboxes": runtime.dispatcher.active_keys,
            "queued_updates": runtime.dispatcher.pending,
            "circuit_breakers": CircuitBreaker.snapshot(),
        },
    }


@router.post(
    "/webhook/set",
    summary="Register the webhook URL with Telegram",
)
async def set_webhook(payload: WebhookSetRequest, runtime=Depends(get_runtime)):
    url = (payload.url or settings.TELEGRAM_WEBHOOK_URL).strip()
    if not url.startswith("https://"):
        raise ValidationException("Webhook URL must be an https:// URL", field="url")

    result = await runtime.transport.set_webhook(url)
    logger.info("Telegram webhook registered", extra_data={"url": url})
    return {"success": True, "url": url, "result": result}


@router.get(
    "/webhook/info",
    summary="Current webhook registration as Telegram sees it",
)
async def webhook_info(runtime=Depends(get_runtime)):
    return {"success": True, "info": await runtime.transport.get_webhook_info()}


@router.post(
    "/message/send",
    summary="Send a text message to one chat",
)
async def send_message(payload: SendMessageRequest, runtime=Depends(get_runtime)):
    await runtime.transport.send_text(payload.chat_id, payload.text)
    return {"success": True}


@router.post(
    "/broadcast",
    summary="Send a message to a group of bot users",
    description="Targets: all, active (last 7 days), recent (registered in the last 30 days).",
)
async def broadcast(
    payload: BroadcastRequest,
    runtime=Depends(get_runtime),
    db: AsyncSession = Depends(get_db),
):
    result = await runtime.notifier.broadcast(db, payload.message, payload.target)
    return {
        "success": True,
        "target": payload.target.value,
        "total": result.total,
        "sent": result.sent,
        "failed": result.failed,
    }


@router.get(
    "/users/export",
    summary="Export bot users",
    response_class=Response,
)
async def export_bot_users(
    fmt: ExportFormat = Query(ExportFormat.CSV, alias="format"),
    db: AsyncSession = Depends(get_db),
):
    users = await StatsService(db).list_users()
    content, media_type, filename = export_users(users, fmt)
    logger.info("Bot users exported", extra_data={"format": fmt.value, "users": len(users)})
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get(
    "/users/{telegram_id}/stats",
    summary="Profile, recent orders and API usage of one user",
)
async def user_stats(telegram_id: str, db: AsyncSession = Depends(get_db)):
    details = await StatsService(db).get_user_details(telegram_id)
    if details is None:
        raise NotFoundException("Bot user", telegram_id)
    return {"success": True, **details}
