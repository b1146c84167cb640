"""
Telegram Webhook Handler - Bot Gateway Layer

Validates the update, acknowledges Telegram right away and hands the update
to the per-user dispatcher. The conversation itself runs in the dispatcher's
worker, one update at a time per user.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.api.dependencies.runtime import get_runtime
from app.api.dependencies.webhook_auth import verify_telegram_webhook_signature
from app.core.logging import get_logger
from app.db.database import get_task_session
from app.state_machine.handlers import ConversationEngine, TelegramSender
from app.workers.update_dispatcher import DispatcherClosedError

logger = get_logger(__name__)

router = APIRouter()


class TelegramUser(BaseModel):
    id: int
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None


class TelegramChat(BaseModel):
    id: int
    type: str = "private"


class TelegramMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: int
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    chat: TelegramChat
    text: Optional[str] = None
    date: int = 0


class TelegramCallbackQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    message: Optional[TelegramMessage] = None
    data: Optional[str] = None


class TelegramUpdate(BaseModel):
    update_id: StrictInt
    message: Optional[TelegramMessage] = None
    callback_query: Optional[TelegramCallbackQuery] = None


def _sender(user: TelegramUser) -> TelegramSender:
    return TelegramSender(
        id=user.id,
        username=user.username,
        first_name=user.first_name or None,
        last_name=user.last_name,
    )


def update_user_key(update: TelegramUpdate) -> Optional[int]:
    """Telegram id of whoever caused the update; it keys both the mailbox and the session"""
    if update.callback_query:
        callback = update.callback_query
        return callback.from_user.id if callback.from_user else None
    if update.message:
        message = update.message
        return message.from_user.id if message.from_user else message.chat.id
    return None


async def process_update(
    update: TelegramUpdate,
    *,
    engine: ConversationEngine,
    session_factory: Optional[async_sessionmaker] = None,
) -> None:
    """Run one update through the conversation engine inside its own DB session"""
    async with get_task_session(session_factory) as db:
        if update.callback_query and update.callback_query.from_user:
            callback = update.callback_query
            chat_id = callback.message.chat.id if callback.message else callback.from_user.id
            await engine.handle_callback(
                db,
                _sender(callback.from_user),
                chat_id,
                callback.id,
                callback.data or "",
            )
            return

        message = update.message
        if message is None or message.text is None:
            logger.debug("Update without text ignored", extra_data={"update_id": update.update_id})
            return

        user = message.from_user or TelegramUser(id=message.chat.id)
        await engine.handle_message(db, _sender(user), message.chat.id, message.text)


@router.post(
    "/webhook",
    summary="Webhook - Telegram (inbound updates)",
    description=(
        "Entry point for Telegram Bot API updates. "
        "Handles text messages and callback queries (inline buttons)."
    ),
    dependencies=[Depends(verify_telegram_webhook_signature)],
)
async def telegram_webhook(request: Request, runtime=Depends(get_runtime)):
    """
    Acknowledge the update and queue it for processing.
    The body is parsed here rather than by FastAPI so that a signature
    failure is reported before any validation error.
    """
    body = await request.body()
    try:
        update = TelegramUpdate.model_validate_json(body)
    except ValidationError:
        logger.warning("Malformed Telegram update rejected", extra_data={"body_bytes": len(body)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid update")

    key = update_user_key(update)
    if key is None:
        logger.debug(
            "Update without a sender acknowledged",
            extra_data={
                "update_id": update.update_id,
                "has_message": bool(update.message),
                "has_callback_query": bool(update.callback_query),
            },
        )
        return {"ok": True}

    try:
        runtime.dispatcher.submit(key, update)
    except DispatcherClosedError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Shutting down")

    return {"ok": True}
