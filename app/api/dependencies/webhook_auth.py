"""
Signature check for inbound Telegram webhook bodies.

When ``TELEGRAM_WEBHOOK_SECRET`` is configured, the sender must put the
hex HMAC-SHA256 of the raw request body (keyed with that secret) in the
``X-Telegram-Bot-Api-Secret-Token`` header.

Usage:
    @router.post("/webhook")
    async def telegram_webhook(
        ...,
        _: None = Depends(verify_telegram_webhook_signature),
    ):
        ...
"""
import hashlib
import hmac

from fastapi import Header, HTTPException, Request, status

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Telegram-Bot-Api-Secret-Token"


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of ``body``"""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def is_valid_signature(body: bytes, signature: str | None, secret: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(signature.encode("utf-8"), compute_signature(body, secret).encode("ascii"))


async def verify_telegram_webhook_signature(
    request: Request,
    x_telegram_bot_api_secret_token: str | None = Header(None),
) -> None:
    """
    Reject the request with 403 unless the body signature matches.

    Skipped entirely when no secret is configured. The response never says
    whether the header was missing or wrong.
    """
    secret = settings.TELEGRAM_WEBHOOK_SECRET
    if not secret:
        return

    body = await request.body()
    if not is_valid_signature(body, x_telegram_bot_api_secret_token, secret):
        logger.warning(
            "Webhook signature rejected",
            extra_data={"header_present": bool(x_telegram_bot_api_secret_token)},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )
