"""
Telegram Bot API transport

Thin async wrapper over the Bot API methods the bot uses. Every call goes
through the shared Telegram circuit breaker and raises ``TelegramError`` on
a non-OK answer; callers decide whether a failure is fatal.
"""
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import httpx

from app.core.circuit_breaker import get_telegram_circuit_breaker
from app.core.exceptions import TelegramError
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class InlineButton:
    """One inline keyboard button; an http(s) action becomes a URL button"""

    label: str
    action: str

    def to_dict(self) -> dict[str, str]:
        if self.action.startswith(("http://", "https://")):
            return {"text": self.label, "url": self.action}
        return {"text": self.label, "callback_data": self.action}


Keyboard = Sequence[Sequence[InlineButton]]


def build_reply_markup(keyboard: Optional[Keyboard]) -> Optional[dict[str, Any]]:
    if not keyboard:
        return None
    return {"inline_keyboard": [[button.to_dict() for button in row] for row in keyboard]}


class TelegramTransport:
    """Bot API client bound to one bot token"""

    def __init__(
        self,
        bot_token: Optional[str],
        api_base_url: str = "https://api.telegram.org",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
    ):
        self._bot_token = bot_token
        self._api_base_url = api_base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    @property
    def is_configured(self) -> bool:
        return bool(self._bot_token)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, payload: dict[str, Any]) -> Any:
        if not self._bot_token:
            raise TelegramError("bot token not configured", details={"operation": method})

        url = f"{self._api_base_url}/bot{self._bot_token}/{method}"

        async def _send() -> Any:
            try:
                response = await self._client.post(url, json=payload)
            except httpx.HTTPError as e:
                raise TelegramError(
                    f"{method} request failed: {type(e).__name__}",
                    details={"operation": method},
                ) from e
            if response.status_code != 200:
                raise TelegramError.from_response(method, response)
            body = response.json()
            if not body.get("ok"):
                raise TelegramError(
                    f"{method} was rejected: {body.get('description', 'unknown error')}",
                    details={"operation": method, "error_code": body.get("error_code")},
                )
            return body.get("result")

        return await get_telegram_circuit_breaker().execute(_send)

    async def send_text(
        self,
        chat_id: str | int,
        text: str,
        keyboard: Optional[Keyboard] = None,
    ) -> Any:
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text, "parse_mode": "HTML"}
        markup = build_reply_markup(keyboard)
        if markup:
            payload["reply_markup"] = markup
        return await self._call("sendMessage", payload)

    async def send_photo(
        self,
        chat_id: str | int,
        photo_url: str,
        caption: Optional[str] = None,
        keyboard: Optional[Keyboard] = None,
    ) -> Any:
        payload: dict[str, Any] = {"chat_id": chat_id, "photo": photo_url, "parse_mode": "HTML"}
        if caption:
            payload["caption"] = caption
        markup = build_reply_markup(keyboard)
        if markup:
            payload["reply_markup"] = markup
        return await self._call("sendPhoto", payload)

    async def answer_callback(self, callback_id: str, text: Optional[str] = None) -> None:
        await self._call(
            "answerCallbackQuery",
            {"callback_query_id": callback_id, "text": text or "", "show_alert": False},
        )

    async def get_chat_member_status(self, channel_username: str, user_id: str | int) -> str:
        """Membership status string: member, administrator, creator, left, kicked..."""
        result = await self._call(
            "getChatMember",
            {"chat_id": f"@{channel_username.lstrip('@')}", "user_id": int(user_id)},
        )
        return (result or {}).get("status", "left")

    async def get_me(self) -> dict[str, Any]:
        return await self._call("getMe", {})

    async def set_webhook(self, url: str) -> Any:
        return await self._call(
            "setWebhook",
            {"url": url, "allowed_updates": ["message", "callback_query"]},
        )

    async def get_webhook_info(self) -> dict[str, Any]:
        return await self._call("getWebhookInfo", {})
