"""
Subscription Service - channel membership gate
"""
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ExternalServiceException
from app.core.logging import get_logger
from app.db.models.bot_user import BotUser
from app.domain.services.settings_service import SettingsService
from app.domain.services.telegram_transport import TelegramTransport
from app.domain.services.user_service import UserService

logger = get_logger(__name__)

SUBSCRIBED_STATUSES = frozenset({"member", "administrator", "creator"})


class SubscriptionService:
    def __init__(self, transport: TelegramTransport, settings_service: SettingsService):
        self.transport = transport
        self.settings_service = settings_service

    async def is_subscribed(self, db: AsyncSession, user: BotUser) -> bool:
        """
        Ask Telegram whether the user is in the channel and store the answer
        on the user. A failed membership lookup counts as not subscribed.
        """
        channel = self.settings_service.current.channel_username
        try:
            status = await self.transport.get_chat_member_status(channel, user.telegram_id)
        except ExternalServiceException as e:
            logger.warning(
                "Subscription check failed",
                extra_data={"user_id": user.id, "channel": channel, "error": e.message},
            )
            status = "left"

        subscribed = status in SUBSCRIBED_STATUSES
        await UserService(db).set_subscribed(user, subscribed)
        return subscribed
