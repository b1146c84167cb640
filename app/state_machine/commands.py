"""
Command Router - slash commands, including the admin-only ones
"""
from decimal import Decimal, InvalidOperation
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AdminAccessDeniedError, ValidationException
from app.core.logging import get_logger
from app.db.models.bot_user import BotUser
from app.domain.services.settings_service import SettingsService
from app.domain.services.stats_service import StatsService
from app.domain.services.subscription_service import SubscriptionService
from app.domain.services.user_service import UserService
from app.state_machine import replies
from app.state_machine.replies import MessageResponse

logger = get_logger(__name__)

CommandHandler = Callable[[AsyncSession, BotUser, list[str]], Awaitable[MessageResponse]]

ADMIN_COMMANDS = frozenset({"/admin_settings", "/set_rate", "/stats"})


def parse_command(text: str) -> tuple[str, list[str]]:
    """'/set_rate@SquareBot 13.5' -> ('/set_rate', ['13.5'])"""
    parts = text.strip().split()
    command = parts[0].split("@", 1)[0].lower()
    return command, parts[1:]


class CommandRouter:
    """Maps a command to its handler and returns the reply to send"""

    def __init__(self, settings_service: SettingsService, subscriptions: SubscriptionService):
        self.settings_service = settings_service
        self.subscriptions = subscriptions

    async def dispatch(self, db: AsyncSession, user: BotUser, text: str) -> MessageResponse:
        command, args = parse_command(text)
        handler = self._get_handler(command)

        try:
            if command in ADMIN_COMMANDS:
                self._require_admin(user)
            if handler is None:
                return replies.unknown_command(command)
            response = await handler(db, user, args)
        except AdminAccessDeniedError:
            logger.warning(
                "Admin command rejected",
                extra_data={"user_id": user.id, "command": command},
            )
            return replies.command_unavailable()
        except ValidationException as e:
            return MessageResponse(e.message)

        await UserService(db).log_action(
            user.id,
            "command_executed",
            {"command": command, "args": args},
        )
        return response

    def _get_handler(self, command: str) -> Optional[CommandHandler]:
        handlers: dict[str, CommandHandler] = {
            "/start": self._handle_start,
            "/help": self._handle_help,
            "/admin_settings": self._handle_admin_settings,
            "/set_rate": self._handle_set_rate,
            "/stats": self._handle_stats,
        }
        return handlers.get(command)

    def _require_admin(self, user: BotUser) -> None:
        if not self.settings_service.current.is_admin(user.telegram_id):
            raise AdminAccessDeniedError(user.telegram_id)

    # ==================== Public commands ====================

    async def _handle_start(self, db: AsyncSession, user: BotUser, args: list[str]) -> MessageResponse:
        if await self.subscriptions.is_subscribed(db, user):
            return replies.welcome()
        return replies.subscription_required(self.settings_service.current.channel_username)

    async def _handle_help(self, db: AsyncSession, user: BotUser, args: list[str]) -> MessageResponse:
        return replies.help_text()

    # ==================== Admin commands ====================

    async def _handle_admin_settings(self, db: AsyncSession, user: BotUser, args: list[str]) -> MessageResponse:
        stats = await StatsService(db).get_stats()
        return replies.admin_settings(self.settings_service.current, stats)

    async def _handle_set_rate(self, db: AsyncSession, user: BotUser, args: list[str]) -> MessageResponse:
        if len(args) != 1:
            raise ValidationException(replies.set_rate_usage().text, field="yuan_rate")

        try:
            rate = Decimal(args[0].replace(",", "."))
        except InvalidOperation:
            raise ValidationException(replies.set_rate_invalid().text, field="yuan_rate")
        if not rate.is_finite() or rate <= 0:
            raise ValidationException(replies.set_rate_invalid().text, field="yuan_rate")

        value = format(rate, "f")
        await self.settings_service.update_setting(
            "yuan_rate",
            value,
            updated_by=user.telegram_id,
            db=db,
        )
        logger.info(
            "Yuan rate updated by admin",
            extra_data={"user_id": user.id, "yuan_rate": value},
        )
        return replies.set_rate_done(value)

    async def _handle_stats(self, db: AsyncSession, user: BotUser, args: list[str]) -> MessageResponse:
        stats = await StatsService(db).get_stats()
        return replies.stats_report(self.settings_service.current, stats)
