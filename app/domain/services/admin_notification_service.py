"""
Admin Notification Service - admin fanout, broadcasts and CRM-triggered user messages

A failed send to one recipient is logged and counted, never raised, so the
remaining recipients are still tried.
"""
import asyncio
import enum
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger, log_async_operation
from app.domain.services.settings_service import SettingsService
from app.domain.services.stats_service import StatsService
from app.domain.services.telegram_transport import Keyboard, TelegramTransport

logger = get_logger(__name__)


class BroadcastTarget(str, enum.Enum):
    ALL = "all"
    ACTIVE = "active"   # activity in the last 7 days
    RECENT = "recent"   # registered in the last 30 days


@dataclass(frozen=True)
class BroadcastResult:
    sent: int
    failed: int

    @property
    def total(self) -> int:
        return self.sent + self.failed


class AdminNotificationService:
    """Sends to the configured admin list and to users in bulk"""

    def __init__(
        self,
        transport: TelegramTransport,
        settings_service: SettingsService,
        broadcast_delay_seconds: float = 0.1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.transport = transport
        self.settings_service = settings_service
        self.broadcast_delay_seconds = broadcast_delay_seconds
        self._sleep = sleep

    async def _deliver(self, chat_id: str, text: str, keyboard: Optional[Keyboard] = None) -> bool:
        try:
            await self.transport.send_text(chat_id, text, keyboard=keyboard)
        except Exception as e:
            logger.error(
                "Notification send failed",
                extra_data={"chat_id": chat_id, "error": str(e)},
            )
            return False
        return True

    async def notify_admins(self, text: str, keyboard: Optional[Keyboard] = None) -> int:
        """Send to every configured admin; returns how many sends succeeded"""
        admin_ids = self.settings_service.current.admin_chat_ids
        if not admin_ids:
            logger.warning("No admin chats configured, admin notification dropped")
            return 0

        delivered = 0
        for admin_id in admin_ids:
            if await self._deliver(admin_id, text, keyboard):
                delivered += 1

        logger.info(
            "Admin notification fanout finished",
            extra_data={"recipients": len(admin_ids), "delivered": delivered},
        )
        return delivered

    async def notify_user(self, chat_id: str | int, text: str, keyboard: Optional[Keyboard] = None) -> bool:
        return await self._deliver(str(chat_id), text, keyboard)

    @log_async_operation("broadcast")
    async def broadcast(
        self,
        db: AsyncSession,
        text: str,
        target: BroadcastTarget = BroadcastTarget.ACTIVE,
    ) -> BroadcastResult:
        """Sequential send with a fixed pause between messages"""
        recipients = await StatsService(db).select_recipients(target.value)

        sent = failed = 0
        for index, chat_id in enumerate(recipients):
            if index and self.broadcast_delay_seconds:
                await self._sleep(self.broadcast_delay_seconds)
            if await self._deliver(chat_id, text):
                sent += 1
            else:
                failed += 1

        logger.info(
            "Broadcast completed",
            extra_data={"target": target.value, "total_users": len(recipients), "sent": sent, "failed": failed},
        )
        return BroadcastResult(sent=sent, failed=failed)
