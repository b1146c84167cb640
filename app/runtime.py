"""
Bot runtime - the long-lived objects shared by the webhook, the admin API
and the update workers, built once at startup
"""
from dataclasses import dataclass
from functools import partial
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.api.webhooks.telegram import process_update
from app.core.config import settings
from app.core.logging import get_logger
from app.db.database import AsyncSessionLocal
from app.domain.services.admin_notification_service import AdminNotificationService
from app.domain.services.product_lookup_service import ProductLookupClient
from app.domain.services.settings_service import SettingsService
from app.domain.services.telegram_transport import TelegramTransport
from app.state_machine.handlers import ConversationEngine
from app.state_machine.manager import SessionStore
from app.workers.update_dispatcher import UpdateDispatcher

logger = get_logger(__name__)


@dataclass
class BotRuntime:
    session_factory: async_sessionmaker
    settings_service: SettingsService
    transport: TelegramTransport
    lookup: ProductLookupClient
    notifier: AdminNotificationService
    sessions: SessionStore
    engine: ConversationEngine
    dispatcher: UpdateDispatcher

    async def aclose(self) -> None:
        await self.dispatcher.shutdown()
        await self.transport.aclose()
        await self.lookup.aclose()
        logger.info("Bot runtime closed")


def build_runtime(
    session_factory: async_sessionmaker = AsyncSessionLocal,
    transport: Optional[TelegramTransport] = None,
    lookup: Optional[ProductLookupClient] = None,
    settings_service: Optional[SettingsService] = None,
) -> BotRuntime:
    """Wire the services together; collaborators can be swapped for tests"""
    settings_service = settings_service or SettingsService(session_factory)
    transport = transport or TelegramTransport(
        settings.TELEGRAM_BOT_TOKEN,
        api_base_url=settings.TELEGRAM_API_BASE_URL,
    )
    lookup = lookup or ProductLookupClient(
        settings.POIZON_EXTRACT_SPU_URL,
        settings.POIZON_PRODUCT_DATA_URL,
        timeout_seconds=settings.POIZON_TIMEOUT_SECONDS,
    )
    notifier = AdminNotificationService(
        transport,
        settings_service,
        broadcast_delay_seconds=settings.BROADCAST_DELAY_SECONDS,
    )
    sessions = SessionStore()
    engine = ConversationEngine(sessions, settings_service, transport, lookup, notifier)
    dispatcher = UpdateDispatcher(
        partial(process_update, engine=engine, session_factory=session_factory)
    )
    return BotRuntime(
        session_factory=session_factory,
        settings_service=settings_service,
        transport=transport,
        lookup=lookup,
        notifier=notifier,
        sessions=sessions,
        engine=engine,
        dispatcher=dispatcher,
    )
