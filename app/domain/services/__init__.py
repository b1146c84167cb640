"""
Domain Services
"""
from app.domain.services.settings_service import SettingsService, BotSettingsSnapshot
from app.domain.services.quota_service import QuotaService, QuotaOperation
from app.domain.services.pricing_service import PriceQuote, calculate_price
from app.domain.services.user_service import UserService
from app.domain.services.order_service import OrderService
from app.domain.services.stats_service import StatsService
from app.domain.services.telegram_transport import TelegramTransport, InlineButton
from app.domain.services.product_lookup_service import ProductLookupClient, ProductSnapshot
from app.domain.services.admin_notification_service import AdminNotificationService
from app.domain.services.subscription_service import SubscriptionService

__all__ = [
    "SettingsService",
    "BotSettingsSnapshot",
    "QuotaService",
    "QuotaOperation",
    "PriceQuote",
    "calculate_price",
    "UserService",
    "OrderService",
    "StatsService",
    "TelegramTransport",
    "InlineButton",
    "ProductLookupClient",
    "ProductSnapshot",
    "AdminNotificationService",
    "SubscriptionService",
]
