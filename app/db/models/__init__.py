"""
Database Models
"""
from app.db.models.bot_user import BotUser
from app.db.models.bot_setting import BotSetting
from app.db.models.api_usage import ApiUsage
from app.db.models.product_calculation import ProductCalculation, ProductCategory
from app.db.models.bot_order import BotOrder, OrderStatus, DeliveryTier
from app.db.models.bot_user_action import BotUserAction

__all__ = [
    "BotUser",
    "BotSetting",
    "ApiUsage",
    "ProductCalculation",
    "ProductCategory",
    "BotOrder",
    "OrderStatus",
    "DeliveryTier",
    "BotUserAction",
]
