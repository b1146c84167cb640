"""
Stats Service - usage aggregates for /stats, /admin_settings and the admin API
"""
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import utcnow
from app.db.models.api_usage import ApiUsage
from app.db.models.bot_order import BotOrder, OrderStatus
from app.db.models.bot_user import BotUser
from app.db.models.product_calculation import ProductCalculation

ACTIVE_WINDOW = timedelta(days=7)
RECENT_WINDOW = timedelta(days=30)


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


class StatsService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _count(self, query) -> int:
        result = await self.db.execute(query)
        return int(result.scalar_one() or 0)

    async def get_stats(self) -> dict[str, Any]:
        now = utcnow()
        today = _start_of_day(now)

        total_users = await self._count(select(func.count(BotUser.id)))
        active_users = await self._count(
            select(func.count(BotUser.id)).where(BotUser.last_activity > now - ACTIVE_WINDOW)
        )
        new_users_today = await self._count(
            select(func.count(BotUser.id)).where(BotUser.registration_date >= today)
        )
        total_calculations = await self._count(select(func.count(ProductCalculation.id)))
        today_calculations = await self._count(
            select(func.count(ProductCalculation.id)).where(ProductCalculation.created_at >= today)
        )
        total_orders = await self._count(select(func.count(BotOrder.id)))
        pending_orders = await self._count(
            select(func.count(BotOrder.id)).where(BotOrder.status == OrderStatus.PENDING)
        )
        completed_orders = await self._count(
            select(func.count(BotOrder.id)).where(BotOrder.status == OrderStatus.DELIVERED)
        )

        api_row = (
            await self.db.execute(
                select(
                    func.coalesce(func.sum(ApiUsage.request_count), 0),
                    func.count(func.distinct(ApiUsage.user_id)),
                ).where(ApiUsage.request_date == now.date())
            )
        ).one()

        category_count = func.count(ProductCalculation.id).label("count")
        popular = await self.db.execute(
            select(ProductCalculation.category, category_count)
            .where(ProductCalculation.created_at > now - RECENT_WINDOW)
            .group_by(ProductCalculation.category)
            .order_by(category_count.desc())
        )

        return {
            "total_users": total_users,
            "active_users": active_users,
            "new_users_today": new_users_today,
            "total_calculations": total_calculations,
            "today_calculations": today_calculations,
            "total_orders": total_orders,
            "pending_orders": pending_orders,
            "completed_orders": completed_orders,
            "today_api_requests": int(api_row[0] or 0),
            "today_api_users": int(api_row[1] or 0),
            "popular_categories": [
                {"category": category.value, "count": int(count)} for category, count in popular.all()
            ],
        }

    async def get_user_details(self, telegram_id: str) -> Optional[dict[str, Any]]:
        """Profile, last ten orders and per-operation API usage for one user"""
        user = (
            await self.db.execute(select(BotUser).where(BotUser.telegram_id == str(telegram_id)))
        ).scalar_one_or_none()
        if user is None:
            return None

        order_total = await self.db.execute(
            select(func.coalesce(func.sum(BotOrder.amount), 0)).where(BotOrder.user_id == user.id)
        )
        recent_orders = await self.db.execute(
            select(BotOrder)
            .where(BotOrder.user_id == user.id)
            .order_by(BotOrder.created_at.desc(), BotOrder.id.desc())
            .limit(10)
        )
        api_usage = await self.db.execute(
            select(
                ApiUsage.api_endpoint,
                func.sum(ApiUsage.request_count),
                func.max(ApiUsage.request_date),
            )
            .where(ApiUsage.user_id == user.id)
            .group_by(ApiUsage.api_endpoint)
        )

        return {
            "user": {
                "telegram_id": user.telegram_id,
                "username": user.username,
                "first_name": user.first_name,
                "last_name": user.last_name,
                "is_subscribed": user.is_subscribed,
                "total_calculations": user.total_calculations,
                "total_orders": user.total_orders,
                "total_order_amount": int(order_total.scalar_one() or 0),
                "registration_date": user.registration_date.isoformat(),
                "last_activity": user.last_activity.isoformat(),
            },
            "recent_orders": [
                {
                    "order_number": order.order_number,
                    "product_title": order.product_title,
                    "size": order.size,
                    "category": order.category.value,
                    "amount": order.amount,
                    "delivery_type": order.delivery_type.value,
                    "status": order.status.value,
                    "track_number": order.track_number,
                    "created_at": order.created_at.isoformat(),
                }
                for order in recent_orders.scalars().all()
            ],
            "api_usage": [
                {
                    "api_endpoint": endpoint,
                    "total_requests": int(total or 0),
                    "last_request_date": last_date.isoformat() if last_date else None,
                }
                for endpoint, total, last_date in api_usage.all()
            ],
        }

    async def select_recipients(self, target: str) -> list[str]:
        """Telegram ids for a broadcast target: all, active (7 days) or recent (30 days)"""
        now = utcnow()
        query = select(BotUser.telegram_id)
        if target == "active":
            query = query.where(BotUser.last_activity > now - ACTIVE_WINDOW)
        elif target == "recent":
            query = query.where(BotUser.registration_date > now - RECENT_WINDOW)
        result = await self.db.execute(query.order_by(BotUser.id))
        return list(result.scalars().all())

    async def list_users(self) -> list[BotUser]:
        result = await self.db.execute(select(BotUser).order_by(BotUser.registration_date.desc(), BotUser.id.desc()))
        return list(result.scalars().all())
