"""
Order Service - durable calculations and orders
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.bot_order import BotOrder, DeliveryTier, OrderStatus
from app.db.models.bot_user import BotUser
from app.db.models.product_calculation import ProductCalculation, ProductCategory
from app.domain.services.pricing_service import PriceQuote
from app.domain.services.product_lookup_service import ProductSnapshot, ProductVariant
from app.domain.services.user_service import record_user_action

logger = get_logger(__name__)


def generate_order_number(order_id: int, created_at: datetime) -> str:
    """SQ-<yyyymmdd>-<id>; unique because the primary key is"""
    return f"SQ-{created_at:%Y%m%d}-{order_id:06d}"


class OrderService:
    """Creates calculations and orders, and applies status changes"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def save_calculation(
        self,
        user_id: int,
        product: ProductSnapshot,
        category: ProductCategory,
        variant: ProductVariant,
        quote: PriceQuote,
        poizon_url: Optional[str] = None,
    ) -> ProductCalculation:
        calculation = ProductCalculation(
            user_id=user_id,
            spu_id=product.spu,
            product_title=product.title,
            category=category,
            variant_id=variant.id,
            size=variant.size_label,
            original_price=quote.source_price,
            yuan_rate=quote.yuan_rate,
            standard_total=quote.standard_total,
            express_total=quote.express_total,
            poizon_url=poizon_url,
            product_data=product.to_blob(),
            created_at=utcnow(),
        )
        self.db.add(calculation)
        await self.db.execute(
            update(BotUser)
            .where(BotUser.id == user_id)
            .values(total_calculations=BotUser.total_calculations + 1)
        )
        await self.db.commit()
        await self.db.refresh(calculation)
        return calculation

    async def get_calculation(self, calculation_id: int) -> Optional[ProductCalculation]:
        return await self.db.get(ProductCalculation, calculation_id)

    async def create_order(
        self,
        user_id: int,
        product_title: str,
        size: str,
        category: ProductCategory,
        delivery_tier: DeliveryTier,
        amount: int,
        calculation_id: Optional[int] = None,
    ) -> BotOrder:
        """
        Insert a pending order, give it a number, bump the user's order
        counter and audit it, all in one commit.
        """
        now = utcnow()
        order = BotOrder(
            user_id=user_id,
            calculation_id=calculation_id,
            product_title=product_title,
            size=size,
            category=category,
            delivery_type=delivery_tier,
            amount=amount,
            status=OrderStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self.db.add(order)
        await self.db.flush()

        order.order_number = generate_order_number(order.id, now)
        await self.db.execute(
            update(BotUser)
            .where(BotUser.id == user_id)
            .values(total_orders=BotUser.total_orders + 1)
        )
        record_user_action(
            self.db,
            user_id,
            "order_created",
            {
                "order_number": order.order_number,
                "amount": amount,
                "delivery_type": delivery_tier.value,
            },
        )
        await self.db.commit()
        await self.db.refresh(order)

        logger.info(
            "Order created",
            extra_data={"order_number": order.order_number, "user_id": user_id, "amount": amount},
        )
        return order

    async def get_order(self, order_number: str) -> Optional[BotOrder]:
        result = await self.db.execute(
            select(BotOrder).where(BotOrder.order_number == order_number)
        )
        return result.scalar_one_or_none()

    async def get_orders_by_user(self, user_id: int, limit: Optional[int] = None) -> list[BotOrder]:
        """Most recent first"""
        query = (
            select(BotOrder)
            .where(BotOrder.user_id == user_id)
            .order_by(BotOrder.created_at.desc(), BotOrder.id.desc())
        )
        if limit:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def update_order_status(
        self,
        order_number: str,
        status: OrderStatus,
        track_number: Optional[str] = None,
    ) -> Optional[BotOrder]:
        """
        Apply a status change from the fulfilment side. Returns None for an
        unknown order number.

        Repeating the current status (and tracking number, if given) is a
        no-op: nothing is written and no audit row is added.
        """
        order = await self.get_order(order_number)
        if order is None:
            logger.warning("Status change for unknown order", extra_data={"order_number": order_number})
            return None

        track_changed = track_number is not None and track_number != order.track_number
        if order.status == status and not track_changed:
            return order

        old_status = order.status
        order.status = status
        if track_changed:
            order.track_number = track_number
        order.updated_at = utcnow()

        record_user_action(
            self.db,
            order.user_id,
            "order_status_changed",
            {
                "order_number": order_number,
                "old_status": old_status.value,
                "new_status": status.value,
                "track_number": order.track_number,
            },
        )
        await self.db.commit()
        await self.db.refresh(order)

        logger.info(
            "Order status updated",
            extra_data={"order_number": order_number, "old_status": old_status.value, "new_status": status.value},
        )
        return order
