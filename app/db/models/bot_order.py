"""
Bot Order Model - customer purchase intent handed to operators
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, ForeignKey
from sqlalchemy.orm import relationship

from app.db.database import Base, utcnow
from app.db.models.product_calculation import product_category_type


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DeliveryTier(str, enum.Enum):
    STANDARD = "standard"
    EXPRESS = "express"


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


class BotOrder(Base):
    """Order placed from the bot"""

    __tablename__ = "bot_orders"

    id = Column(Integer, primary_key=True, index=True)
    # SQ-YYYYMMDD-<id>, filled right after the row gets its id
    order_number = Column(String(32), unique=True, nullable=True, index=True)

    user_id = Column(Integer, ForeignKey("bot_users.id"), nullable=False, index=True)
    calculation_id = Column(Integer, ForeignKey("product_calculations.id"), nullable=True)

    product_title = Column(String(500), nullable=False)
    size = Column(String(50), nullable=False)
    category = Column(product_category_type, nullable=False)
    delivery_type = Column(
        SQLEnum(DeliveryTier, name="delivery_tier", values_callable=_enum_values),
        nullable=False,
    )
    amount = Column(Integer, nullable=False)
    status = Column(
        SQLEnum(OrderStatus, name="order_status", values_callable=_enum_values),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True,
    )
    track_number = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("BotUser")
    calculation = relationship("ProductCalculation")
