"""
Product Calculation Model - one completed pricing pass
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, Numeric, ForeignKey, Text
from sqlalchemy.orm import relationship
from sqlalchemy.types import JSON

from app.db.database import Base, utcnow


class ProductCategory(str, enum.Enum):
    SHOES = "shoes"
    BOOTS = "boots"
    TSHIRTS = "tshirts"
    JACKETS = "jackets"
    SHORTS = "shorts"
    PANTS = "pants"
    ACCESSORIES = "accessories"
    BAGS = "bags"

    @classmethod
    def parse(cls, raw: str) -> "ProductCategory | None":
        try:
            return cls(raw)
        except ValueError:
            return None


product_category_type = SQLEnum(
    ProductCategory,
    name="product_category",
    values_callable=lambda x: [e.value for e in x],
)


class ProductCalculation(Base):
    """Insert-only record of a computed price for one product variant"""

    __tablename__ = "product_calculations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("bot_users.id"), nullable=False, index=True)

    spu_id = Column(String(100), nullable=False)
    product_title = Column(String(500), nullable=False)
    category = Column(product_category_type, nullable=False)
    variant_id = Column(String(100), nullable=False)
    size = Column(String(50), nullable=False)
    # price in yuan as returned by the lookup service
    original_price = Column(Numeric(12, 2), nullable=False)
    yuan_rate = Column(Numeric(10, 4), nullable=False)
    standard_total = Column(Integer, nullable=False)
    express_total = Column(Integer, nullable=False)
    poizon_url = Column(Text, nullable=True)
    # opaque ProductSnapshot as returned by the lookup service
    product_data = Column(JSON, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    user = relationship("BotUser")
