"""
Pricing - converts a POIZON yuan price into the two delivery-tier totals in rubles
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from app.db.models.product_calculation import ProductCategory
from app.domain.services.settings_service import BotSettingsSnapshot


@dataclass(frozen=True)
class PriceQuote:
    category: ProductCategory
    source_price: Decimal
    yuan_rate: Decimal
    local_price: Decimal
    standard_total: int
    express_total: int


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_price(
    price_yuan: Decimal | int | float | str,
    category: ProductCategory,
    settings: BotSettingsSnapshot,
) -> PriceQuote:
    """
    local    = price * yuan_rate
    standard = round(local + markup + shipping + cdek)
    express  = round(standard + express_extra)

    No I/O. Inputs are expected to be non-negative.
    """
    price = Decimal(str(price_yuan))
    rates = settings.rates_for(category)

    local_price = price * settings.yuan_rate
    standard_total = round_half_up(local_price + rates.markup + rates.shipping + settings.cdek_price)
    express_total = round_half_up(Decimal(standard_total) + rates.express_extra)

    return PriceQuote(
        category=category,
        source_price=price,
        yuan_rate=settings.yuan_rate,
        local_price=local_price,
        standard_total=standard_total,
        express_total=express_total,
    )


def format_rub(amount: int) -> str:
    """10180 -> '10 180'"""
    return f"{amount:,}".replace(",", " ")
