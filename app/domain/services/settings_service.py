"""
Settings Service - in-memory mirror of the bot_settings table

The cache holds one immutable ``BotSettingsSnapshot``. Readers take the
current reference and never block; ``reload()`` builds a new snapshot from
the table and swaps it in, and ``update_setting()`` writes through and then
reloads.
"""
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import ValidationException
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.bot_setting import BotSetting
from app.db.models.product_calculation import ProductCategory

logger = get_logger(__name__)

DEFAULT_YUAN_RATE = Decimal("13.20")
DEFAULT_CDEK_PRICE = Decimal("500")
DEFAULT_MARKUP = Decimal("500")
DEFAULT_SHIPPING = Decimal("600")
DEFAULT_EXPRESS_EXTRA = Decimal("400")
DEFAULT_API_LIMIT = 50
DEFAULT_CHANNEL = "erauqss"
DEFAULT_REVIEWS_URL = "https://your-reviews-site.com"
DEFAULT_POIZON_INFO_URLS = ("https://link1.com", "https://link2.com", "https://link3.com")

# legacy single-slot admin keys, merged with the admin_chat_ids CSV
LEGACY_ADMIN_KEYS = ("admin_chat_1", "admin_chat_2", "admin_chat_3")


def _parse_csv_setting(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def _parse_decimal(raw: Optional[str], default: Decimal, key: str) -> Decimal:
    if raw is None or not raw.strip():
        return default
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        logger.warning(
            "Ignoring non-numeric setting, using default",
            extra_data={"key": key, "value": raw, "default": str(default)},
        )
        return default
    if not value.is_finite() or value < 0:
        logger.warning(
            "Ignoring out-of-range setting, using default",
            extra_data={"key": key, "value": raw, "default": str(default)},
        )
        return default
    return value


def _parse_int(raw: Optional[str], default: int, key: str) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning(
            "Ignoring non-integer setting, using default",
            extra_data={"key": key, "value": raw, "default": default},
        )
        return default


class CategoryRates(BaseModel):
    """Surcharges applied on top of the converted price for one category"""

    model_config = ConfigDict(frozen=True)

    markup: Decimal = DEFAULT_MARKUP
    shipping: Decimal = DEFAULT_SHIPPING
    express_extra: Decimal = DEFAULT_EXPRESS_EXTRA


class BotSettingsSnapshot(BaseModel):
    """Typed view over the key/value rows, with defaults for anything unset"""

    model_config = ConfigDict(frozen=True)

    yuan_rate: Decimal = DEFAULT_YUAN_RATE
    cdek_price: Decimal = DEFAULT_CDEK_PRICE
    api_limit_per_user: int = DEFAULT_API_LIMIT
    channel_username: str = DEFAULT_CHANNEL
    admin_chat_ids: tuple[str, ...] = ()
    reviews_url: str = DEFAULT_REVIEWS_URL
    poizon_info_urls: tuple[str, ...] = DEFAULT_POIZON_INFO_URLS
    category_rates: dict[ProductCategory, CategoryRates] = Field(default_factory=dict)

    def rates_for(self, category: ProductCategory) -> CategoryRates:
        return self.category_rates.get(category, CategoryRates())

    def is_admin(self, telegram_id: str | int) -> bool:
        return str(telegram_id) in self.admin_chat_ids

    @classmethod
    def from_rows(cls, rows: Mapping[str, str]) -> "BotSettingsSnapshot":
        admin_ids: list[str] = _parse_csv_setting(rows.get("admin_chat_ids", ""))
        for key in LEGACY_ADMIN_KEYS:
            value = (rows.get(key) or "").strip()
            if value and value not in admin_ids:
                admin_ids.append(value)

        category_rates = {
            category: CategoryRates(
                markup=_parse_decimal(rows.get(f"markup_{category.value}"), DEFAULT_MARKUP, f"markup_{category.value}"),
                shipping=_parse_decimal(
                    rows.get(f"shipping_{category.value}"), DEFAULT_SHIPPING, f"shipping_{category.value}"
                ),
                express_extra=_parse_decimal(
                    rows.get(f"express_extra_{category.value}"),
                    DEFAULT_EXPRESS_EXTRA,
                    f"express_extra_{category.value}",
                ),
            )
            for category in ProductCategory
        }

        info_urls = tuple(
            (rows.get(f"poizon_info_url_{i}") or "").strip() or DEFAULT_POIZON_INFO_URLS[i - 1]
            for i in range(1, 4)
        )

        return cls(
            yuan_rate=_parse_decimal(rows.get("yuan_rate"), DEFAULT_YUAN_RATE, "yuan_rate"),
            cdek_price=_parse_decimal(rows.get("cdek_price"), DEFAULT_CDEK_PRICE, "cdek_price"),
            api_limit_per_user=_parse_int(rows.get("api_limit_per_user"), DEFAULT_API_LIMIT, "api_limit_per_user"),
            channel_username=(rows.get("channel_username") or "").strip().lstrip("@") or DEFAULT_CHANNEL,
            admin_chat_ids=tuple(admin_ids),
            reviews_url=(rows.get("reviews_url") or "").strip() or DEFAULT_REVIEWS_URL,
            poizon_info_urls=info_urls,
            category_rates=category_rates,
        )


class SettingsService:
    """Process-wide settings cache, injected into the components that read it"""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory
        self._snapshot = BotSettingsSnapshot()

    @property
    def current(self) -> BotSettingsSnapshot:
        return self._snapshot

    async def reload(self, db: AsyncSession | None = None) -> BotSettingsSnapshot:
        """Re-read every row and swap the snapshot wholesale"""
        if db is not None:
            rows = await self._read_rows(db)
        else:
            async with self._session_factory() as session:
                rows = await self._read_rows(session)

        self._snapshot = BotSettingsSnapshot.from_rows(rows)
        logger.info(
            "Bot settings loaded",
            extra_data={"keys": len(rows), "admins": len(self._snapshot.admin_chat_ids)},
        )
        return self._snapshot

    async def update_setting(
        self,
        key: str,
        value: str,
        updated_by: str | None = None,
        db: AsyncSession | None = None,
    ) -> BotSettingsSnapshot:
        """Upsert one row, commit, then reload the cache"""
        key = key.strip()
        if not key:
            raise ValidationException("Setting key cannot be empty", field="key")

        if db is not None:
            await self._upsert(db, key, value, updated_by)
            await db.commit()
        else:
            async with self._session_factory() as session:
                await self._upsert(session, key, value, updated_by)
                await session.commit()

        logger.info(
            "Bot setting updated",
            extra_data={"key": key, "updated_by": updated_by},
        )
        return await self.reload(db)

    @staticmethod
    async def _read_rows(db: AsyncSession) -> dict[str, str]:
        result = await db.execute(select(BotSetting.setting_key, BotSetting.setting_value))
        return {key: value for key, value in result.all()}

    @staticmethod
    async def _upsert(db: AsyncSession, key: str, value: str, updated_by: str | None) -> None:
        row = await db.get(BotSetting, key)
        if row is None:
            db.add(BotSetting(setting_key=key, setting_value=value, updated_by=updated_by))
        else:
            row.setting_value = value
            row.updated_by = updated_by
            row.updated_at = utcnow()
        await db.flush()
