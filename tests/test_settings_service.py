"""
Tests for the bot settings cache
"""
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.core.exceptions import ValidationException
from app.db.models.bot_setting import BotSetting
from app.db.models.product_calculation import ProductCategory
from app.domain.services.settings_service import (
    DEFAULT_POIZON_INFO_URLS,
    DEFAULT_YUAN_RATE,
    BotSettingsSnapshot,
    SettingsService,
)


class TestSnapshotFromRows:

    @pytest.mark.unit
    def test_empty_table_uses_defaults(self):
        snapshot = BotSettingsSnapshot.from_rows({})

        assert snapshot.yuan_rate == DEFAULT_YUAN_RATE
        assert snapshot.cdek_price == Decimal("500")
        assert snapshot.api_limit_per_user == 50
        assert snapshot.channel_username == "erauqss"
        assert snapshot.admin_chat_ids == ()
        assert snapshot.poizon_info_urls == DEFAULT_POIZON_INFO_URLS

    @pytest.mark.unit
    def test_admin_ids_merge_csv_and_legacy_keys(self):
        snapshot = BotSettingsSnapshot.from_rows(
            {"admin_chat_ids": " 1, 2 ,,", "admin_chat_1": "2", "admin_chat_3": "3"}
        )

        assert snapshot.admin_chat_ids == ("1", "2", "3")
        assert snapshot.is_admin(3)
        assert not snapshot.is_admin("4")

    @pytest.mark.unit
    def test_garbage_values_fall_back_to_defaults(self):
        snapshot = BotSettingsSnapshot.from_rows(
            {"yuan_rate": "abc", "cdek_price": "-10", "api_limit_per_user": "ten", "markup_bags": "NaN"}
        )

        assert snapshot.yuan_rate == DEFAULT_YUAN_RATE
        assert snapshot.cdek_price == Decimal("500")
        assert snapshot.api_limit_per_user == 50
        assert snapshot.rates_for(ProductCategory.BAGS).markup == Decimal("500")

    @pytest.mark.unit
    def test_per_category_rates_and_channel(self):
        snapshot = BotSettingsSnapshot.from_rows(
            {"shipping_jackets": "900", "express_extra_jackets": "0", "channel_username": "@square_shop"}
        )

        rates = snapshot.rates_for(ProductCategory.JACKETS)
        assert rates.shipping == Decimal("900")
        assert rates.express_extra == Decimal("0")
        assert snapshot.channel_username == "square_shop"


class TestSettingsService:

    @pytest.mark.unit
    async def test_update_writes_through_and_reloads(self, session_factory):
        service = SettingsService(session_factory)

        snapshot = await service.update_setting("yuan_rate", "12.5", updated_by="900001")

        assert snapshot.yuan_rate == Decimal("12.5")
        assert service.current.yuan_rate == Decimal("12.5")
        async with session_factory() as session:
            row = (await session.execute(select(BotSetting).where(BotSetting.setting_key == "yuan_rate"))).scalar_one()
        assert row.setting_value == "12.5"
        assert row.updated_by == "900001"

    @pytest.mark.unit
    async def test_update_existing_key(self, session_factory):
        service = SettingsService(session_factory)
        await service.update_setting("reviews_url", "https://a.example")
        await service.update_setting("reviews_url", "https://b.example")

        assert service.current.reviews_url == "https://b.example"

    @pytest.mark.unit
    async def test_readers_keep_old_snapshot_reference(self, session_factory):
        service = SettingsService(session_factory)
        before = service.current

        await service.update_setting("cdek_price", "700")

        assert before.cdek_price == Decimal("500")
        assert service.current.cdek_price == Decimal("700")

    @pytest.mark.unit
    async def test_blank_key_rejected(self, session_factory):
        service = SettingsService(session_factory)

        with pytest.raises(ValidationException):
            await service.update_setting("  ", "1")
