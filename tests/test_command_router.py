"""
Tests for slash commands, including admin-only commands
"""
from decimal import Decimal

import pytest

from app.domain.services.user_service import UserService
from app.state_machine.commands import parse_command
from app.state_machine.handlers import TelegramSender
from tests.conftest import ADMIN_TELEGRAM_IDS


@pytest.fixture
def admin_sender() -> TelegramSender:
    return TelegramSender(id=int(ADMIN_TELEGRAM_IDS[0]), username="boss", first_name="Admin")


async def _send(engine, db_session, sender, text) -> None:
    await engine.handle_message(db_session, sender, sender.id, text)


class TestParseCommand:

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("/start", ("/start", [])),
            ("/SET_RATE 13.5", ("/set_rate", ["13.5"])),
            ("/set_rate@SquareBot  12,4 ", ("/set_rate", ["12,4"])),
            ("/stats extra words", ("/stats", ["extra", "words"])),
        ],
    )
    def test_parse(self, text, expected):
        assert parse_command(text) == expected


class TestPublicCommands:

    @pytest.mark.unit
    async def test_help(self, conversation_engine, db_session, sender, fake_transport):
        await _send(conversation_engine, db_session, sender, "/help")

        assert "Справка" in fake_transport.last_to(sender.id)["text"]

    @pytest.mark.unit
    async def test_unknown_command(self, conversation_engine, db_session, sender, fake_transport):
        await _send(conversation_engine, db_session, sender, "/<b>oops")

        text = fake_transport.last_to(sender.id)["text"]
        assert "Неизвестная команда: /&lt;b&gt;oops" in text

    @pytest.mark.unit
    async def test_unknown_command_is_not_audited(self, conversation_engine, db_session, sender):
        await _send(conversation_engine, db_session, sender, "/nope")

        user = await UserService(db_session).get_by_telegram_id(sender.id)
        assert await UserService(db_session).list_actions(user.id, "command_executed") == []

    @pytest.mark.unit
    async def test_command_is_audited(self, conversation_engine, db_session, sender):
        await _send(conversation_engine, db_session, sender, "/help")

        user = await UserService(db_session).get_by_telegram_id(sender.id)
        actions = await UserService(db_session).list_actions(user.id, "command_executed")
        assert actions[0].action_data == {"command": "/help", "args": []}


class TestAdminCommands:

    @pytest.mark.unit
    @pytest.mark.parametrize("command", ["/admin_settings", "/set_rate 10", "/stats"])
    async def test_non_admin_is_refused(
        self, conversation_engine, db_session, sender, fake_transport, settings_service, command
    ):
        await _send(conversation_engine, db_session, sender, command)

        assert fake_transport.last_to(sender.id)["text"] == "❌ Команда недоступна."
        assert settings_service.current.yuan_rate == Decimal("13.20")
        user = await UserService(db_session).get_by_telegram_id(sender.id)
        assert await UserService(db_session).list_actions(user.id, "command_executed") == []

    @pytest.mark.unit
    async def test_set_rate_updates_cache(
        self, conversation_engine, db_session, admin_sender, fake_transport, settings_service
    ):
        await _send(conversation_engine, db_session, admin_sender, "/set_rate 12,75")

        assert fake_transport.last_to(admin_sender.id)["text"] == "✅ Курс обновлен: 1¥ = 12.75₽"
        assert settings_service.current.yuan_rate == Decimal("12.75")

        user = await UserService(db_session).get_by_telegram_id(admin_sender.id)
        actions = await UserService(db_session).list_actions(user.id, "command_executed")
        assert actions[-1].action_data == {"command": "/set_rate", "args": ["12,75"]}

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "command,reply",
        [
            ("/set_rate", "❌ Неверный формат. Используйте: /set_rate 13.50"),
            ("/set_rate 1 2", "❌ Неверный формат. Используйте: /set_rate 13.50"),
            ("/set_rate abc", "❌ Неверное значение курса."),
            ("/set_rate -3", "❌ Неверное значение курса."),
            ("/set_rate 0", "❌ Неверное значение курса."),
            ("/set_rate inf", "❌ Неверное значение курса."),
        ],
    )
    async def test_set_rate_rejects_bad_input(
        self, conversation_engine, db_session, admin_sender, fake_transport, settings_service, command, reply
    ):
        await _send(conversation_engine, db_session, admin_sender, command)

        assert fake_transport.last_to(admin_sender.id)["text"] == reply
        assert settings_service.current.yuan_rate == Decimal("13.20")

    @pytest.mark.unit
    async def test_new_rate_applies_to_next_price(
        self, conversation_engine, db_session, admin_sender, settings_service
    ):
        from app.db.models.product_calculation import ProductCategory
        from app.domain.services.pricing_service import calculate_price

        await _send(conversation_engine, db_session, admin_sender, "/set_rate 10")

        quote = calculate_price(100, ProductCategory.SHOES, settings_service.current)
        assert quote.standard_total == 1000 + 500 + 600 + 500

    @pytest.mark.unit
    async def test_admin_settings_and_stats(
        self, conversation_engine, db_session, admin_sender, fake_transport
    ):
        await _send(conversation_engine, db_session, admin_sender, "/admin_settings")
        settings_text = fake_transport.last_to(admin_sender.id)["text"]
        assert "Панель администратора" in settings_text
        assert "Курс ¥: 13.20₽" in settings_text
        assert "Администраторов: 2" in settings_text

        await _send(conversation_engine, db_session, admin_sender, "/stats")
        stats_text = fake_transport.last_to(admin_sender.id)["text"]
        assert "Подробная статистика" in stats_text
        assert "• Всего: 1" in stats_text
