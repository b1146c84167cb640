"""
Unit tests for AdminNotificationService.

Focus:
- Admin fanout tolerates individual send failures
- Broadcast targets, pacing and counters
"""
from datetime import timedelta

import pytest

from app.db.database import utcnow
from app.domain.services.admin_notification_service import (
    AdminNotificationService,
    BroadcastResult,
    BroadcastTarget,
)
from app.domain.services.settings_service import SettingsService
from tests.conftest import ADMIN_TELEGRAM_IDS


class TestNotifyAdmins:

    @pytest.mark.unit
    async def test_sends_to_every_admin(self, notifier, fake_transport):
        delivered = await notifier.notify_admins("🆕 НОВЫЙ ЗАКАЗ")

        assert delivered == 2
        assert [m["chat_id"] for m in fake_transport.sent] == list(ADMIN_TELEGRAM_IDS)

    @pytest.mark.unit
    async def test_one_failure_does_not_stop_the_rest(self, notifier, fake_transport, settings_service):
        await settings_service.update_setting("admin_chat_ids", "1,2,3")
        fake_transport.failing_chats = {"1"}

        delivered = await notifier.notify_admins("hello")

        assert delivered == 2
        assert [m["chat_id"] for m in fake_transport.sent] == ["2", "3"]

    @pytest.mark.unit
    async def test_no_admins_configured(self, fake_transport, session_factory):
        service = AdminNotificationService(fake_transport, SettingsService(session_factory))

        assert await service.notify_admins("hello") == 0
        assert fake_transport.sent == []

    @pytest.mark.unit
    async def test_notify_user_reports_failure(self, notifier, fake_transport):
        fake_transport.failing_chats = {"42"}

        assert await notifier.notify_user(42, "status") is False
        assert await notifier.notify_user(43, "status") is True


class TestBroadcast:

    @pytest.fixture
    def sleeps(self) -> list[float]:
        return []

    @pytest.fixture
    def paced_notifier(self, fake_transport, settings_service, sleeps) -> AdminNotificationService:
        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)

        return AdminNotificationService(
            fake_transport, settings_service, broadcast_delay_seconds=0.1, sleep=fake_sleep
        )

    @pytest.mark.unit
    async def test_pauses_between_messages(self, paced_notifier, db_session, user_factory, fake_transport, sleeps):
        for _ in range(3):
            await user_factory()

        result = await paced_notifier.broadcast(db_session, "Скидки!", BroadcastTarget.ALL)

        assert result == BroadcastResult(sent=3, failed=0)
        assert sleeps == [0.1, 0.1]
        assert len(fake_transport.sent) == 3

    @pytest.mark.unit
    async def test_failures_are_counted(self, paced_notifier, db_session, user_factory, fake_transport):
        first = await user_factory()
        await user_factory()
        fake_transport.failing_chats = {first.telegram_id}

        result = await paced_notifier.broadcast(db_session, "hi", BroadcastTarget.ALL)

        assert (result.sent, result.failed, result.total) == (1, 1, 2)

    @pytest.mark.unit
    async def test_active_target_skips_idle_users(self, paced_notifier, db_session, user_factory, fake_transport):
        idle = await user_factory(last_activity=utcnow() - timedelta(days=30))
        active = await user_factory()

        result = await paced_notifier.broadcast(db_session, "hi", BroadcastTarget.ACTIVE)

        assert result.sent == 1
        assert fake_transport.messages_to(active.telegram_id)
        assert not fake_transport.messages_to(idle.telegram_id)

    @pytest.mark.unit
    async def test_recent_target_skips_old_registrations(self, paced_notifier, db_session, user_factory):
        await user_factory(registration_date=utcnow() - timedelta(days=90))
        await user_factory()

        result = await paced_notifier.broadcast(db_session, "hi", BroadcastTarget.RECENT)

        assert result.total == 1

    @pytest.mark.unit
    async def test_empty_audience(self, paced_notifier, db_session, sleeps):
        result = await paced_notifier.broadcast(db_session, "hi", BroadcastTarget.ALL)

        assert result.total == 0
        assert sleeps == []
