"""
Tests for the CRM callbacks: order confirmation, status changes and completion
"""
import pytest

from app.db.models.bot_order import BotOrder, DeliveryTier
from app.db.models.product_calculation import ProductCategory
from app.domain.services.order_service import OrderService
from app.domain.services.user_service import UserService
from tests.conftest import FakeTransport

NOTIFY = "/api/bot/notify"


@pytest.fixture
async def order(db_session, user_factory) -> BotOrder:
    user = await user_factory(telegram_id="555000111")
    return await OrderService(db_session).create_order(
        user.id,
        product_title="Nike Air Max 97",
        size="42",
        category=ProductCategory.SHOES,
        delivery_tier=DeliveryTier.EXPRESS,
        amount=10580,
    )


class TestOrderCreated:

    @pytest.mark.unit
    async def test_confirms_and_notifies(self, test_client, admin_headers, order, fake_transport):
        response = await test_client.post(
            f"{NOTIFY}/order-created", json={"order_number": order.order_number}, headers=admin_headers
        )

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "confirmed"
        assert (body["changed"], body["notified"]) == (True, True)
        message = fake_transport.last_to("555000111")
        assert "подтвержден" in message["text"]
        assert order.order_number in message["text"]
        assert "10 580" in message["text"]
        assert "my_orders" in FakeTransport.actions(message)

    @pytest.mark.unit
    async def test_repeat_sends_nothing(self, test_client, admin_headers, order, fake_transport):
        payload = {"order_number": order.order_number}
        await test_client.post(f"{NOTIFY}/order-created", json=payload, headers=admin_headers)

        response = await test_client.post(f"{NOTIFY}/order-created", json=payload, headers=admin_headers)

        assert (response.json()["changed"], response.json()["notified"]) == (False, False)
        assert len(fake_transport.messages_to("555000111")) == 1

    @pytest.mark.unit
    async def test_unknown_order(self, test_client, admin_headers, fake_transport):
        response = await test_client.post(
            f"{NOTIFY}/order-created", json={"order_number": "SQ-20260101-999999"}, headers=admin_headers
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_2001"
        assert fake_transport.sent == []

    @pytest.mark.unit
    async def test_blocked_customer_is_reported(self, test_client, admin_headers, order, fake_transport):
        fake_transport.failing_chats = {"555000111"}

        response = await test_client.post(
            f"{NOTIFY}/order-created", json={"order_number": order.order_number}, headers=admin_headers
        )

        assert response.status_code == 200
        assert (response.json()["changed"], response.json()["notified"]) == (True, False)


class TestStatusChange:

    @pytest.mark.unit
    async def test_shipped_with_tracking_button(self, test_client, admin_headers, order, fake_transport):
        response = await test_client.post(
            f"{NOTIFY}/status-change",
            json={"order_number": order.order_number, "status": "shipped", "track_number": "10203040"},
            headers=admin_headers,
        )

        assert response.json()["track_number"] == "10203040"
        message = fake_transport.last_to("555000111")
        assert "Отправлен" in message["text"]
        assert "10203040" in message["text"]
        assert "https://www.cdek.ru/ru/tracking?order_id=10203040" in FakeTransport.actions(message)

    @pytest.mark.unit
    async def test_paid(self, test_client, admin_headers, order, fake_transport):
        await test_client.post(
            f"{NOTIFY}/status-change",
            json={"order_number": order.order_number, "status": "paid"},
            headers=admin_headers,
        )

        assert "Спасибо за оплату" in fake_transport.last_to("555000111")["text"]

    @pytest.mark.unit
    async def test_delivered_uses_completion_message(self, test_client, admin_headers, order, fake_transport):
        await test_client.post(
            f"{NOTIFY}/status-change",
            json={"order_number": order.order_number, "status": "delivered"},
            headers=admin_headers,
        )

        assert "доставлен" in fake_transport.last_to("555000111")["text"]

    @pytest.mark.unit
    async def test_unknown_status_rejected(self, test_client, admin_headers, order):
        response = await test_client.post(
            f"{NOTIFY}/status-change",
            json={"order_number": order.order_number, "status": "lost"},
            headers=admin_headers,
        )

        assert response.status_code == 422

    @pytest.mark.unit
    async def test_change_is_audited(self, test_client, admin_headers, order, db_session):
        await test_client.post(
            f"{NOTIFY}/status-change",
            json={"order_number": order.order_number, "status": "cancelled"},
            headers=admin_headers,
        )

        actions = await UserService(db_session).list_actions(order.user_id, "order_status_changed")
        assert actions[0].action_data["new_status"] == "cancelled"


class TestOrderCompleted:

    @pytest.mark.unit
    async def test_completion_links_reviews(self, test_client, admin_headers, order, fake_transport, settings_service):
        response = await test_client.post(
            f"{NOTIFY}/order-completed", json={"order_number": order.order_number}, headers=admin_headers
        )

        assert response.json()["status"] == "delivered"
        message = fake_transport.last_to("555000111")
        assert settings_service.current.reviews_url in FakeTransport.actions(message)

    @pytest.mark.unit
    async def test_completing_twice_notifies_once(self, test_client, admin_headers, order, fake_transport):
        payload = {"order_number": order.order_number}
        await test_client.post(f"{NOTIFY}/order-completed", json=payload, headers=admin_headers)
        await test_client.post(f"{NOTIFY}/order-completed", json=payload, headers=admin_headers)

        assert len(fake_transport.messages_to("555000111")) == 1
