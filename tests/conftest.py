"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- Fake Telegram transport and product lookup service
- The conversation engine and the HTTP app wired to both fakes
"""
from decimal import Decimal
from typing import Any, AsyncGenerator, Optional

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.circuit_breaker import CircuitBreaker
from app.core.config import settings
from app.core.exceptions import ProductLookupError, TelegramError
from app.db.database import Base, get_db
from app.db.models.bot_user import BotUser
from app.domain.services.admin_notification_service import AdminNotificationService
from app.domain.services.product_lookup_service import ProductSnapshot, parse_product_payload
from app.domain.services.settings_service import SettingsService
from app.main import app
from app.runtime import build_runtime
from app.state_machine.handlers import ConversationEngine, TelegramSender
from app.state_machine.manager import SessionStore


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ADMIN_API_KEY = "test-admin-api-key"
ADMIN_TELEGRAM_IDS = ("900001", "900002")


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Every test starts with closed breakers"""
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine) -> async_sessionmaker:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Fake collaborators
# ============================================================================


class FakeTransport:
    """Records everything the bot would send to Telegram"""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.attempts: list[str] = []
        self.answered: list[str] = []
        self.member_status = "member"
        self.failing_chats: set[str] = set()
        self.fail_answers = False
        self.fail_photos = False
        self.is_configured = True
        self.webhook_url: Optional[str] = None

    def _check(self, chat_id) -> None:
        self.attempts.append(str(chat_id))
        if str(chat_id) in self.failing_chats:
            raise TelegramError("sendMessage failed", details={"chat_id": str(chat_id)})

    async def send_text(self, chat_id, text, keyboard=None):
        self._check(chat_id)
        self.sent.append({"chat_id": str(chat_id), "text": text, "keyboard": keyboard, "photo": None})
        return {"message_id": len(self.sent)}

    async def send_photo(self, chat_id, photo_url, caption=None, keyboard=None):
        self._check(chat_id)
        if self.fail_photos:
            raise TelegramError("sendPhoto failed")
        self.sent.append({"chat_id": str(chat_id), "text": caption, "keyboard": keyboard, "photo": photo_url})
        return {"message_id": len(self.sent)}

    async def answer_callback(self, callback_id, text=None):
        if self.fail_answers:
            raise TelegramError("answerCallbackQuery failed")
        self.answered.append(callback_id)

    async def get_chat_member_status(self, channel_username, user_id):
        return self.member_status

    async def get_me(self):
        return {"id": 1, "is_bot": True, "username": "square_test_bot"}

    async def set_webhook(self, url):
        self.webhook_url = url
        return True

    async def get_webhook_info(self):
        return {"url": self.webhook_url or "", "pending_update_count": 0}

    async def aclose(self):
        return None

    # helpers for assertions

    def messages_to(self, chat_id) -> list[dict[str, Any]]:
        return [m for m in self.sent if m["chat_id"] == str(chat_id)]

    def last_to(self, chat_id) -> dict[str, Any]:
        return self.messages_to(chat_id)[-1]

    @staticmethod
    def actions(message: dict[str, Any]) -> list[str]:
        return [button.action for row in (message["keyboard"] or []) for button in row]


def make_product_payload(**overrides: Any) -> dict[str, Any]:
    """Raw get-product-data ``product`` object as the lookup service returns it"""
    payload = {
        "id": "prod-1",
        "title": "Nike Air Max 97",
        "spu": "1234567",
        "image": {"src": "//cdn.poizon.com/air-max-97.jpg"},
        "variants": [
            {"id": "v40", "price": "699", "available": True, "option2": "40"},
            {"id": "v41", "price": "699", "available": True, "options": [{"name": "Size", "value": "41"}]},
            {"id": "v42", "price": "749", "available": False, "option2": "42"},
            {"id": "v43", "price": "799", "available": True, "option2": "43"},
        ],
    }
    payload.update(overrides)
    return payload


class FakeProductLookup:
    """Stands in for ProductLookupClient"""

    def __init__(self) -> None:
        self.spu_id: Optional[str] = "1234567"
        self.product: Optional[ProductSnapshot] = parse_product_payload(make_product_payload())
        self.resolve_error: Optional[Exception] = None
        self.fetch_error: Optional[Exception] = None
        self.resolved: list[str] = []
        self.fetched: list[str] = []
        self.healthy = True

    async def resolve_reference(self, url: str) -> Optional[str]:
        self.resolved.append(url)
        if self.resolve_error:
            raise self.resolve_error
        return self.spu_id

    async def fetch_details(self, spu_id: str) -> Optional[ProductSnapshot]:
        self.fetched.append(spu_id)
        if self.fetch_error:
            raise self.fetch_error
        return self.product

    async def health_check(self) -> bool:
        return self.healthy

    async def aclose(self) -> None:
        return None

    def fail_with_lookup_error(self) -> None:
        self.resolve_error = ProductLookupError("extract-spu returned status 502")


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def fake_lookup() -> FakeProductLookup:
    return FakeProductLookup()


@pytest.fixture
async def settings_service(session_factory) -> SettingsService:
    """Settings cache with two admins configured"""
    service = SettingsService(session_factory)
    await service.update_setting("admin_chat_ids", ",".join(ADMIN_TELEGRAM_IDS))
    return service


@pytest.fixture
def notifier(fake_transport, settings_service) -> AdminNotificationService:
    return AdminNotificationService(fake_transport, settings_service, broadcast_delay_seconds=0)


@pytest.fixture
def sessions() -> SessionStore:
    return SessionStore()


@pytest.fixture
def conversation_engine(sessions, settings_service, fake_transport, fake_lookup, notifier) -> ConversationEngine:
    return ConversationEngine(sessions, settings_service, fake_transport, fake_lookup, notifier)


@pytest.fixture
def sender() -> TelegramSender:
    return TelegramSender(id=555000111, username="buyer", first_name="Ivan", last_name="Petrov")


@pytest.fixture
def admin_headers(monkeypatch) -> dict[str, str]:
    monkeypatch.setattr(settings, "ADMIN_API_KEY", ADMIN_API_KEY)
    return {"X-Admin-API-Key": ADMIN_API_KEY}


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession, session_factory, fake_transport, fake_lookup, settings_service):
    """HTTP client against the app, with fakes behind the bot runtime"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    runtime = build_runtime(
        session_factory=session_factory,
        transport=fake_transport,
        lookup=fake_lookup,
        settings_service=settings_service,
    )
    runtime.notifier.broadcast_delay_seconds = 0
    app.dependency_overrides[get_db] = override_get_db
    app.state.runtime = runtime

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    await runtime.dispatcher.shutdown()
    app.state.runtime = None
    app.dependency_overrides.clear()


# ============================================================================
# Test Data Factories
# ============================================================================


@pytest.fixture
def user_factory(db_session: AsyncSession):
    """Factory for bot users"""
    counter = {"next": 100000000}

    async def _create_user(
        telegram_id: Optional[str] = None,
        username: Optional[str] = "customer",
        first_name: Optional[str] = "Test",
        **fields: Any,
    ) -> BotUser:
        counter["next"] += 1
        user = BotUser(
            telegram_id=telegram_id or str(counter["next"]),
            username=username,
            first_name=first_name,
            **fields,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


PRICE_699 = Decimal("699")
