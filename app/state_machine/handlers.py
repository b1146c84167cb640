"""
Conversation Engine - interprets text messages and button presses against
the user's session and drives the pricing/ordering flow

One engine serves the whole process; the database session is per update.
The update dispatcher guarantees that updates of one user reach the engine
one at a time, so a session read here is not overwritten underneath us.
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ExternalServiceException,
    InvalidProductDataError,
    MissingSessionContextError,
    QuotaExceededError,
)
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.bot_order import DeliveryTier
from app.db.models.bot_user import BotUser
from app.db.models.product_calculation import ProductCategory
from app.domain.services.admin_notification_service import AdminNotificationService
from app.domain.services.order_service import OrderService
from app.domain.services.pricing_service import calculate_price
from app.domain.services.product_lookup_service import (
    ProductLookupClient,
    ProductSnapshot,
    extract_product_url,
)
from app.domain.services.quota_service import QuotaOperation, QuotaService
from app.domain.services.settings_service import SettingsService
from app.domain.services.subscription_service import SubscriptionService
from app.domain.services.telegram_transport import TelegramTransport
from app.domain.services.user_service import UserService
from app.state_machine import replies
from app.state_machine.commands import CommandRouter
from app.state_machine.manager import Session, SessionStore
from app.state_machine.replies import MessageResponse
from app.state_machine.states import (
    CTX_CALCULATION,
    CTX_CATEGORY,
    CTX_PRODUCT,
    CTX_PRODUCT_REF,
    CTX_SIZE,
    CTX_URL,
    CTX_VARIANT_ID,
    OrderFlowState,
)

logger = get_logger(__name__)

ORDERS_SHOWN = 5


@dataclass(frozen=True)
class TelegramSender:
    """Who sent an update, as reported by Telegram"""

    id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


@dataclass
class Turn:
    """Everything one callback handler needs about the update being processed"""

    db: AsyncSession
    user: BotUser
    session_key: int
    chat_id: int | str


CallbackHandler = Callable[[Turn, str], Awaitable[None]]


class ConversationEngine:
    """Drives the guided flow: link -> category -> size -> price -> order"""

    def __init__(
        self,
        sessions: SessionStore,
        settings_service: SettingsService,
        transport: TelegramTransport,
        lookup: ProductLookupClient,
        notifier: AdminNotificationService,
    ):
        self.sessions = sessions
        self.settings_service = settings_service
        self.transport = transport
        self.lookup = lookup
        self.notifier = notifier
        self.subscriptions = SubscriptionService(transport, settings_service)
        self.commands = CommandRouter(settings_service, self.subscriptions)

    # ==================== Entry points ====================

    async def handle_message(
        self,
        db: AsyncSession,
        sender: TelegramSender,
        chat_id: int | str,
        text: str,
    ) -> None:
        """Process one inbound text message"""
        try:
            user = await self._touch_user(db, sender)
            await UserService(db).log_action(user.id, "message_received", {"text": text[:100]})

            if text.startswith("/"):
                await self._send(chat_id, await self.commands.dispatch(db, user, text))
                return

            session = self.sessions.get(sender.id)
            if session.step == OrderFlowState.WAITING_URL:
                await self._handle_url_input(Turn(db, user, sender.id, chat_id), text)
            else:
                await self._send(chat_id, replies.main_menu())
        except Exception as e:
            await self._recover(db, chat_id, e, kind="message", user_id=sender.id)

    async def handle_callback(
        self,
        db: AsyncSession,
        sender: TelegramSender,
        chat_id: int | str,
        callback_id: str,
        data: str,
    ) -> None:
        """Process one button press; the callback is always acknowledged"""
        try:
            user = await self._touch_user(db, sender)
            await UserService(db).log_action(user.id, "callback_query", {"data": data})

            handler = self._get_callback_handler(data)
            if handler is None:
                logger.warning(
                    "Unknown callback data",
                    extra_data={"user_id": sender.id, "data": data[:64]},
                )
                return

            turn = Turn(db, user, sender.id, chat_id)
            try:
                await handler(turn, data)
            except MissingSessionContextError as e:
                logger.info(
                    "Callback rejected, session context missing",
                    extra_data={"user_id": sender.id, "data": data[:64], "missing": e.details.get("missing_field")},
                )
                await self._send(chat_id, replies.stale_session())
        except Exception as e:
            await self._recover(db, chat_id, e, kind="callback", user_id=sender.id)
        finally:
            await self._answer_callback(callback_id)

    def _get_callback_handler(self, data: str) -> Optional[CallbackHandler]:
        handlers: dict[str, CallbackHandler] = {
            "check_subscription": self._on_check_subscription,
            "understood": self._on_main_menu,
            "main_menu": self._on_main_menu,
            "need_help": self._on_what_is_poizon,
            "what_is_poizon": self._on_what_is_poizon,
            "reviews": self._on_reviews,
            "call_operator": self._on_call_operator,
            "my_orders": self._on_my_orders,
            "calculate_cost": self._on_calculate_cost,
            "recalculate": self._on_recalculate,
            "cancel": self._on_cancel,
            "order_standard": self._on_order,
            "order_express": self._on_order,
        }
        if data in handlers:
            return handlers[data]
        if data.startswith("category_"):
            return self._on_category
        if data.startswith("size_"):
            return self._on_size
        return None

    # ==================== Link input ====================

    async def _handle_url_input(self, turn: Turn, text: str) -> None:
        """
        waiting_url: find the link, spend quota, resolve and fetch the product.
        Every failure leaves the session in waiting_url.
        """
        url = extract_product_url(text)
        if url is None:
            await self._send(turn.chat_id, replies.url_not_found())
            return

        limit = self.settings_service.current.api_limit_per_user
        quota = QuotaService(turn.db)
        try:
            await quota.consume(turn.user.id, QuotaOperation.EXTRACT_SPU, limit)
            await self._send(turn.chat_id, replies.lookup_in_progress())

            spu_id = await self.lookup.resolve_reference(url)
            if spu_id is None:
                await self._send(turn.chat_id, replies.link_not_resolved())
                return

            await quota.consume(turn.user.id, QuotaOperation.GET_PRODUCT_DATA, limit)
            product = await self.lookup.fetch_details(spu_id)
        except QuotaExceededError as e:
            await self._send(turn.chat_id, replies.quota_exhausted(e.limit))
            return
        except InvalidProductDataError as e:
            logger.warning(
                "Product payload rejected",
                extra_data={"user_id": turn.session_key, "reason": e.reason},
            )
            await self._send(turn.chat_id, replies.product_unavailable())
            return
        except ExternalServiceException as e:
            logger.error(
                "Product lookup failed",
                extra_data={"user_id": turn.session_key, "error": e.message},
            )
            await self._send(turn.chat_id, replies.lookup_failed())
            return

        if product is None:
            await self._send(turn.chat_id, replies.product_unavailable())
            return

        self.sessions.transition_to(
            turn.session_key,
            OrderFlowState.CATEGORY_SELECTION,
            {CTX_URL: url, CTX_PRODUCT_REF: spu_id, CTX_PRODUCT: product.to_blob()},
            reset_context=True,
        )
        await self._send(turn.chat_id, replies.category_selection())

    # ==================== Flow callbacks ====================

    async def _on_calculate_cost(self, turn: Turn, data: str) -> None:
        limit = self.settings_service.current.api_limit_per_user
        if not await QuotaService(turn.db).has_remaining(turn.user.id, QuotaOperation.EXTRACT_SPU, limit):
            await self._send(turn.chat_id, replies.quota_exhausted(limit))
            return

        self.sessions.transition_to(turn.session_key, OrderFlowState.WAITING_URL, reset_context=True)
        await self._send(turn.chat_id, replies.url_prompt())

    async def _on_recalculate(self, turn: Turn, data: str) -> None:
        session = self.sessions.get(turn.session_key)
        self._require(session, data, CTX_PRODUCT, user_id=turn.session_key)

        kept = {key: session.context.get(key) for key in (CTX_URL, CTX_PRODUCT_REF, CTX_PRODUCT)}
        if not self.sessions.transition_to(
            turn.session_key, OrderFlowState.CATEGORY_SELECTION, kept, reset_context=True
        ):
            raise MissingSessionContextError(data, CTX_PRODUCT, turn.session_key)
        await self._send(turn.chat_id, replies.category_selection())

    async def _on_category(self, turn: Turn, data: str) -> None:
        session = self.sessions.get(turn.session_key)
        self._require(session, data, CTX_PRODUCT, user_id=turn.session_key)

        category = ProductCategory.parse(data.removeprefix("category_"))
        if category is None:
            await self._send(turn.chat_id, replies.category_not_found())
            return

        product = ProductSnapshot.model_validate(session.context[CTX_PRODUCT])
        context = {key: session.context.get(key) for key in (CTX_URL, CTX_PRODUCT_REF, CTX_PRODUCT)}
        context[CTX_CATEGORY] = category.value
        if not self.sessions.transition_to(
            turn.session_key, OrderFlowState.SIZE_SELECTION, context, reset_context=True
        ):
            raise MissingSessionContextError(data, CTX_PRODUCT, turn.session_key)

        variants = product.available_variants()
        if not variants:
            await self._send(turn.chat_id, replies.out_of_stock())
            return

        if product.image_url:
            await self._send_photo_best_effort(turn.chat_id, replies.product_photo(product.title, product.image_url))
        await self._send(turn.chat_id, replies.size_selection(variants))

    async def _on_size(self, turn: Turn, data: str) -> None:
        session = self.sessions.get(turn.session_key)
        self._require(session, data, CTX_PRODUCT, CTX_CATEGORY, user_id=turn.session_key)

        product = ProductSnapshot.model_validate(session.context[CTX_PRODUCT])
        variant = product.find_variant(data.removeprefix("size_"))
        if variant is None or not variant.available:
            await self._send(turn.chat_id, replies.size_not_found())
            return

        category = ProductCategory(session.context[CTX_CATEGORY])
        quote = calculate_price(variant.price, category, self.settings_service.current)
        calculation = await OrderService(turn.db).save_calculation(
            turn.user.id,
            product,
            category,
            variant,
            quote,
            poizon_url=session.context.get(CTX_URL),
        )

        self.sessions.transition_to(
            turn.session_key,
            OrderFlowState.SIZE_SELECTION,
            {
                CTX_VARIANT_ID: variant.id,
                CTX_SIZE: variant.size_label,
                CTX_CALCULATION: {
                    "id": calculation.id,
                    "standard_total": quote.standard_total,
                    "express_total": quote.express_total,
                },
            },
        )
        await self._send(
            turn.chat_id,
            replies.price_calculation(product.title, variant.size_label, quote.standard_total, quote.express_total),
        )

    async def _on_order(self, turn: Turn, data: str) -> None:
        session = self.sessions.get(turn.session_key)
        self._require(
            session, data, CTX_PRODUCT, CTX_CATEGORY, CTX_SIZE, CTX_CALCULATION, user_id=turn.session_key
        )

        ctx = session.context
        calculation: dict[str, Any] = ctx[CTX_CALCULATION]
        tier = DeliveryTier.EXPRESS if data == "order_express" else DeliveryTier.STANDARD
        amount = calculation["express_total"] if tier == DeliveryTier.EXPRESS else calculation["standard_total"]

        order = await OrderService(turn.db).create_order(
            turn.user.id,
            product_title=ctx[CTX_PRODUCT]["title"],
            size=ctx[CTX_SIZE],
            category=ProductCategory(ctx[CTX_CATEGORY]),
            delivery_tier=tier,
            amount=amount,
            calculation_id=calculation.get("id"),
        )
        self.sessions.clear(turn.session_key)

        await self.notifier.notify_admins(
            replies.admin_new_order(
                order,
                replies.customer_label(turn.user.username, turn.user.first_name),
                turn.user.telegram_id,
                ctx.get(CTX_URL),
            )
        )
        await self._send(turn.chat_id, replies.order_accepted(order.order_number))

    async def _on_cancel(self, turn: Turn, data: str) -> None:
        self.sessions.clear(turn.session_key)
        await self._send(turn.chat_id, replies.main_menu())

    # ==================== Informational callbacks ====================

    async def _on_check_subscription(self, turn: Turn, data: str) -> None:
        if await self.subscriptions.is_subscribed(turn.db, turn.user):
            await self._send(turn.chat_id, replies.welcome())
            return
        channel = self.settings_service.current.channel_username
        await self._send(turn.chat_id, replies.subscription_required(channel, not_yet=True))

    async def _on_main_menu(self, turn: Turn, data: str) -> None:
        await self._send(turn.chat_id, replies.main_menu())

    async def _on_reviews(self, turn: Turn, data: str) -> None:
        await self._send(turn.chat_id, replies.reviews(self.settings_service.current))

    async def _on_what_is_poizon(self, turn: Turn, data: str) -> None:
        await self._send(turn.chat_id, replies.poizon_info(self.settings_service.current))

    async def _on_call_operator(self, turn: Turn, data: str) -> None:
        await self._send(turn.chat_id, replies.operator_called())
        await self.notifier.notify_admins(
            replies.admin_operator_call(
                replies.customer_label(turn.user.username, turn.user.first_name),
                turn.user.telegram_id,
                utcnow(),
            )
        )
        await UserService(turn.db).log_action(turn.user.id, "operator_called", {})

    async def _on_my_orders(self, turn: Turn, data: str) -> None:
        orders = await OrderService(turn.db).get_orders_by_user(turn.user.id, limit=ORDERS_SHOWN)
        await self._send(turn.chat_id, replies.order_list(orders) if orders else replies.no_orders())

    # ==================== Helpers ====================

    async def _touch_user(self, db: AsyncSession, sender: TelegramSender) -> BotUser:
        user, _ = await UserService(db).find_or_create(
            sender.id,
            username=sender.username,
            first_name=sender.first_name,
            last_name=sender.last_name,
        )
        return user

    @staticmethod
    def _require(session: Session, action: str, *keys: str, user_id: Optional[int] = None) -> None:
        for key in keys:
            if session.context.get(key) is None:
                raise MissingSessionContextError(action, key, user_id)

    async def _send(self, chat_id: int | str, response: MessageResponse) -> None:
        if response.photo_url:
            await self.transport.send_photo(
                chat_id, response.photo_url, caption=response.text, keyboard=response.keyboard
            )
        else:
            await self.transport.send_text(chat_id, response.text, keyboard=response.keyboard)

    async def _send_photo_best_effort(self, chat_id: int | str, response: MessageResponse) -> None:
        """Product images come from a third party; a rejected photo must not block size selection"""
        try:
            await self._send(chat_id, response)
        except ExternalServiceException as e:
            logger.warning("Product photo not sent", extra_data={"chat_id": chat_id, "error": e.message})

    async def _answer_callback(self, callback_id: str) -> None:
        try:
            await self.transport.answer_callback(callback_id)
        except ExternalServiceException as e:
            logger.warning(
                "Callback acknowledgement failed",
                extra_data={"callback_id": callback_id, "error": e.message},
            )

    async def _recover(
        self,
        db: AsyncSession,
        chat_id: int | str,
        error: Exception,
        kind: str,
        user_id: int,
    ) -> None:
        logger.error(
            f"Unhandled error while processing {kind}",
            extra_data={"user_id": user_id, "error": str(error), "error_type": type(error).__name__},
            exc_info=True,
        )
        await db.rollback()
        try:
            await self._send(chat_id, replies.error_recovery())
        except Exception as send_error:
            logger.error(
                "Error reply could not be sent",
                extra_data={"user_id": user_id, "error": str(send_error)},
            )
