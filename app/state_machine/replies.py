"""
Bot replies - every user-facing text and keyboard of the order flow

Builders only; nothing here talks to Telegram or the database. Texts are
sent with parse_mode=HTML, so anything coming from users or the product
service goes through ``escape`` first.
"""
from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Any, Optional, Sequence

from app.db.models.bot_order import BotOrder, DeliveryTier, OrderStatus
from app.db.models.product_calculation import ProductCategory
from app.domain.services.pricing_service import format_rub
from app.domain.services.product_lookup_service import ProductVariant
from app.domain.services.settings_service import BotSettingsSnapshot
from app.domain.services.telegram_transport import InlineButton, Keyboard


@dataclass
class MessageResponse:
    """Response to be sent to user"""

    text: str
    keyboard: Optional[Keyboard] = None
    photo_url: Optional[str] = None


CATEGORY_LABELS = {
    ProductCategory.SHOES: "👟 Обувь",
    ProductCategory.BOOTS: "🥾 Ботинки",
    ProductCategory.TSHIRTS: "👕 Футболки",
    ProductCategory.JACKETS: "🧥 Куртки",
    ProductCategory.SHORTS: "🩳 Шорты",
    ProductCategory.PANTS: "👖 Штаны",
    ProductCategory.ACCESSORIES: "🎒 Аксессуары",
    ProductCategory.BAGS: "👜 Сумки",
}

STATUS_EMOJI = {
    OrderStatus.PENDING: "🟡",
    OrderStatus.CONFIRMED: "🔵",
    OrderStatus.PAID: "🟢",
    OrderStatus.SHIPPED: "📦",
    OrderStatus.DELIVERED: "✅",
    OrderStatus.CANCELLED: "❌",
}

STATUS_TEXT = {
    OrderStatus.PENDING: "В обработке",
    OrderStatus.CONFIRMED: "Подтвержден",
    OrderStatus.PAID: "Оплачен",
    OrderStatus.SHIPPED: "Отправлен",
    OrderStatus.DELIVERED: "Доставлен",
    OrderStatus.CANCELLED: "Отменен",
}

SIZE_BUTTONS_PER_ROW = 4

BTN_MAIN_MENU = InlineButton("🏠 В главное меню", "main_menu")
BTN_CANCEL = InlineButton("❌ Отмена", "cancel")
BTN_CALCULATE = InlineButton("🧮 Рассчитать стоимость", "calculate_cost")
BTN_CALL_OPERATOR = InlineButton("👨‍💼 Позвать оператора", "call_operator")


def customer_label(username: Optional[str], first_name: Optional[str]) -> str:
    if username:
        return f"@{escape(username)}"
    return escape(first_name or "Пользователь")


# ==================== Subscription & welcome ====================


def subscription_required(channel: str, not_yet: bool = False) -> MessageResponse:
    lines = []
    if not_yet:
        lines.append("❌ Вы еще не подписались на канал. Пожалуйста, подпишитесь и попробуйте снова.\n")
    lines.append("Привет! 👋\n")
    lines.append("Это бот SQUARE, мы занимаемся доставкой с POIZON.\n")
    lines.append(f"Чтобы пользоваться данным ботом необходимо быть подписанным на канал @{escape(channel)}")
    return MessageResponse(
        "\n".join(lines),
        keyboard=[
            [InlineButton("🔗 Подписаться на канал", f"https://t.me/{channel}")],
            [InlineButton("✅ Подписался", "check_subscription")],
        ],
    )


def welcome() -> MessageResponse:
    return MessageResponse(
        "🎉 Добро пожаловать в SQUARE!\n\n"
        "Мы поможем вам заказать любые товары с POIZON:\n"
        "• 🔍 Быстрый расчет стоимости\n"
        "• 🚚 Надежная доставка\n"
        "• 📦 Отслеживание заказов\n"
        "• 💬 Персональная поддержка",
        keyboard=[
            [InlineButton("✅ Я понял, как вы работаете", "understood")],
            [InlineButton("❓ Ничего не понятно", "need_help")],
        ],
    )


def main_menu() -> MessageResponse:
    return MessageResponse(
        "🏠 Главное меню SQUARE\n\nВыберите действие:",
        keyboard=[
            [BTN_CALCULATE],
            [InlineButton("⭐ Отзывы", "reviews")],
            [InlineButton("❓ Что такое POIZON?", "what_is_poizon")],
            [BTN_CALL_OPERATOR],
            [InlineButton("📦 Мои заказы", "my_orders")],
        ],
    )


# ==================== Calculation flow ====================


def url_prompt() -> MessageResponse:
    return MessageResponse(
        "🔗 Отправьте ссылку на товар с POIZON\n\n"
        "Скопируйте в приложении POIZON всю строку из «Поделиться» и отправьте ее сюда.\n\n"
        "Пример ссылки:\n"
        "【得物】得物er-0Y3B7W6D发现一件好物， 1 CZ1111 https://dw4.co/t/A/1sHU86GGg Nike Air Max 97",
        keyboard=[[BTN_CANCEL]],
    )


def quota_exhausted(limit: int) -> MessageResponse:
    return MessageResponse(
        f"❌ Вы достигли дневного лимита в {limit} расчетов.\n"
        "Попробуйте завтра или обратитесь к оператору.",
        keyboard=[[BTN_CALL_OPERATOR], [BTN_MAIN_MENU]],
    )


def url_not_found() -> MessageResponse:
    return MessageResponse(
        "❌ Не найдена ссылка на товар. Попробуйте еще раз или нажмите Отмена.",
        keyboard=[[BTN_CANCEL]],
    )


def lookup_in_progress() -> MessageResponse:
    return MessageResponse("⏳ Получаем информацию о товаре...")


def link_not_resolved() -> MessageResponse:
    return MessageResponse(
        "❌ Не удалось обработать ссылку. Проверьте корректность ссылки.",
        keyboard=[[BTN_CANCEL]],
    )


def product_unavailable() -> MessageResponse:
    return MessageResponse(
        "❌ Не удалось получить информацию о товаре.",
        keyboard=[[BTN_CANCEL]],
    )


def lookup_failed() -> MessageResponse:
    return MessageResponse(
        "❌ Произошла ошибка при обработке ссылки. Попробуйте позже.",
        keyboard=[[BTN_CANCEL]],
    )


def category_selection() -> MessageResponse:
    categories = list(CATEGORY_LABELS.items())
    rows = [
        [InlineButton(label, f"category_{category.value}") for category, label in categories[i:i + 2]]
        for i in range(0, len(categories), 2)
    ]
    rows.append([BTN_CANCEL])
    return MessageResponse("📱 Выберите категорию товара:", keyboard=rows)


def product_photo(title: str, image_url: str) -> MessageResponse:
    return MessageResponse(f"📦 {escape(title)}\n\nВыберите размер:", photo_url=image_url)


def size_selection(variants: Sequence[ProductVariant]) -> MessageResponse:
    rows = [
        [InlineButton(v.size_label, f"size_{v.id}") for v in variants[i:i + SIZE_BUTTONS_PER_ROW]]
        for i in range(0, len(variants), SIZE_BUTTONS_PER_ROW)
    ]
    rows.append([InlineButton("🔙 Назад к категориям", "recalculate"), BTN_CANCEL])
    return MessageResponse("Выберите размер:", keyboard=rows)


def out_of_stock() -> MessageResponse:
    return MessageResponse(
        "❌ К сожалению, этот товар сейчас недоступен.",
        keyboard=[[BTN_CALCULATE], [BTN_MAIN_MENU]],
    )


def price_calculation(title: str, size: str, standard_total: int, express_total: int) -> MessageResponse:
    return MessageResponse(
        "💰 Расчет стоимости\n\n"
        f"📦 {escape(title)}\n"
        f"📏 Размер: {escape(size)}\n\n"
        f"🚚 СТАНДАРТНАЯ ДОСТАВКА: {format_rub(standard_total)}₽\n"
        f"⚡ ЭКСПРЕСС ДОСТАВКА: {format_rub(express_total)}₽",
        keyboard=[
            [InlineButton(f"✅ Заказать стандарт ({format_rub(standard_total)}₽)", "order_standard")],
            [InlineButton(f"⚡ Заказать экспресс ({format_rub(express_total)}₽)", "order_express")],
            [InlineButton("🔄 Пересчитать товар", "recalculate")],
            [BTN_MAIN_MENU],
        ],
    )


def stale_session() -> MessageResponse:
    return MessageResponse(
        "⚠️ Данные расчета устарели. Начните расчет заново.",
        keyboard=main_menu().keyboard,
    )


def size_not_found() -> MessageResponse:
    return MessageResponse("❌ Размер не найден.", keyboard=main_menu().keyboard)


def category_not_found() -> MessageResponse:
    return MessageResponse("❌ Категория не найдена.", keyboard=main_menu().keyboard)


def order_accepted(order_number: str) -> MessageResponse:
    return MessageResponse(
        "📝 Заказ оформляется...\n\n"
        "Ваш заказ принят в обработку!\n"
        f"🆔 Номер заказа: {escape(order_number)}\n\n"
        "Сейчас с вами свяжется оператор для уточнения деталей.",
        keyboard=[[BTN_MAIN_MENU]],
    )


def admin_new_order(
    order: BotOrder,
    customer: str,
    telegram_id: str,
    url: Optional[str],
) -> str:
    tier = "экспресс" if order.delivery_type == DeliveryTier.EXPRESS else "стандарт"
    return (
        f"🆕 НОВЫЙ ЗАКАЗ {escape(order.order_number)}\n\n"
        f"👤 Клиент: {customer} (ID: {telegram_id})\n"
        f"📦 Товар: {escape(order.product_title)}\n"
        f"📏 Размер: {escape(order.size)}\n"
        f"🗂 Категория: {CATEGORY_LABELS.get(order.category, order.category.value)}\n"
        f"💰 Сумма: {format_rub(order.amount)}₽ ({tier})\n\n"
        f"🔗 Ссылка: {escape(url or '-')}"
    )


# ==================== Informational ====================


def reviews(settings: BotSettingsSnapshot) -> MessageResponse:
    return MessageResponse(
        "⭐ Отзывы наших клиентов\n\n"
        "Посмотрите отзывы на нашем сайте:\n"
        f"🌐 {escape(settings.reviews_url)}\n\n"
        "У нас более 300,000 довольных клиентов!",
        keyboard=[[BTN_MAIN_MENU]],
    )


def poizon_info(settings: BotSettingsSnapshot) -> MessageResponse:
    guide, video, howto = settings.poizon_info_urls
    return MessageResponse(
        "❓ Что такое POIZON?\n\n"
        "POIZON (得物) - крупнейшая китайская платформа для покупки оригинальных кроссовок и одежды.\n\n"
        "Полезные ссылки:\n"
        f"📖 {escape(guide)} - Подробная инструкция\n"
        f"🎥 {escape(video)} - Видео обзор\n"
        f"📱 {escape(howto)} - Как пользоваться",
        keyboard=[[BTN_MAIN_MENU]],
    )


def operator_called() -> MessageResponse:
    return MessageResponse(
        "👨‍💼 Подключение к оператору...\n\n"
        "Сейчас с вами свяжется наш менеджер.\n"
        "Ожидаемое время ответа: до 15 минут.",
        keyboard=[[BTN_MAIN_MENU]],
    )


def admin_operator_call(customer: str, telegram_id: str, moment: datetime) -> str:
    return (
        "🆘 ВЫЗОВ ОПЕРАТОРА\n\n"
        f"👤 Клиент: {customer} (ID: {telegram_id})\n"
        f"⏰ Время: {moment:%H:%M} UTC\n"
        "💬 Требуется консультация"
    )


def no_orders() -> MessageResponse:
    return MessageResponse(
        "📦 Мои заказы\n\nУ вас пока нет заказов.\nНачните с расчета стоимости товара!",
        keyboard=[[BTN_CALCULATE], [BTN_MAIN_MENU]],
    )


def order_list(orders: Sequence[BotOrder]) -> MessageResponse:
    parts = ["📦 Ваши заказы:\n"]
    for order in orders:
        parts.append(
            f"{STATUS_EMOJI.get(order.status, '⚪')} {escape(order.order_number or '-')} "
            f"от {order.created_at:%d.%m.%Y}\n"
            f"{escape(order.product_title)}, размер {escape(order.size)}\n"
            f"💰 {format_rub(order.amount)}₽ | 📊 {STATUS_TEXT.get(order.status, 'Неизвестно')}\n"
            f"🚚 Трек: {escape(order.track_number) if order.track_number else 'отсутствует'}\n"
        )
    return MessageResponse(
        "\n".join(parts),
        keyboard=[[InlineButton("🔄 Обновить статусы", "my_orders")], [BTN_MAIN_MENU]],
    )


def error_recovery() -> MessageResponse:
    return MessageResponse(
        "❌ Произошла ошибка\n\n"
        "Мы уже знаем о проблеме и работаем над ее устранением.\n"
        "Попробуйте позже или обратитесь к оператору.",
        keyboard=[[BTN_CALL_OPERATOR], [BTN_MAIN_MENU]],
    )


# ==================== Commands ====================


def help_text() -> MessageResponse:
    return MessageResponse(
        "📋 Справка по использованию SQUARE Bot\n\n"
        "🚀 Основные функции:\n"
        "• 🧮 Расчет стоимости товаров с POIZON\n"
        "• 📦 Оформление заказов\n"
        "• 📊 Отслеживание статуса заказов\n"
        "• 💬 Связь с операторами\n\n"
        "📝 Как заказать:\n"
        "1. Нажмите \"Рассчитать стоимость\"\n"
        "2. Отправьте ссылку на товар с POIZON\n"
        "3. Выберите категорию и размер\n"
        "4. Получите расчет стоимости\n"
        "5. Оформите заказ\n\n"
        "🔗 Как скопировать ссылку с POIZON:\n"
        "• Откройте товар в приложении POIZON\n"
        "• Нажмите \"Поделиться\"\n"
        "• Скопируйте и отправьте всю строку боту\n\n"
        "❓ Нужна помощь?\n"
        "Нажмите \"Позвать оператора\" в главном меню",
        keyboard=[[BTN_CALCULATE], [BTN_MAIN_MENU]],
    )


def unknown_command(command: str) -> MessageResponse:
    return MessageResponse(
        f"❓ Неизвестная команда: {escape(command)}\n\n"
        "Доступные команды:\n"
        "/start - Начать работу с ботом\n"
        "/help - Справка по использованию",
        keyboard=[[BTN_MAIN_MENU]],
    )


def command_unavailable() -> MessageResponse:
    return MessageResponse("❌ Команда недоступна.")


def set_rate_usage() -> MessageResponse:
    return MessageResponse("❌ Неверный формат. Используйте: /set_rate 13.50")


def set_rate_invalid() -> MessageResponse:
    return MessageResponse("❌ Неверное значение курса.")


def set_rate_done(rate: str) -> MessageResponse:
    return MessageResponse(f"✅ Курс обновлен: 1¥ = {escape(rate)}₽")


def admin_settings(settings: BotSettingsSnapshot, stats: dict[str, Any]) -> MessageResponse:
    return MessageResponse(
        "⚙️ Панель администратора\n\n"
        "Текущие настройки:\n"
        f"💱 Курс ¥: {settings.yuan_rate}₽\n"
        f"🚚 СДЭК: {settings.cdek_price}₽\n"
        f"🔢 Лимит API: {settings.api_limit_per_user}/день\n"
        f"📢 Канал: @{escape(settings.channel_username)}\n"
        f"👮 Администраторов: {len(settings.admin_chat_ids)}\n\n"
        f"📊 Активных пользователей: {stats.get('active_users', 0)}\n"
        f"📈 Всего пользователей: {stats.get('total_users', 0)}\n"
        f"🧮 API запросов сегодня: {stats.get('today_api_requests', 0)}\n\n"
        "Команды:\n"
        "/set_rate [число] - изменить курс\n"
        "/stats - подробная статистика"
    )


def stats_report(settings: BotSettingsSnapshot, stats: dict[str, Any]) -> MessageResponse:
    popular = stats.get("popular_categories") or []
    popular_lines = "\n".join(
        f"{i}. {item['category']}: {item['count']} расчетов" for i, item in enumerate(popular, 1)
    ) or "Нет данных"
    return MessageResponse(
        "📊 Подробная статистика SQUARE Bot\n\n"
        "👥 Пользователи:\n"
        f"• Всего: {stats.get('total_users', 0)}\n"
        f"• Активных (7 дней): {stats.get('active_users', 0)}\n"
        f"• Новых сегодня: {stats.get('new_users_today', 0)}\n\n"
        "🧮 Расчеты:\n"
        f"• Всего: {stats.get('total_calculations', 0)}\n"
        f"• Сегодня: {stats.get('today_calculations', 0)}\n"
        f"• API запросов сегодня: {stats.get('today_api_requests', 0)}\n\n"
        "📦 Заказы:\n"
        f"• Всего: {stats.get('total_orders', 0)}\n"
        f"• В обработке: {stats.get('pending_orders', 0)}\n"
        f"• Завершенных: {stats.get('completed_orders', 0)}\n\n"
        "💰 Настройки:\n"
        f"• Курс ¥: {settings.yuan_rate}₽\n"
        f"• Лимит API: {settings.api_limit_per_user}/день\n"
        f"• СДЭК: {settings.cdek_price}₽\n\n"
        "📈 Популярные категории:\n"
        f"{popular_lines}"
    )


# ==================== CRM notifications ====================


def order_confirmed_for_customer(order: BotOrder) -> MessageResponse:
    return MessageResponse(
        "✅ Ваш заказ подтвержден!\n\n"
        f"🆔 Номер заказа: {escape(order.order_number)}\n"
        f"📦 {escape(order.product_title)}, размер {escape(order.size)}\n"
        f"💰 Сумма: {format_rub(order.amount)}₽\n\n"
        "Мы сообщим вам об изменении статуса.",
        keyboard=[[InlineButton("📦 Мои заказы", "my_orders")], [BTN_MAIN_MENU]],
    )


def order_status_for_customer(order: BotOrder) -> MessageResponse:
    text = (
        f"{STATUS_EMOJI.get(order.status, '⚪')} Статус заказа {escape(order.order_number)} изменен\n\n"
        f"📊 Новый статус: {STATUS_TEXT.get(order.status, 'Неизвестно')}"
    )
    keyboard: list[list[InlineButton]] = [[InlineButton("📦 Мои заказы", "my_orders")]]
    if order.status == OrderStatus.SHIPPED and order.track_number:
        text += f"\n🚚 Трек-номер: {escape(order.track_number)}"
        keyboard.insert(
            0,
            [InlineButton("🔎 Отследить посылку", f"https://www.cdek.ru/ru/tracking?order_id={order.track_number}")],
        )
    elif order.status == OrderStatus.PAID:
        text += "\n\nСпасибо за оплату! Мы выкупаем ваш товар."
    return MessageResponse(text, keyboard=keyboard)


def order_completed_for_customer(order: BotOrder, settings: BotSettingsSnapshot) -> MessageResponse:
    return MessageResponse(
        f"🎉 Заказ {escape(order.order_number)} доставлен!\n\n"
        "Спасибо, что выбрали SQUARE. Будем рады вашему отзыву!",
        keyboard=[[InlineButton("⭐ Оставить отзыв", settings.reviews_url)], [BTN_MAIN_MENU]],
    )
