"""
CRM callbacks - the fulfilment side reports order progress, the bot tells the customer
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.api.dependencies.runtime import get_runtime
from app.core.exceptions import OrderNotFoundError
from app.core.logging import get_logger
from app.db.database import get_db
from app.db.models.bot_order import BotOrder, OrderStatus
from app.db.models.bot_user import BotUser
from app.domain.services.order_service import OrderService
from app.state_machine import replies
from app.state_machine.replies import MessageResponse

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


class OrderNotification(BaseModel):
    order_number: str = Field(min_length=1, max_length=32)


class StatusChangeNotification(OrderNotification):
    status: OrderStatus
    track_number: Optional[str] = Field(default=None, max_length=100)


async def _apply_status(
    db: AsyncSession,
    order_number: str,
    new_status: OrderStatus,
    track_number: Optional[str] = None,
) -> tuple[BotOrder, bool]:
    """Returns (order, changed); raises OrderNotFoundError for an unknown number"""
    service = OrderService(db)
    existing = await service.get_order(order_number)
    if existing is None:
        raise OrderNotFoundError(order_number)
    before = (existing.status, existing.track_number)

    order = await service.update_order_status(order_number, new_status, track_number)
    return order, (order.status, order.track_number) != before


async def _notify_customer(db: AsyncSession, runtime, order: BotOrder, response: MessageResponse) -> bool:
    customer = await db.get(BotUser, order.user_id)
    if customer is None:
        logger.warning("Order without customer", extra_data={"order_number": order.order_number})
        return False
    return await runtime.notifier.notify_user(customer.telegram_id, response.text, response.keyboard)


def _result(order: BotOrder, changed: bool, notified: bool) -> dict:
    return {
        "success": True,
        "order_number": order.order_number,
        "status": order.status.value,
        "track_number": order.track_number,
        "changed": changed,
        "notified": notified,
    }


@router.post(
    "/order-created",
    summary="Operator confirmed an order",
    description="Moves the order to confirmed and sends the customer a confirmation.",
)
async def order_created(
    payload: OrderNotification,
    runtime=Depends(get_runtime),
    db: AsyncSession = Depends(get_db),
):
    order, changed = await _apply_status(db, payload.order_number, OrderStatus.CONFIRMED)
    notified = False
    if changed:
        notified = await _notify_customer(db, runtime, order, replies.order_confirmed_for_customer(order))
    return _result(order, changed, notified)


@router.post(
    "/status-change",
    summary="Order status or tracking number changed",
    description="Repeating the current status and tracking number changes nothing and sends nothing.",
)
async def status_change(
    payload: StatusChangeNotification,
    runtime=Depends(get_runtime),
    db: AsyncSession = Depends(get_db),
):
    order, changed = await _apply_status(db, payload.order_number, payload.status, payload.track_number)
    notified = False
    if changed:
        if order.status == OrderStatus.DELIVERED:
            response = replies.order_completed_for_customer(order, runtime.settings_service.current)
        else:
            response = replies.order_status_for_customer(order)
        notified = await _notify_customer(db, runtime, order, response)
    return _result(order, changed, notified)


@router.post(
    "/order-completed",
    summary="Order delivered",
)
async def order_completed(
    payload: OrderNotification,
    runtime=Depends(get_runtime),
    db: AsyncSession = Depends(get_db),
):
    order, changed = await _apply_status(db, payload.order_number, OrderStatus.DELIVERED)
    notified = False
    if changed:
        notified = await _notify_customer(
            db, runtime, order, replies.order_completed_for_customer(order, runtime.settings_service.current)
        )
    return _result(order, changed, notified)
