"""
User Service - bot users and their audit trail
"""
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.bot_user import BotUser
from app.db.models.bot_user_action import BotUserAction

logger = get_logger(__name__)


def record_user_action(
    db: AsyncSession,
    user_id: Optional[int],
    action_type: str,
    action_data: Optional[dict[str, Any]] = None,
) -> BotUserAction:
    """Stage an audit row in the caller's transaction (the caller commits)"""
    action = BotUserAction(
        user_id=user_id,
        action_type=action_type,
        action_data=action_data or {},
        created_at=utcnow(),
    )
    db.add(action)
    return action


class UserService:
    """Lookup, creation and profile drift for Telegram users"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_telegram_id(self, telegram_id: str | int) -> Optional[BotUser]:
        result = await self.db.execute(
            select(BotUser).where(BotUser.telegram_id == str(telegram_id))
        )
        return result.scalar_one_or_none()

    async def find_or_create(
        self,
        telegram_id: str | int,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> tuple[BotUser, bool]:
        """
        Returns (user, is_new). Profile fields are refreshed when Telegram
        reports different values; last_activity is touched on every call.
        """
        now = utcnow()
        user = await self.get_by_telegram_id(telegram_id)

        if user is None:
            user = BotUser(
                telegram_id=str(telegram_id),
                username=username,
                first_name=first_name,
                last_name=last_name,
                registration_date=now,
                last_activity=now,
            )
            self.db.add(user)
            await self.db.commit()
            await self.db.refresh(user)
            logger.info("New bot user registered", extra_data={"user_id": user.id})
            return user, True

        drifted = (
            user.username != username
            or user.first_name != first_name
            or user.last_name != last_name
        )
        if drifted:
            user.username = username
            user.first_name = first_name
            user.last_name = last_name
            logger.debug("Bot user profile refreshed", extra_data={"user_id": user.id})
        user.last_activity = now
        await self.db.commit()
        return user, False

    async def set_subscribed(self, user: BotUser, is_subscribed: bool) -> None:
        if user.is_subscribed != is_subscribed:
            user.is_subscribed = is_subscribed
            await self.db.commit()

    async def log_action(
        self,
        user_id: Optional[int],
        action_type: str,
        action_data: Optional[dict[str, Any]] = None,
    ) -> None:
        record_user_action(self.db, user_id, action_type, action_data)
        await self.db.commit()

    async def list_actions(self, user_id: int, action_type: Optional[str] = None) -> list[BotUserAction]:
        query = select(BotUserAction).where(BotUserAction.user_id == user_id)
        if action_type:
            query = query.where(BotUserAction.action_type == action_type)
        result = await self.db.execute(query.order_by(BotUserAction.id))
        return list(result.scalars().all())
