"""
Bot User Model - Telegram customers
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean

from app.db.database import Base, utcnow


class BotUser(Base):
    """A Telegram user who has talked to the bot at least once"""

    __tablename__ = "bot_users"

    id = Column(Integer, primary_key=True, index=True)
    # numeric Telegram id, stored as text so it survives 64-bit ids on any backend
    telegram_id = Column(String(50), unique=True, nullable=False, index=True)
    username = Column(String(255), nullable=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    is_subscribed = Column(Boolean, default=False, nullable=False)

    total_calculations = Column(Integer, default=0, nullable=False)
    total_orders = Column(Integer, default=0, nullable=False)

    registration_date = Column(DateTime, default=utcnow, nullable=False, index=True)
    last_activity = Column(DateTime, default=utcnow, nullable=False, index=True)

    @property
    def display_name(self) -> str:
        if self.username:
            return f"@{self.username}"
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or self.telegram_id
