"""
Bot User Action Model - append-only audit trail
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.types import JSON

from app.db.database import Base, utcnow


class BotUserAction(Base):
    """One audited action (command executed, order created, status changed...)"""

    __tablename__ = "bot_user_actions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("bot_users.id"), nullable=True, index=True)
    action_type = Column(String(50), nullable=False, index=True)
    action_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
