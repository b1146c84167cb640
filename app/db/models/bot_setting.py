"""
Bot Setting Model - runtime key/value configuration
"""
from sqlalchemy import Column, String, DateTime, Text

from app.db.database import Base, utcnow


class BotSetting(Base):
    """Admin-editable setting (rates, limits, links, admin chat ids)"""

    __tablename__ = "bot_settings"

    setting_key = Column(String(100), primary_key=True)
    setting_value = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    updated_by = Column(String(50), nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
