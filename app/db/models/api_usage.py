"""
API Usage Model - per-user daily counters for product lookups
"""
from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, UniqueConstraint

from app.db.database import Base, utcnow


class ApiUsage(Base):
    """One row per (user, operation, UTC day)"""

    __tablename__ = "api_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "api_endpoint", "request_date", name="uq_api_usage_user_endpoint_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("bot_users.id"), nullable=False, index=True)
    api_endpoint = Column(String(50), nullable=False)
    request_date = Column(Date, nullable=False)
    request_count = Column(Integer, default=0, nullable=False)
    last_request_at = Column(DateTime, default=utcnow, nullable=False)
