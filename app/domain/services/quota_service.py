"""
Quota Service - per-user, per-operation, per-UTC-day budgets for product lookups
"""
import enum
from datetime import date

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import QuotaExceededError
from app.core.logging import get_logger
from app.db.database import utcnow
from app.db.models.api_usage import ApiUsage

logger = get_logger(__name__)


class QuotaOperation(str, enum.Enum):
    EXTRACT_SPU = "extract-spu"
    GET_PRODUCT_DATA = "get-product-data"


def quota_day() -> date:
    """Counters roll over at UTC midnight"""
    return utcnow().date()


class QuotaService:
    """Atomic increment-or-insert against api_usage"""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert
        if dialect == "sqlite":
            return sqlite_insert
        raise NotImplementedError(f"Quota upsert not supported on dialect '{dialect}'")

    async def try_consume(self, user_id: int, operation: QuotaOperation, limit: int) -> bool:
        """
        Take one unit from today's budget.

        A single INSERT .. ON CONFLICT DO UPDATE .. WHERE request_count < limit
        statement, so concurrent callers can never push the counter past the
        limit. Returns False when the budget is used up or the limit is not
        positive; the counter is left untouched in that case.
        """
        if limit <= 0:
            return False

        now = utcnow()
        insert = self._insert()
        stmt = insert(ApiUsage).values(
            user_id=user_id,
            api_endpoint=operation.value,
            request_date=now.date(),
            request_count=1,
            last_request_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ApiUsage.user_id, ApiUsage.api_endpoint, ApiUsage.request_date],
            set_={
                "request_count": ApiUsage.request_count + 1,
                "last_request_at": now,
            },
            where=ApiUsage.request_count < limit,
        ).returning(ApiUsage.request_count)

        result = await self.db.execute(stmt)
        count = result.scalar_one_or_none()
        await self.db.commit()

        if count is None:
            logger.info(
                "Quota exhausted",
                extra_data={"user_id": user_id, "operation": operation.value, "limit": limit},
            )
            return False
        return True

    async def consume(self, user_id: int, operation: QuotaOperation, limit: int) -> None:
        """Like try_consume, raising QuotaExceededError on rejection"""
        if not await self.try_consume(user_id, operation, limit):
            raise QuotaExceededError(user_id, operation.value, limit)

    async def used_today(self, user_id: int, operation: QuotaOperation) -> int:
        result = await self.db.execute(
            select(ApiUsage.request_count).where(
                ApiUsage.user_id == user_id,
                ApiUsage.api_endpoint == operation.value,
                ApiUsage.request_date == quota_day(),
            )
        )
        return result.scalar_one_or_none() or 0

    async def has_remaining(self, user_id: int, operation: QuotaOperation, limit: int) -> bool:
        """Non-consuming check, used before prompting for a link"""
        if limit <= 0:
            return False
        return await self.used_today(user_id, operation) < limit
