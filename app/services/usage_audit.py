"""
Usage audit log for AI operations.

Write side: exactly one append-only entry per gateway invocation, whatever
its outcome. Writing never raises into the caller. Read side: per-user and
per-operation listings, daily/monthly rollups, failure view and retention
cleanup.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.clock import utcnow
from app.db.models.ai_usage_log import AIUsageLog, UsageStatus

logger = logging.getLogger(__name__)


class UsageAuditLog:
    """
    Append-only AI usage records.

    Args:
        session_factory: Async session factory for the audit table
        clock: Source of the current naive UTC time
    """

    def __init__(self, session_factory: async_sessionmaker, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    async def record(
        self,
        user_id: str,
        operation: str,
        model: str,
        status: Union[UsageStatus, str],
        input_tokens: int = 0,
        output_tokens: int = 0,
        estimated_cost: float = 0.0,
        request_size: int = 0,
        response_size: int = 0,
        response_time_ms: int = 0,
        attempts: int = 0,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        message_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[AIUsageLog]:
        """
        Append one usage entry.

        Never raises: a failed write is logged and None is returned, so the
        caller's outcome is unaffected.
        """
        status_value = status.value if isinstance(status, UsageStatus) else str(status)
        try:
            async with self.session_factory() as session:
                entry = AIUsageLog(
                    user_id=user_id,
                    operation=operation,
                    model=model,
                    status=status_value,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    total_tokens=input_tokens + output_tokens,
                    estimated_cost=estimated_cost,
                    request_size=request_size,
                    response_size=response_size,
                    response_time_ms=response_time_ms,
                    attempts=attempts,
                    error_code=error_code,
                    error_message=error_message,
                    message_id=message_id,
                    conversation_id=conversation_id,
                    metadata_=metadata or {},
                    created_at=self.clock(),
                )
                session.add(entry)
                await session.commit()
        except Exception as e:
            logger.error(
                f"Failed to record AI usage: user_id={user_id}, operation={operation}, status={status_value}: {e}",
                exc_info=True,
            )
            return None

        logger.debug(
            f"AI usage recorded: user_id={user_id}, operation={operation}, status={status_value}, "
            f"tokens={input_tokens + output_tokens}, cost=${estimated_cost:.6f}"
        )
        return entry

    async def user_logs(self, user_id: str, limit: int = 50, offset: int = 0) -> List[AIUsageLog]:
        """Most recent entries for a user."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(AIUsageLog)
                .where(AIUsageLog.user_id == user_id)
                .order_by(AIUsageLog.created_at.desc(), AIUsageLog.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def operation_logs(self, operation: str, limit: int = 50, offset: int = 0) -> List[AIUsageLog]:
        """Most recent entries for one operation kind, across users."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(AIUsageLog)
                .where(AIUsageLog.operation == operation)
                .order_by(AIUsageLog.created_at.desc(), AIUsageLog.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def _rollup(self, user_id: str, since: datetime) -> Dict[str, Any]:
        success = UsageStatus.SUCCESS.value
        async with self.session_factory() as session:
            totals = (await session.execute(
                select(
                    func.count(AIUsageLog.id),
                    func.coalesce(func.sum(AIUsageLog.total_tokens), 0),
                    func.coalesce(func.sum(AIUsageLog.estimated_cost), 0.0),
                    func.coalesce(func.sum(case((AIUsageLog.status == success, 1), else_=0)), 0),
                    func.coalesce(func.sum(case((AIUsageLog.status != success, 1), else_=0)), 0),
                    func.coalesce(func.avg(AIUsageLog.response_time_ms), 0.0),
                ).where(
                    AIUsageLog.user_id == user_id,
                    AIUsageLog.created_at >= since,
                )
            )).one()

            breakdown_rows = (await session.execute(
                select(
                    AIUsageLog.operation,
                    func.count(AIUsageLog.id),
                    func.coalesce(func.sum(AIUsageLog.total_tokens), 0),
                    func.coalesce(func.sum(AIUsageLog.estimated_cost), 0.0),
                ).where(
                    AIUsageLog.user_id == user_id,
                    AIUsageLog.created_at >= since,
                ).group_by(AIUsageLog.operation)
            )).all()

        total_operations, total_tokens, total_cost, success_count, failure_count, avg_ms = totals
        return {
            "since": since,
            "total_operations": int(total_operations),
            "total_tokens": int(total_tokens),
            "total_cost": float(total_cost),
            "success_count": int(success_count),
            "failure_count": int(failure_count),
            "avg_response_time_ms": float(avg_ms),
            "operation_breakdown": {
                operation: {"count": int(count), "tokens": int(tokens), "cost": float(cost)}
                for operation, count, tokens, cost in breakdown_rows
            },
        }

    async def daily_rollup(self, user_id: str) -> Dict[str, Any]:
        """Totals since the start of the current UTC day."""
        now = self.clock()
        return await self._rollup(user_id, datetime(now.year, now.month, now.day))

    async def monthly_rollup(self, user_id: str) -> Dict[str, Any]:
        """Totals since the start of the current UTC month, with a per-operation breakdown."""
        now = self.clock()
        return await self._rollup(user_id, datetime(now.year, now.month, 1))

    async def failed_operations(self, user_id: Optional[str] = None, limit: int = 50) -> List[AIUsageLog]:
        """Most recent non-success entries, optionally for one user."""
        query = select(AIUsageLog).where(AIUsageLog.status != UsageStatus.SUCCESS.value)
        if user_id:
            query = query.where(AIUsageLog.user_id == user_id)
        async with self.session_factory() as session:
            result = await session.execute(
                query.order_by(AIUsageLog.created_at.desc(), AIUsageLog.id.desc()).limit(limit)
            )
            return list(result.scalars().all())

    async def cleanup_older_than(self, before: datetime) -> int:
        """Delete entries created before the given instant; returns how many."""
        async with self.session_factory() as session:
            result = await session.execute(delete(AIUsageLog).where(AIUsageLog.created_at < before))
            await session.commit()
        deleted = result.rowcount or 0
        logger.info(f"Cleaned up {deleted} AI usage log(s) older than {before}")
        return deleted
