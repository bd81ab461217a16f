"""
Quota ledger for AI usage limits.

Per-user daily and monthly counters (requests, tokens, cost) that roll over
lazily on UTC calendar boundaries. A pre-check reserves the request's
estimate in the same atomic update that checks it, so concurrent requests
for one user can never overshoot a limit together. Commit settles the
reservation against the actual usage.

Each read-check-write runs under a per-user asyncio lock (serializes requests
within this process) and is guarded by the row's version column (detects
writers in other processes, retried a bounded number of times).
"""
import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.core.clock import utcnow
from app.core.config import AI_MODEL, AI_RESERVATION_TTL_SECONDS
from app.core.exceptions import AIDisabled, Denied, QuotaExceeded
from app.core.quota_limits import get_default_limits, validate_limit_updates
from app.db.models.ai_quota import UserAIQuota
from app.llm.pricing import estimate_reservation_cost
from app.services.rate_limit_gate import enforce_rate_limit

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RATE_LIMIT_SECONDS = 3600
MAX_STALE_RETRIES = 3


def next_day_boundary(now: datetime) -> datetime:
    """First UTC midnight strictly after now."""
    return datetime(now.year, now.month, now.day) + timedelta(days=1)


def next_month_boundary(now: datetime) -> datetime:
    """First instant of the UTC month after now."""
    if now.month == 12:
        return datetime(now.year + 1, 1, 1)
    return datetime(now.year, now.month + 1, 1)


@dataclass
class Reservation:
    """An allowed request's estimate, held against the quota until commit or release."""
    user_id: str
    tokens: int
    cost: float
    created_at: datetime
    settled: bool = False


class UserLockRegistry:
    """
    One asyncio.Lock per user; never a global lock.

    Locks are held weakly: a user's lock lives while some task holds or waits
    on it, and is dropped once the user goes idle.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock


def roll_windows(quota: UserAIQuota, now: datetime) -> None:
    """Zero the daily/monthly counters once their boundary has been reached."""
    if now >= quota.day_reset_at:
        quota.requests_today = 0
        quota.tokens_used_today = 0
        quota.cost_today = 0.0
        quota.day_reset_at = next_day_boundary(now)
        logger.debug(f"Daily AI quota reset for user {quota.user_id}")
    if now >= quota.month_reset_at:
        quota.requests_this_month = 0
        quota.tokens_used_this_month = 0
        quota.cost_this_month = 0.0
        quota.month_reset_at = next_month_boundary(now)
        logger.debug(f"Monthly AI quota reset for user {quota.user_id}")


def expire_reservations(quota: UserAIQuota, now: datetime, ttl_seconds: int) -> None:
    """
    Drop reservations nobody settled within ttl_seconds of the last reservation.

    A reservation made before reservations_expired_at is no longer held and
    is ignored when it is finally committed or released.
    """
    if not quota.reserved_requests or quota.last_reserved_at is None:
        return
    if now - quota.last_reserved_at < timedelta(seconds=ttl_seconds):
        return
    logger.warning(
        f"Expiring {quota.reserved_requests} unsettled AI reservation(s) for user {quota.user_id} "
        f"(tokens={quota.reserved_tokens}, last reserved at {quota.last_reserved_at})"
    )
    quota.reserved_requests = 0
    quota.reserved_tokens = 0
    quota.reserved_cost = 0.0
    quota.reservations_expired_at = now


class QuotaLedger:
    """
    Durable per-user AI quota accounting.

    Args:
        session_factory: Async session factory for the quota table
        clock: Source of the current naive UTC time
        locks: Per-user lock registry; shared with anything else mutating quota rows
        model: Model whose prices bound the cost of a token estimate
        max_stale_retries: Attempts per update when another writer bumps the row version
        reservation_ttl_seconds: Age after which unsettled reservations stop counting
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Callable[[], datetime] = utcnow,
        locks: Optional[UserLockRegistry] = None,
        model: str = AI_MODEL,
        max_stale_retries: int = MAX_STALE_RETRIES,
        reservation_ttl_seconds: int = AI_RESERVATION_TTL_SECONDS,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.locks = locks or UserLockRegistry()
        self.model = model
        self.max_stale_retries = max_stale_retries
        self.reservation_ttl_seconds = reservation_ttl_seconds

    async def _load(self, session: AsyncSession, user_id: str, now: datetime) -> UserAIQuota:
        result = await session.execute(select(UserAIQuota).where(UserAIQuota.user_id == user_id))
        quota = result.scalar_one_or_none()
        if quota is not None:
            return quota

        quota = UserAIQuota(
            user_id=user_id,
            requests_today=0,
            tokens_used_today=0,
            cost_today=0.0,
            day_reset_at=next_day_boundary(now),
            requests_this_month=0,
            tokens_used_this_month=0,
            cost_this_month=0.0,
            month_reset_at=next_month_boundary(now),
            reserved_requests=0,
            reserved_tokens=0,
            reserved_cost=0.0,
            last_reserved_at=None,
            reservations_expired_at=None,
            is_rate_limited=False,
            is_active=True,
            created_at=now,
            updated_at=now,
            **get_default_limits(),
        )
        session.add(quota)
        await session.flush()
        logger.info(f"Created AI quota for user {user_id}")
        return quota

    async def _update(self, user_id: str, mutate: Callable[[UserAIQuota, datetime], T]) -> T:
        """
        Run one atomic read-check-write on a user's quota row.

        Window rollover and reservation expiry are applied before mutate runs. When mutate raises
        Denied, the rollover (and any lifted throttle) is still persisted.
        """
        async with self.locks.get(user_id):
            for attempt in range(1, self.max_stale_retries + 1):
                async with self.session_factory() as session:
                    try:
                        now = self.clock()
                        try:
                            quota = await self._load(session, user_id, now)
                        except IntegrityError:
                            # Another process created the row first
                            await session.rollback()
                            quota = await self._load(session, user_id, now)
                        roll_windows(quota, now)
                        expire_reservations(quota, now, self.reservation_ttl_seconds)
                        try:
                            result = mutate(quota, now)
                        except Denied:
                            quota.updated_at = now
                            await session.commit()
                            raise
                        quota.updated_at = now
                        await session.commit()
                        return result
                    except StaleDataError:
                        await session.rollback()
                        if attempt == self.max_stale_retries:
                            logger.error(f"AI quota update for user {user_id} kept conflicting; giving up")
                            raise
                        logger.warning(f"AI quota row for user {user_id} changed concurrently, retrying ({attempt})")

    async def get_or_create(self, user_id: str) -> UserAIQuota:
        """Get the user's quota row, creating it with system defaults if needed."""
        return await self._update(user_id, lambda quota, now: quota)

    async def check_and_reserve(
        self,
        user_id: str,
        estimated_tokens: int,
        model: Optional[str] = None,
    ) -> Reservation:
        """
        Decide whether a request may proceed and reserve its estimate.

        Checks run in order: active flag, rate limit, daily requests, daily
        tokens, daily cost, monthly requests, monthly tokens, monthly cost.
        Each compares used + reserved + this request against the limit.

        Args:
            user_id: Requesting user
            estimated_tokens: Expected total tokens of the request
            model: Model the request will use; prices the cost estimate

        Returns:
            Reservation to pass to commit() or release()

        Raises:
            AIDisabled: AI is switched off for the user
            RateLimited: A throttle is active
            QuotaExceeded: A limit would be crossed
        """
        estimated_tokens = max(0, int(estimated_tokens))
        estimated_cost = estimate_reservation_cost(model or self.model, estimated_tokens)

        def reserve(quota: UserAIQuota, now: datetime) -> Reservation:
            if not quota.is_active:
                logger.warning(f"AI request denied for user {user_id}: disabled ({quota.disabled_reason})")
                raise AIDisabled(
                    f"AI features are disabled for this account: {quota.disabled_reason or 'no reason given'}",
                    reason=quota.disabled_reason,
                )
            enforce_rate_limit(quota, now)

            checks = [
                ("daily_request_limit", quota.requests_today + quota.reserved_requests + 1,
                 quota.daily_request_limit, "Daily request limit"),
                ("daily_token_limit", quota.tokens_used_today + quota.reserved_tokens + estimated_tokens,
                 quota.daily_token_limit, "Daily token limit"),
                ("daily_cost_limit", quota.cost_today + quota.reserved_cost + estimated_cost,
                 quota.daily_cost_limit, "Daily cost limit"),
                ("monthly_request_limit", quota.requests_this_month + quota.reserved_requests + 1,
                 quota.monthly_request_limit, "Monthly request limit"),
                ("monthly_token_limit", quota.tokens_used_this_month + quota.reserved_tokens + estimated_tokens,
                 quota.monthly_token_limit, "Monthly token limit"),
                ("monthly_cost_limit", quota.cost_this_month + quota.reserved_cost + estimated_cost,
                 quota.monthly_cost_limit, "Monthly cost limit"),
            ]
            for limit_name, projected, limit, label in checks:
                if projected > limit:
                    logger.warning(
                        f"AI quota exceeded: user_id={user_id}, limit={limit_name}, "
                        f"projected={projected}, allowed={limit}"
                    )
                    raise QuotaExceeded(f"{label} reached ({limit})", limit_name=limit_name)

            quota.reserved_requests += 1
            quota.reserved_tokens += estimated_tokens
            quota.reserved_cost += estimated_cost
            quota.last_reserved_at = now
            return Reservation(user_id=user_id, tokens=estimated_tokens, cost=estimated_cost, created_at=now)

        return await self._update(user_id, reserve)

    def _release_into(self, quota: UserAIQuota, reservation: Reservation) -> None:
        if quota.reservations_expired_at is not None and reservation.created_at < quota.reservations_expired_at:
            return
        quota.reserved_requests = max(0, quota.reserved_requests - 1)
        quota.reserved_tokens = max(0, quota.reserved_tokens - reservation.tokens)
        quota.reserved_cost = max(0.0, quota.reserved_cost - reservation.cost)

    async def commit(
        self,
        user_id: str,
        actual_tokens: int,
        actual_cost: float,
        reservation: Optional[Reservation] = None,
    ) -> None:
        """
        Record actual usage, settling the reservation if one is given.

        A committed request counts once against the request limits. Usage is
        recorded even when it overshoots the estimate; it is never rolled back.
        """
        if reservation is not None and reservation.settled:
            logger.warning(f"Reservation for user {user_id} already settled; ignoring commit")
            return
        if reservation is None and not actual_tokens and not actual_cost:
            return

        def apply(quota: UserAIQuota, now: datetime) -> None:
            if reservation is not None:
                self._release_into(quota, reservation)
            quota.requests_today += 1
            quota.tokens_used_today += actual_tokens
            quota.cost_today += actual_cost
            quota.requests_this_month += 1
            quota.tokens_used_this_month += actual_tokens
            quota.cost_this_month += actual_cost

        await self._update(user_id, apply)
        if reservation is not None:
            reservation.settled = True
        logger.debug(f"AI usage committed: user_id={user_id}, tokens={actual_tokens}, cost=${actual_cost:.6f}")

    async def release(self, reservation: Reservation) -> None:
        """Drop a reservation without recording any usage."""
        if reservation.settled:
            return

        def apply(quota: UserAIQuota, now: datetime) -> None:
            self._release_into(quota, reservation)

        await self._update(reservation.user_id, apply)
        reservation.settled = True

    async def check_rate_limit(self, user_id: str) -> None:
        """Raise RateLimited if the user's throttle is active; lifts an expired one."""
        await self._update(user_id, enforce_rate_limit)

    async def apply_rate_limit(self, user_id: str, duration_seconds: int = DEFAULT_RATE_LIMIT_SECONDS) -> datetime:
        """Throttle a user for duration_seconds; returns the reset instant."""
        def apply(quota: UserAIQuota, now: datetime) -> datetime:
            quota.is_rate_limited = True
            quota.rate_limit_reset_at = now + timedelta(seconds=duration_seconds)
            return quota.rate_limit_reset_at

        return await self._update(user_id, apply)

    async def clear_rate_limit(self, user_id: str) -> None:
        def apply(quota: UserAIQuota, now: datetime) -> None:
            quota.is_rate_limited = False
            quota.rate_limit_reset_at = None

        await self._update(user_id, apply)
        logger.info(f"Rate limit cleared for user {user_id}")

    async def disable(self, user_id: str, reason: str) -> None:
        """Switch AI features off for a user."""
        def apply(quota: UserAIQuota, now: datetime) -> None:
            quota.is_active = False
            quota.disabled_reason = reason

        await self._update(user_id, apply)
        logger.warning(f"AI disabled for user {user_id}: {reason}")

    async def enable(self, user_id: str) -> None:
        def apply(quota: UserAIQuota, now: datetime) -> None:
            quota.is_active = True
            quota.disabled_reason = None

        await self._update(user_id, apply)
        logger.info(f"AI enabled for user {user_id}")

    async def update_limits(self, user_id: str, **limits) -> UserAIQuota:
        """
        Override some of a user's limits.

        Raises:
            ValueError: Unknown limit name or negative value
        """
        updates = validate_limit_updates(limits)

        def apply(quota: UserAIQuota, now: datetime) -> UserAIQuota:
            for field, value in updates.items():
                setattr(quota, field, value)
            return quota

        quota = await self._update(user_id, apply)
        logger.info(f"AI limits updated for user {user_id}: {updates}")
        return quota

    async def usage_stats(self, user_id: str) -> Dict[str, Any]:
        """Current-window usage, limits and remaining allowance for a user."""
        def snapshot(quota: UserAIQuota, now: datetime) -> Dict[str, Any]:
            return {
                "user_id": quota.user_id,
                "daily": {
                    "requests": quota.requests_today,
                    "tokens": quota.tokens_used_today,
                    "cost": quota.cost_today,
                    "request_limit": quota.daily_request_limit,
                    "token_limit": quota.daily_token_limit,
                    "cost_limit": quota.daily_cost_limit,
                    "requests_remaining": max(0, quota.daily_request_limit - quota.requests_today),
                    "resets_at": quota.day_reset_at,
                },
                "monthly": {
                    "requests": quota.requests_this_month,
                    "tokens": quota.tokens_used_this_month,
                    "cost": quota.cost_this_month,
                    "request_limit": quota.monthly_request_limit,
                    "token_limit": quota.monthly_token_limit,
                    "cost_limit": quota.monthly_cost_limit,
                    "requests_remaining": max(0, quota.monthly_request_limit - quota.requests_this_month),
                    "resets_at": quota.month_reset_at,
                },
                "reserved": {
                    "requests": quota.reserved_requests,
                    "tokens": quota.reserved_tokens,
                    "cost": quota.reserved_cost,
                },
                "is_rate_limited": quota.is_rate_limited,
                "rate_limit_reset_at": quota.rate_limit_reset_at,
                "is_active": quota.is_active,
                "disabled_reason": quota.disabled_reason,
            }

        return await self._update(user_id, snapshot)
