"""
Rate limit gate.

Short-term throttle per user, separate from the calendar quota windows. The
flag and its reset instant live on the user's quota row so they are read and
written under the same per-user discipline as the counters.
"""
import logging
from datetime import datetime
from typing import Optional

from app.core.config import AI_RATE_LIMIT_COOLDOWN_SECONDS
from app.core.exceptions import RateLimited
from app.db.models.ai_quota import UserAIQuota

logger = logging.getLogger(__name__)


def enforce_rate_limit(quota: UserAIQuota, now: datetime) -> None:
    """
    Apply the gate to a loaded quota row.

    Lifts an expired throttle in place; raises while one is active.

    Raises:
        RateLimited: The throttle window has not passed yet
    """
    if not quota.is_rate_limited:
        return
    if quota.rate_limit_reset_at is not None and now >= quota.rate_limit_reset_at:
        quota.is_rate_limited = False
        quota.rate_limit_reset_at = None
        logger.info(f"Rate limit expired for user {quota.user_id}")
        return
    raise RateLimited(
        f"AI requests are temporarily rate limited until {quota.rate_limit_reset_at}",
        reset_at=quota.rate_limit_reset_at,
    )


class RateLimitGate:
    """Check, trip and clear the throttle for a user."""

    def __init__(self, ledger, cooldown_seconds: int = AI_RATE_LIMIT_COOLDOWN_SECONDS):
        self.ledger = ledger
        self.cooldown_seconds = cooldown_seconds

    async def check(self, user_id: str) -> None:
        """Raise RateLimited if the user is currently throttled."""
        await self.ledger.check_rate_limit(user_id)

    async def trip(self, user_id: str, duration_seconds: Optional[int] = None) -> datetime:
        """Throttle the user; returns when the throttle lifts."""
        duration = duration_seconds if duration_seconds is not None else self.cooldown_seconds
        reset_at = await self.ledger.apply_rate_limit(user_id, duration)
        logger.warning(f"Rate limit tripped for user {user_id} until {reset_at}")
        return reset_at

    async def clear(self, user_id: str) -> None:
        await self.ledger.clear_rate_limit(user_id)
