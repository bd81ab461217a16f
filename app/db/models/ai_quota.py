from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean
from app.core.clock import utcnow
from app.db.base import Base


class UserAIQuota(Base):
    """
    Per-user AI quota and usage counters.

    One row per user, created lazily on the first AI request. Daily and monthly
    counters roll over on calendar boundaries (UTC). Reserved counters hold the
    estimates of requests that passed the pre-check but have not committed yet.
    """
    __tablename__ = "ai_user_quotas"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), unique=True, nullable=False, index=True)

    # Daily usage
    requests_today = Column(Integer, default=0, nullable=False)
    tokens_used_today = Column(Integer, default=0, nullable=False)
    cost_today = Column(Float, default=0.0, nullable=False)  # USD
    day_reset_at = Column(DateTime, nullable=False)  # next UTC midnight

    # Monthly usage
    requests_this_month = Column(Integer, default=0, nullable=False)
    tokens_used_this_month = Column(Integer, default=0, nullable=False)
    cost_this_month = Column(Float, default=0.0, nullable=False)  # USD
    month_reset_at = Column(DateTime, nullable=False)  # first instant of next UTC month

    # In-flight reservations
    reserved_requests = Column(Integer, default=0, nullable=False)
    reserved_tokens = Column(Integer, default=0, nullable=False)
    reserved_cost = Column(Float, default=0.0, nullable=False)
    last_reserved_at = Column(DateTime, nullable=True)
    reservations_expired_at = Column(DateTime, nullable=True)  # reservations made before this were dropped

    # Limits
    daily_request_limit = Column(Integer, nullable=False)
    daily_token_limit = Column(Integer, nullable=False)
    daily_cost_limit = Column(Float, nullable=False)
    monthly_request_limit = Column(Integer, nullable=False)
    monthly_token_limit = Column(Integer, nullable=False)
    monthly_cost_limit = Column(Float, nullable=False)

    # Short-term throttle
    is_rate_limited = Column(Boolean, default=False, nullable=False)
    rate_limit_reset_at = Column(DateTime, nullable=True)

    # Administrative kill-switch
    is_active = Column(Boolean, default=True, nullable=False)
    disabled_reason = Column(String(255), nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    # Optimistic concurrency: UPDATEs are conditional on the version read
    __mapper_args__ = {"version_id_col": version}
