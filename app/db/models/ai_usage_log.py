"""
AI usage audit log model.
"""
import enum
from sqlalchemy import Column, Integer, String, Text, DateTime, Float, JSON, Index
from app.core.clock import utcnow
from app.db.base import Base


class UsageStatus(str, enum.Enum):
    """Terminal outcome of one gateway invocation."""
    SUCCESS = "success"
    FAILURE = "failure"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"


class AIUsageLog(Base):
    """
    Append-only record of every attempted AI operation.

    Written exactly once per invocation, whatever its outcome. Rows are never
    updated; only the retention cleanup deletes them.
    """
    __tablename__ = "ai_usage_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    operation = Column(String(32), nullable=False)  # e.g., "sentiment", "summarization"
    model = Column(String(64), nullable=False)  # e.g., "gpt-4o-mini"
    status = Column(String(20), nullable=False)  # UsageStatus value

    # Resource usage
    input_tokens = Column(Integer, default=0, nullable=False)
    output_tokens = Column(Integer, default=0, nullable=False)
    total_tokens = Column(Integer, default=0, nullable=False)
    estimated_cost = Column(Float, default=0.0, nullable=False)  # USD

    # Request/response
    request_size = Column(Integer, default=0, nullable=False)  # bytes
    response_size = Column(Integer, default=0, nullable=False)  # bytes
    response_time_ms = Column(Integer, default=0, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)  # remote attempts, 0 when denied

    error_code = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)

    # Correlation
    message_id = Column(String(64), nullable=True)
    conversation_id = Column(String(64), nullable=True)

    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSON, default=dict, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    __table_args__ = (
        Index('idx_ai_usage_user_created', 'user_id', 'created_at'),
        Index('idx_ai_usage_operation_created', 'operation', 'created_at'),
        Index('idx_ai_usage_status_created', 'status', 'created_at'),
    )
