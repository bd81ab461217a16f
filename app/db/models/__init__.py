"""
Database models module.

This module imports all database models to ensure they are registered with SQLAlchemy's Base.metadata
before table creation.
"""
from app.db.models.ai_quota import UserAIQuota
from app.db.models.ai_usage_log import AIUsageLog, UsageStatus

__all__ = [
    "UserAIQuota",
    "AIUsageLog",
    "UsageStatus",
]
