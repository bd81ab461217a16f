"""
AI usage endpoints.

Provides quota usage and the audit trail for authenticated users.
"""
import logging
from fastapi import APIRouter, Depends, Query, status

from app.core.auth_dependency import get_current_user, get_ai_gateway
from app.schemas.usage import AIUsageMetrics, AIUsageLogEntry, AIUsageLogsResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/me", tags=["Usage"])


@router.get("/ai-usage", response_model=AIUsageMetrics, status_code=status.HTTP_200_OK)
async def get_ai_usage(
    user_id: str = Depends(get_current_user),
    gateway=Depends(get_ai_gateway),
):
    """
    Get current AI usage for the authenticated user.

    Returns requests, tokens and cost for the current UTC day and month, and
    the requests left before each limit. Requires authentication via Bearer token.
    """
    metrics = await gateway.get_usage_metrics(user_id)
    logger.debug(f"AI usage requested: user_id={user_id}")
    return metrics


@router.get("/ai-usage/logs", response_model=AIUsageLogsResponse, status_code=status.HTTP_200_OK)
async def get_ai_usage_logs(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user),
    gateway=Depends(get_ai_gateway),
):
    """Get the authenticated user's AI audit log, newest first."""
    logs = await gateway.get_usage_logs(user_id, limit=limit, offset=offset)
    return AIUsageLogsResponse(
        logs=[AIUsageLogEntry.model_validate(log) for log in logs],
        limit=limit,
        offset=offset,
    )
