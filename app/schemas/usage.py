"""
Pydantic schemas for AI usage endpoints.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field


class AIUsageMetrics(BaseModel):
    """Response schema for GET /me/ai-usage."""
    requests_today: int = Field(..., description="Requests committed in the current UTC day")
    tokens_today: int = Field(..., description="Tokens used in the current UTC day")
    cost_today: float = Field(..., description="Cost in USD in the current UTC day")
    requests_this_month: int = Field(..., description="Requests committed in the current UTC month")
    tokens_this_month: int = Field(..., description="Tokens used in the current UTC month")
    cost_this_month: float = Field(..., description="Cost in USD in the current UTC month")
    daily_limit_remaining: int = Field(..., description="Requests left before the daily limit")
    monthly_limit_remaining: int = Field(..., description="Requests left before the monthly limit")

    class Config:
        json_schema_extra = {
            "example": {
                "requests_today": 12,
                "tokens_today": 8450,
                "cost_today": 0.0041,
                "requests_this_month": 230,
                "tokens_this_month": 151200,
                "cost_this_month": 0.087,
                "daily_limit_remaining": 988,
                "monthly_limit_remaining": 19770
            }
        }


class AIUsageLogEntry(BaseModel):
    """One audit log entry."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    operation: str
    model: str
    status: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    estimated_cost: float
    response_time_ms: int
    attempts: int
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    message_id: Optional[str] = None
    conversation_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    created_at: datetime


class AIUsageLogsResponse(BaseModel):
    """Response schema for GET /me/ai-usage/logs."""
    logs: List[AIUsageLogEntry]
    limit: int
    offset: int


class GatewayErrorResponse(BaseModel):
    """Error body returned when an AI request is refused or fails."""
    error: str = Field(..., description="Error code (quota_exceeded, disabled, rate_limited, service_unavailable, invalid_response)")
    message: str = Field(..., description="Human-readable error message")
    limit: Optional[str] = Field(None, description="Limit that would be crossed, for quota errors")
    reset_at: Optional[datetime] = Field(None, description="When the throttle lifts, for rate limit errors")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "quota_exceeded",
                "message": "Daily request limit reached (1000)",
                "limit": "daily_request_limit"
            }
        }
