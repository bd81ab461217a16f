"""
Pydantic schemas for AI gateway requests and validated model payloads.

Requests are a discriminated union on ``kind``. Each kind has a payload model
that the model's JSON answer must satisfy; invariants are enforced by
validators and violations are never clamped.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any, Literal, Union, Type, Annotated

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

from app.core.clock import to_naive_utc

SENTIMENT_SUM_TOLERANCE = 1e-2

Tone = Literal["professional", "casual", "empathetic", "humorous"]
Polarity = Literal["positive", "neutral", "negative"]
Urgency = Literal["low", "medium", "high", "urgent"]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class HistoryTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ConversationMessage(BaseModel):
    """A message handed to the model as conversation context."""
    message_id: Optional[str] = None
    sender: str = Field(..., min_length=1)
    content: str
    sent_at: Optional[datetime] = None


class SentimentRequest(BaseModel):
    """Request model for sentiment analysis of one message."""
    kind: Literal["sentiment"] = "sentiment"
    content: str = Field(..., min_length=1, description="Message text to analyze")
    message_id: Optional[str] = Field(None, description="Message being analyzed")
    conversation_id: Optional[str] = None
    conversation_context: Optional[str] = Field(None, description="Surrounding conversation text")

    class Config:
        json_schema_extra = {
            "example": {
                "kind": "sentiment",
                "message_id": "msg_123",
                "content": "Thanks so much, that fixed it!"
            }
        }


class CategorizationRequest(BaseModel):
    """Request model for message categorization."""
    kind: Literal["categorization"] = "categorization"
    content: str = Field(..., min_length=1)
    message_id: Optional[str] = None
    conversation_id: Optional[str] = None
    conversation_context: Optional[str] = None
    existing_categories: List[str] = Field(default_factory=list, description="Categories to prefer when they fit")


class SuggestionRequest(BaseModel):
    """Request model for reply suggestions."""
    kind: Literal["suggestion"] = "suggestion"
    content: str = Field(..., min_length=1, description="Message to reply to")
    message_id: Optional[str] = None
    conversation_id: Optional[str] = None
    conversation_history: List[HistoryTurn] = Field(default_factory=list)
    tone: Optional[Tone] = None

    class Config:
        json_schema_extra = {
            "example": {
                "kind": "suggestion",
                "conversation_id": "conv_9",
                "content": "Can we move the call to Thursday?",
                "tone": "professional"
            }
        }


class SummarizationRequest(BaseModel):
    """Request model for conversation summarization."""
    kind: Literal["summarization"] = "summarization"
    conversation_id: str = Field(..., min_length=1)
    messages: List[ConversationMessage] = Field(..., min_length=1)
    length: Literal["brief", "standard", "detailed"] = "standard"
    context: Optional[str] = None
    message_id: Optional[str] = None


class SchedulingRequest(BaseModel):
    """Request model for send-time recommendation."""
    kind: Literal["scheduling"] = "scheduling"
    conversation_id: str = Field(..., min_length=1)
    participant_ids: List[str] = Field(default_factory=list)
    message_preview: Optional[str] = None
    urgency: Urgency = "medium"
    timezone: str = "UTC"
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None
    preferred_days: List[int] = Field(default_factory=list, description="0-6, Sunday first")
    message_id: Optional[str] = None

    @field_validator("preferred_days")
    @classmethod
    def check_days(cls, value: List[int]) -> List[int]:
        for day in value:
            if day < 0 or day > 6:
                raise ValueError("preferred_days entries must be between 0 and 6")
        return value


class InsightsRequest(BaseModel):
    """Request model for conversation insights over a period."""
    kind: Literal["insights"] = "insights"
    conversation_id: str = Field(..., min_length=1)
    period_start: datetime
    period_end: datetime
    messages: List[ConversationMessage] = Field(default_factory=list)
    include_predictions: bool = False
    message_id: Optional[str] = None

    @model_validator(mode="after")
    def check_period(self):
        if self.period_end <= self.period_start:
            raise ValueError("period_end must be after period_start")
        return self


class SemanticSearchRequest(BaseModel):
    """Request model for semantic search over a user's messages."""
    kind: Literal["semantic_search"] = "semantic_search"
    query: str = Field(..., min_length=1)
    conversation_ids: List[str] = Field(default_factory=list)
    limit: int = Field(default=10, ge=1, le=50)
    message_id: Optional[str] = None
    conversation_id: Optional[str] = None


InvocationRequest = Annotated[
    Union[
        SentimentRequest,
        CategorizationRequest,
        SuggestionRequest,
        SummarizationRequest,
        SchedulingRequest,
        InsightsRequest,
        SemanticSearchRequest,
    ],
    Field(discriminator="kind"),
]


class InvokeRequest(BaseModel):
    """Body of POST /ai/invoke."""
    request: InvocationRequest
    token_estimate: Optional[int] = Field(None, ge=0, description="Caller's token estimate for the pre-check")


# ---------------------------------------------------------------------------
# Validated payloads
# ---------------------------------------------------------------------------

Score = Annotated[float, Field(ge=0, le=1)]


class SentimentScore(BaseModel):
    positive: Score
    neutral: Score
    negative: Score
    overall: Polarity
    confidence: Score

    @model_validator(mode="after")
    def check_distribution(self):
        total = self.positive + self.neutral + self.negative
        if abs(total - 1.0) > SENTIMENT_SUM_TOLERANCE:
            raise ValueError(f"sentiment components must sum to 1 (got {total:.4f})")
        return self


class SentimentPayload(BaseModel):
    sentiment: SentimentScore
    key_insights: List[str] = Field(default_factory=list)


class MessageCategory(BaseModel):
    primary: str = Field(..., min_length=1)
    secondary: List[str] = Field(default_factory=list)
    confidence: Score


class MessageTheme(BaseModel):
    name: str = Field(..., min_length=1)
    relevance: Score


class CategorizationPayload(BaseModel):
    category: MessageCategory
    themes: List[MessageTheme] = Field(default_factory=list)


class SuggestedReply(BaseModel):
    text: str = Field(..., min_length=1, max_length=1000)
    confidence: Score
    tone: Tone
    length_category: Literal["short", "medium", "long"]
    rationale: Optional[str] = None

    @field_validator("text")
    @classmethod
    def check_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("suggestion text must not be blank")
        return value


class SuggestionPayload(BaseModel):
    suggestions: List[SuggestedReply] = Field(..., min_length=1, max_length=5)
    context_summary: str = ""


class SummaryMetrics(BaseModel):
    message_count: int = Field(..., ge=0)
    word_count: int = Field(..., ge=0)
    participant_count: int = Field(..., ge=0)
    topic_count: int = Field(..., ge=0)


class SummarizationPayload(BaseModel):
    summary: str = Field(..., min_length=1, max_length=5000)
    key_points: List[str] = Field(..., min_length=1)
    main_topics: List[str] = Field(..., min_length=1)
    participants: List[str] = Field(..., min_length=1)
    confidence: Score
    metrics: Optional[SummaryMetrics] = None

    @field_validator("summary")
    @classmethod
    def check_summary(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("summary must not be blank")
        return value


class EngagementWindow(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6)
    hour_start: int = Field(..., ge=0, le=23)
    hour_end: int = Field(..., ge=0, le=23)
    engagement_score: Score

    @model_validator(mode="after")
    def check_hours(self):
        if self.hour_end < self.hour_start:
            raise ValueError("hour_end must not be before hour_start")
        return self


class ScheduleMetrics(BaseModel):
    avg_response_time_ms: float = Field(..., ge=0)
    engagement_rate: Score
    peak_hours: List[Annotated[int, Field(ge=0, le=23)]] = Field(default_factory=list)
    quiet_hours: List[Annotated[int, Field(ge=0, le=23)]] = Field(default_factory=list)
    timezone: str = "UTC"


class SchedulingPayload(BaseModel):
    recommended_time: datetime
    engagement_score: Score
    reason: str = Field(..., min_length=1, max_length=500)
    alternative_windows: List[EngagementWindow] = Field(default_factory=list)
    metrics: Optional[ScheduleMetrics] = None
    urgency_level: Urgency = "medium"

    @field_validator("recommended_time")
    @classmethod
    def check_future(cls, value: datetime, info: ValidationInfo) -> datetime:
        value = to_naive_utc(value)
        now = (info.context or {}).get("now")
        if now is not None and value <= to_naive_utc(now):
            raise ValueError("recommended_time must be in the future")
        return value


class ParticipantStats(BaseModel):
    user_id: str
    message_count: int = Field(..., ge=0)
    average_message_length: float = Field(..., ge=0)
    response_time_ms: float = Field(..., ge=0)
    sentiment_trend: Literal["improving", "declining", "stable"]
    engagement_level: Score


class EngagementTrend(BaseModel):
    period: Literal["1h", "24h", "7d", "30d"]
    message_count: int = Field(..., ge=0)
    active_participants: int = Field(..., ge=0)
    trend: Literal["increasing", "decreasing", "stable"]
    trend_percent: float = Field(..., ge=-100, le=100)


class ConversationHealth(BaseModel):
    score: float = Field(..., ge=0, le=100)
    status: Literal["excellent", "good", "fair", "poor"]
    reasons_for_score: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class TopicDistribution(BaseModel):
    topic: str
    message_count: int = Field(..., ge=0)
    percentage: float = Field(..., ge=0, le=100)
    sentiment: Polarity
    trend: Literal["growing", "declining", "stable"]


class InsightsPayload(BaseModel):
    total_messages: int = Field(..., ge=0)
    unique_participants: int = Field(..., ge=0)
    average_response_time_ms: float = Field(..., ge=0)
    participant_stats: List[ParticipantStats] = Field(default_factory=list)
    engagement_trends: List[EngagementTrend] = Field(default_factory=list)
    conversation_health: ConversationHealth
    top_topics: List[TopicDistribution] = Field(default_factory=list)
    average_sentiment: Polarity
    sentiment_score: Score


class SearchMatch(BaseModel):
    message_id: str
    conversation_id: Optional[str] = None
    content: str = ""
    similarity: Score
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SemanticSearchPayload(BaseModel):
    matches: List[SearchMatch] = Field(default_factory=list)


# Payload model each operation kind is validated against
RESPONSE_MODELS: Dict[str, Type[BaseModel]] = {
    "sentiment": SentimentPayload,
    "categorization": CategorizationPayload,
    "suggestion": SuggestionPayload,
    "summarization": SummarizationPayload,
    "scheduling": SchedulingPayload,
    "insights": InsightsPayload,
    "semantic_search": SemanticSearchPayload,
}


class InvokeResponse(BaseModel):
    """Response of POST /ai/invoke."""
    kind: str
    result: Dict[str, Any]
