"""
Prompt builders for each AI operation kind.

Every prompt asks for exactly one JSON object in a documented shape; the
shape matches the payload models in app.schemas.ai.
"""
from datetime import datetime
from typing import Callable, Dict, List

from app.schemas.ai import (
    ConversationMessage,
    SentimentRequest,
    CategorizationRequest,
    SuggestionRequest,
    SummarizationRequest,
    SchedulingRequest,
    InsightsRequest,
    SemanticSearchRequest,
)

JSON_ONLY = "Respond with a single JSON object only. No prose, no markdown, no code fences."

SUMMARY_LENGTH_GUIDE = {
    "brief": "2-3 sentences",
    "standard": "one paragraph of 4-6 sentences",
    "detailed": "several paragraphs covering every thread of the discussion",
}


def _format_messages(messages: List[ConversationMessage]) -> str:
    lines = []
    for message in messages:
        stamp = f"[{message.sent_at.isoformat()}] " if message.sent_at else ""
        lines.append(f"{stamp}{message.sender}: {message.content}")
    return "\n".join(lines)


# ✅ SENTIMENT
def build_sentiment_prompt(request: SentimentRequest, now: datetime) -> str:
    context = f"\nConversation context:\n{request.conversation_context}\n" if request.conversation_context else ""
    return f"""
Analyze the sentiment of the message below.
{context}
Message:
{request.content}

{JSON_ONLY}
Schema:
{{"sentiment": {{"positive": 0-1, "neutral": 0-1, "negative": 0-1, "overall": "positive"|"neutral"|"negative", "confidence": 0-1}}, "key_insights": [string]}}
positive + neutral + negative must sum to 1.
"""


# ✅ CATEGORIZATION
def build_categorization_prompt(request: CategorizationRequest, now: datetime) -> str:
    existing = ""
    if request.existing_categories:
        existing = f"\nPrefer one of these categories when it fits: {', '.join(request.existing_categories)}\n"
    context = f"\nConversation context:\n{request.conversation_context}\n" if request.conversation_context else ""
    return f"""
Categorize the message below and list its main themes.
{existing}{context}
Message:
{request.content}

{JSON_ONLY}
Schema:
{{"category": {{"primary": string, "secondary": [string], "confidence": 0-1}}, "themes": [{{"name": string, "relevance": 0-1}}]}}
"""


# ✅ REPLY SUGGESTIONS
def build_suggestion_prompt(request: SuggestionRequest, now: datetime) -> str:
    history = ""
    if request.conversation_history:
        turns = "\n".join(f"{turn.role}: {turn.content}" for turn in request.conversation_history)
        history = f"\nConversation so far:\n{turns}\n"
    tone = f"\nPreferred tone: {request.tone}\n" if request.tone else ""
    return f"""
Suggest up to 5 replies to the message below.
{history}{tone}
Message:
{request.content}

{JSON_ONLY}
Schema:
{{"suggestions": [{{"text": string (max 1000 chars), "confidence": 0-1, "tone": "professional"|"casual"|"empathetic"|"humorous", "length_category": "short"|"medium"|"long", "rationale": string}}], "context_summary": string}}
Return between 1 and 5 suggestions.
"""


# ✅ SUMMARIZATION
def build_summarization_prompt(request: SummarizationRequest, now: datetime) -> str:
    context = f"\nAdditional context:\n{request.context}\n" if request.context else ""
    return f"""
Summarize this conversation in {SUMMARY_LENGTH_GUIDE[request.length]}.
{context}
Conversation {request.conversation_id}:
{_format_messages(request.messages)}

{JSON_ONLY}
Schema:
{{"summary": string (max 5000 chars), "key_points": [string], "main_topics": [string], "participants": [string], "confidence": 0-1, "metrics": {{"message_count": int, "word_count": int, "participant_count": int, "topic_count": int}}}}
key_points, main_topics and participants each need at least one entry.
"""


# ✅ SEND-TIME RECOMMENDATION
def build_scheduling_prompt(request: SchedulingRequest, now: datetime) -> str:
    constraints = []
    if request.not_before:
        constraints.append(f"not before {request.not_before.isoformat()}")
    if request.not_after:
        constraints.append(f"not after {request.not_after.isoformat()}")
    if request.preferred_days:
        constraints.append(f"preferred days of week (0=Sunday): {request.preferred_days}")
    constraint_text = f"\nConstraints: {'; '.join(constraints)}\n" if constraints else ""
    preview = f"\nMessage to send:\n{request.message_preview}\n" if request.message_preview else ""
    return f"""
Recommend the best time to send a message in conversation {request.conversation_id}.
Current time (UTC): {now.isoformat()}Z
Recipient timezone: {request.timezone}
Participants: {', '.join(request.participant_ids) or 'unknown'}
Urgency: {request.urgency}
{constraint_text}{preview}
{JSON_ONLY}
Schema:
{{"recommended_time": ISO-8601 UTC timestamp strictly after the current time, "engagement_score": 0-1, "reason": string (max 500 chars), "alternative_windows": [{{"day_of_week": 0-6, "hour_start": 0-23, "hour_end": 0-23, "engagement_score": 0-1}}], "metrics": {{"avg_response_time_ms": number, "engagement_rate": 0-1, "peak_hours": [0-23], "quiet_hours": [0-23], "timezone": string}}, "urgency_level": "low"|"medium"|"high"|"urgent"}}
"""


# ✅ CONVERSATION INSIGHTS
def build_insights_prompt(request: InsightsRequest, now: datetime) -> str:
    predictions = "\nInclude trend predictions in engagement_trends.\n" if request.include_predictions else ""
    return f"""
Analyze conversation {request.conversation_id} between {request.period_start.isoformat()} and {request.period_end.isoformat()}.
{predictions}
Messages:
{_format_messages(request.messages) or '(no messages supplied)'}

{JSON_ONLY}
Schema:
{{"total_messages": int, "unique_participants": int, "average_response_time_ms": number, "participant_stats": [{{"user_id": string, "message_count": int, "average_message_length": number, "response_time_ms": number, "sentiment_trend": "improving"|"declining"|"stable", "engagement_level": 0-1}}], "engagement_trends": [{{"period": "1h"|"24h"|"7d"|"30d", "message_count": int, "active_participants": int, "trend": "increasing"|"decreasing"|"stable", "trend_percent": -100..100}}], "conversation_health": {{"score": 0-100, "status": "excellent"|"good"|"fair"|"poor", "reasons_for_score": [string], "recommendations": [string]}}, "top_topics": [{{"topic": string, "message_count": int, "percentage": 0-100, "sentiment": "positive"|"neutral"|"negative", "trend": "growing"|"declining"|"stable"}}], "average_sentiment": "positive"|"neutral"|"negative", "sentiment_score": 0-1}}
"""


# ✅ SEMANTIC SEARCH
def build_semantic_search_prompt(request: SemanticSearchRequest, now: datetime) -> str:
    # Embedded as-is; no completion prompt
    return request.query


PROMPT_BUILDERS: Dict[str, Callable[..., str]] = {
    "sentiment": build_sentiment_prompt,
    "categorization": build_categorization_prompt,
    "suggestion": build_suggestion_prompt,
    "summarization": build_summarization_prompt,
    "scheduling": build_scheduling_prompt,
    "insights": build_insights_prompt,
    "semantic_search": build_semantic_search_prompt,
}
