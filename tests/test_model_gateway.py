"""
Unit tests for the model invocation gateway.
Tests retry/backoff, failure classification, token accounting and
response validation for every operation kind.
"""
import asyncio
import json
import math
from datetime import datetime

import pytest

from app.core.exceptions import ParseError, RemoteUnavailable
from app.llm.gateway import KIND_MAX_TOKENS, ModelInvocationGateway, count_tokens, strip_code_fence
from app.llm.provider import LLMResponse, ProviderError
from app.schemas.ai import (
    SchedulingPayload,
    SemanticSearchRequest,
    SentimentPayload,
    SentimentRequest,
    SummarizationRequest,
)
from gateway_fakes import HANG, SENTIMENT_RESPONSE, TEST_MODEL, FakeProvider


def sentiment_request():
    return SentimentRequest(content="Thanks, that fixed it!", message_id="msg_1")


# ============================================
# Retry and failure classification
# ============================================

@pytest.mark.asyncio
async def test_permanent_failure_exhausts_retries(model_gateway, provider, sleep):
    provider.script = [ProviderError("upstream 503", retryable=True, status_code=503)] * 10

    with pytest.raises(RemoteUnavailable) as exc_info:
        await model_gateway.invoke(sentiment_request())

    assert exc_info.value.attempts == 4
    assert exc_info.value.retryable is True
    assert exc_info.value.rate_limited is False
    assert len(provider.calls) == 4
    assert sleep.delays == [1.0, 2.0, 4.0]
    assert all(a <= b for a, b in zip(sleep.delays, sleep.delays[1:]))


@pytest.mark.asyncio
async def test_non_retryable_error_short_circuits(model_gateway, provider, sleep):
    provider.script = [ProviderError("invalid api key", retryable=False, status_code=401)]

    with pytest.raises(RemoteUnavailable) as exc_info:
        await model_gateway.invoke(sentiment_request())

    assert exc_info.value.attempts == 1
    assert exc_info.value.retryable is False
    assert len(provider.calls) == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_final_rate_limit_is_reported(model_gateway, provider):
    provider.script = [ProviderError("slow down", retryable=True, status_code=429)] * 4

    with pytest.raises(RemoteUnavailable) as exc_info:
        await model_gateway.invoke(sentiment_request())

    assert exc_info.value.rate_limited is True
    assert exc_info.value.attempts == 4


@pytest.mark.asyncio
async def test_timeouts_then_success(model_gateway, provider, sleep):
    provider.script = [asyncio.TimeoutError(), asyncio.TimeoutError(), SENTIMENT_RESPONSE]

    raw = await model_gateway.invoke(sentiment_request())

    assert raw.attempts == 3
    assert raw.text == SENTIMENT_RESPONSE
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_connection_errors_are_retried(model_gateway, provider):
    provider.script = [ConnectionError("reset by peer"), SENTIMENT_RESPONSE]

    raw = await model_gateway.invoke(sentiment_request())

    assert raw.attempts == 2


@pytest.mark.asyncio
async def test_each_attempt_has_its_own_timeout(vector_search, sleep, clock):
    provider = FakeProvider(script=[HANG, HANG])
    gateway = ModelInvocationGateway(
        provider, vector_search, model=TEST_MODEL, max_retries=1, base_delay=0.5,
        timeout=0.05, sleep=sleep, clock=clock,
    )

    with pytest.raises(RemoteUnavailable) as exc_info:
        await gateway.invoke(sentiment_request())

    assert exc_info.value.attempts == 2
    assert sleep.delays == [0.5]


@pytest.mark.asyncio
async def test_unexpected_errors_propagate_without_retry(model_gateway, provider, sleep):
    provider.script = [KeyError("bug")]

    with pytest.raises(KeyError):
        await model_gateway.invoke(sentiment_request())

    assert len(provider.calls) == 1
    assert sleep.delays == []


# ============================================
# Token accounting
# ============================================

@pytest.mark.asyncio
async def test_reported_token_counts_are_used(model_gateway):
    raw = await model_gateway.invoke(sentiment_request())

    assert raw.tokens_in == 100
    assert raw.tokens_out == 50
    assert raw.total_tokens == 150
    assert raw.tokens_reported is True
    assert raw.cost == pytest.approx(100 / 1_000_000 * 0.15 + 50 / 1_000_000 * 0.60)


@pytest.mark.asyncio
async def test_missing_token_counts_fall_back_to_length_heuristic(model_gateway, provider):
    provider.script = [LLMResponse(content=SENTIMENT_RESPONSE, model=TEST_MODEL)]
    request = sentiment_request()
    prompt = model_gateway.build_prompt(request)

    raw = await model_gateway.invoke(request)

    assert raw.tokens_in == math.ceil(len(prompt) / 4)
    assert raw.tokens_out == math.ceil(len(SENTIMENT_RESPONSE) / 4)
    assert raw.tokens_reported is False


@pytest.mark.asyncio
async def test_estimate_uses_last_observed_output(model_gateway):
    request = sentiment_request()
    prompt_tokens = count_tokens(model_gateway.build_prompt(request))

    assert model_gateway.estimate_tokens(request) == prompt_tokens + KIND_MAX_TOKENS["sentiment"]

    await model_gateway.invoke(request)

    assert model_gateway.estimate_tokens(request) == prompt_tokens + 50


def test_count_tokens():
    assert count_tokens("") == 0
    assert count_tokens("abcd") == 1
    assert count_tokens("abcde") == 2


@pytest.mark.asyncio
async def test_completion_budget_per_kind(model_gateway, provider):
    await model_gateway.invoke(sentiment_request())

    assert provider.calls[0]["max_tokens"] == KIND_MAX_TOKENS["sentiment"]
    assert provider.calls[0]["model"] == TEST_MODEL


# ============================================
# Semantic search
# ============================================

@pytest.mark.asyncio
async def test_semantic_search_queries_vector_store(model_gateway, provider, vector_search):
    request = SemanticSearchRequest(query="meeting on thursday", conversation_ids=["conv_1"], limit=5)

    raw = await model_gateway.invoke(request, user_id="user-1")
    payload = model_gateway.parse_and_validate(raw.text, "semantic_search")

    assert provider.embed_calls == ["meeting on thursday"]
    assert vector_search.queries[0]["user_id"] == "user-1"
    assert vector_search.queries[0]["conversation_ids"] == ["conv_1"]
    assert vector_search.queries[0]["limit"] == 5
    assert payload.matches[0].message_id == "msg_1"
    assert payload.matches[0].similarity == pytest.approx(0.91)
    assert raw.tokens_in == 8
    assert raw.tokens_out == 0


@pytest.mark.asyncio
async def test_semantic_search_requires_user(model_gateway):
    with pytest.raises(ValueError):
        await model_gateway.invoke(SemanticSearchRequest(query="anything"))


@pytest.mark.asyncio
async def test_semantic_search_rejects_out_of_range_similarity(model_gateway, vector_search):
    vector_search.hits = [{"message_id": "m", "conversation_id": "c", "content": "", "similarity": 1.2, "metadata": {}}]

    raw = await model_gateway.invoke(SemanticSearchRequest(query="q"), user_id="user-1")

    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(raw.text, "semantic_search")


# ============================================
# Health
# ============================================

@pytest.mark.asyncio
async def test_is_healthy(model_gateway, provider):
    assert await model_gateway.is_healthy() is True
    assert provider.calls[0]["max_tokens"] == 1


@pytest.mark.asyncio
async def test_is_unhealthy_never_raises(model_gateway, provider):
    provider.script = [ProviderError("invalid api key", retryable=False, status_code=401)]

    assert await model_gateway.is_healthy() is False


# ============================================
# Parsing and validation
# ============================================

def sentiment_json(positive=0.7, neutral=0.2, negative=0.1, confidence=0.9):
    return json.dumps({
        "sentiment": {
            "positive": positive,
            "neutral": neutral,
            "negative": negative,
            "overall": "positive",
            "confidence": confidence,
        },
        "key_insights": [],
    })


def test_strip_code_fence():
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'


def test_parse_valid_sentiment(model_gateway):
    payload = model_gateway.parse_and_validate(SENTIMENT_RESPONSE, "sentiment")

    assert isinstance(payload, SentimentPayload)
    assert payload.sentiment.overall == "positive"


def test_parse_tolerates_markdown_fence(model_gateway):
    payload = model_gateway.parse_and_validate(f"```json\n{SENTIMENT_RESPONSE}\n```", "sentiment")

    assert payload.sentiment.confidence == pytest.approx(0.9)


def test_sentiment_sum_within_tolerance_is_accepted(model_gateway):
    payload = model_gateway.parse_and_validate(sentiment_json(0.705, 0.2, 0.1), "sentiment")

    assert payload.sentiment.positive == pytest.approx(0.705)


@pytest.mark.parametrize("components", [
    (0.5, 0.3, 0.1),   # sums to 0.9
    (0.6, 0.3, 0.2),   # sums to 1.1
])
def test_sentiment_sum_violation_is_parse_error(model_gateway, components):
    with pytest.raises(ParseError) as exc_info:
        model_gateway.parse_and_validate(sentiment_json(*components), "sentiment")

    assert exc_info.value.kind == "sentiment"
    assert exc_info.value.errors


def test_sentiment_component_out_of_range_is_not_clamped(model_gateway):
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(sentiment_json(1.2, -0.1, -0.1), "sentiment")


def test_sentiment_confidence_out_of_range(model_gateway):
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(sentiment_json(confidence=1.5), "sentiment")


@pytest.mark.parametrize("text", [
    "The sentiment is positive.",
    "",
    '{"sentiment": ',
    "[1, 2, 3]",
])
def test_non_json_or_wrong_shape_is_parse_error(model_gateway, text):
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(text, "sentiment")


def test_string_typed_scores_are_rejected(model_gateway):
    text = json.dumps({
        "sentiment": {
            "positive": "0.7",
            "neutral": "0.2",
            "negative": "0.1",
            "overall": "positive",
            "confidence": "0.9",
        },
    })

    with pytest.raises(ParseError) as exc_info:
        model_gateway.parse_and_validate(text, "sentiment")
    assert exc_info.value.errors


def test_string_typed_counts_are_rejected(model_gateway):
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(
            scheduling_json("2026-03-15T09:00:00Z").replace('"day_of_week": 1', '"day_of_week": "1"'),
            "scheduling",
        )


def test_categorization_invariants(model_gateway):
    valid = {"category": {"primary": "support", "secondary": ["billing"], "confidence": 0.8},
             "themes": [{"name": "refund", "relevance": 0.6}]}
    payload = model_gateway.parse_and_validate(json.dumps(valid), "categorization")
    assert payload.category.primary == "support"

    bad_confidence = {**valid, "category": {**valid["category"], "confidence": 1.01}}
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(json.dumps(bad_confidence), "categorization")

    empty_primary = {**valid, "category": {**valid["category"], "primary": ""}}
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(json.dumps(empty_primary), "categorization")


def suggestion(text="Sure, Thursday works.", confidence=0.8):
    return {"text": text, "confidence": confidence, "tone": "professional", "length_category": "short"}


def test_suggestion_count_bounds(model_gateway):
    payload = model_gateway.parse_and_validate(json.dumps({"suggestions": [suggestion()] * 5}), "suggestion")
    assert len(payload.suggestions) == 5

    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(json.dumps({"suggestions": [suggestion()] * 6}), "suggestion")
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(json.dumps({"suggestions": []}), "suggestion")


def test_suggestion_text_and_confidence(model_gateway):
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(json.dumps({"suggestions": [suggestion(text="   ")]}), "suggestion")
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(json.dumps({"suggestions": [suggestion(confidence=-0.2)]}), "suggestion")


def test_summarization_invariants(model_gateway):
    valid = {"summary": "Team agreed to ship Friday.", "key_points": ["ship Friday"],
             "main_topics": ["release"], "participants": ["ana", "bo"], "confidence": 0.85}
    payload = model_gateway.parse_and_validate(json.dumps(valid), "summarization")
    assert payload.participants == ["ana", "bo"]

    for field in ("key_points", "main_topics", "participants"):
        with pytest.raises(ParseError):
            model_gateway.parse_and_validate(json.dumps({**valid, field: []}), "summarization")

    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(json.dumps({**valid, "summary": "x" * 5001}), "summarization")


def scheduling_json(recommended_time, reason="Recipient is most active mid-morning."):
    return json.dumps({
        "recommended_time": recommended_time,
        "engagement_score": 0.75,
        "reason": reason,
        "alternative_windows": [{"day_of_week": 1, "hour_start": 9, "hour_end": 11, "engagement_score": 0.6}],
    })


def test_scheduling_time_must_be_in_future(model_gateway, clock):
    # clock is frozen at 2026-03-14 12:00 UTC
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(scheduling_json("2026-03-14T11:00:00Z"), "scheduling")
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(scheduling_json("2026-03-14T12:00:00Z"), "scheduling")

    payload = model_gateway.parse_and_validate(scheduling_json("2026-03-15T09:00:00+02:00"), "scheduling")
    assert isinstance(payload, SchedulingPayload)
    assert payload.recommended_time == datetime(2026, 3, 15, 7, 0)


def test_scheduling_uses_supplied_now(model_gateway):
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(
            scheduling_json("2026-03-15T09:00:00Z"), "scheduling", now=datetime(2026, 3, 16)
        )


def test_scheduling_reason_and_windows(model_gateway):
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(scheduling_json("2026-03-15T09:00:00Z", reason=""), "scheduling")
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(scheduling_json("2026-03-15T09:00:00Z", reason="r" * 501), "scheduling")

    bad_window = json.loads(scheduling_json("2026-03-15T09:00:00Z"))
    bad_window["alternative_windows"][0]["day_of_week"] = 7
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(json.dumps(bad_window), "scheduling")


def insights_json(**overrides):
    data = {
        "total_messages": 120,
        "unique_participants": 3,
        "average_response_time_ms": 45000,
        "conversation_health": {"score": 82, "status": "good", "reasons_for_score": [], "recommendations": []},
        "engagement_trends": [{"period": "7d", "message_count": 40, "active_participants": 3,
                               "trend": "increasing", "trend_percent": 12.5}],
        "average_sentiment": "positive",
        "sentiment_score": 0.7,
    }
    data.update(overrides)
    return json.dumps(data)


def test_insights_invariants(model_gateway):
    payload = model_gateway.parse_and_validate(insights_json(), "insights")
    assert payload.conversation_health.score == 82

    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(
            insights_json(conversation_health={"score": 101, "status": "excellent"}), "insights"
        )
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(insights_json(sentiment_score=1.3), "insights")
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(insights_json(total_messages=-1), "insights")
    with pytest.raises(ParseError):
        model_gateway.parse_and_validate(
            insights_json(engagement_trends=[{"period": "7d", "message_count": 1, "active_participants": 1,
                                              "trend": "increasing", "trend_percent": 150}]),
            "insights",
        )


def test_summarization_prompt_lists_messages(model_gateway):
    request = SummarizationRequest(
        conversation_id="conv_1",
        messages=[{"sender": "ana", "content": "Ship it Friday?"}, {"sender": "bo", "content": "Yes"}],
        length="brief",
    )

    prompt = model_gateway.build_prompt(request)

    assert "ana: Ship it Friday?" in prompt
    assert "bo: Yes" in prompt
    assert "2-3 sentences" in prompt
