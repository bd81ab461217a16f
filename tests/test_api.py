"""
Integration tests for the HTTP endpoints.
Tests POST /ai/invoke error mapping, GET /me/ai-usage, GET /me/ai-usage/logs and /health.
"""
import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

from app.core import config
from app.llm.provider import ProviderError
from app.main import app

TEST_SECRET = "test-secret-key"


@pytest_asyncio.fixture
async def client(ai_gateway, session_factory, monkeypatch):
    """HTTP client against the app, wired to the test gateway and database."""
    monkeypatch.setattr(config, "SECRET_KEY", TEST_SECRET)
    monkeypatch.setattr(config, "ALGORITHM", "HS256")
    app.state.ai_gateway = ai_gateway
    app.state.session_factory = session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers():
    token = jwt.encode({"sub": "user-1"}, TEST_SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def _sentiment_body(**extra):
    return {"request": {"kind": "sentiment", "content": "Thanks, that fixed it!", **extra}}


@pytest.mark.asyncio
async def test_invoke_success(client, auth_headers):
    response = await client.post("/ai/invoke", json=_sentiment_body(message_id="msg_1"), headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["kind"] == "sentiment"
    assert data["result"]["sentiment"]["overall"] == "positive"


@pytest.mark.asyncio
async def test_invoke_requires_auth(client):
    response = await client.post("/ai/invoke", json=_sentiment_body())

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_invoke_rejects_bad_token(client):
    response = await client.post(
        "/ai/invoke",
        json=_sentiment_body(),
        headers={"Authorization": "Bearer not-a-jwt"},
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_invoke_unknown_kind_is_422(client, auth_headers):
    response = await client.post(
        "/ai/invoke",
        json={"request": {"kind": "translation", "content": "hola"}},
        headers=auth_headers,
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_invoke_quota_exceeded_is_429(client, auth_headers, ai_gateway):
    await ai_gateway.update_limits("user-1", daily_request_limit=0)

    response = await client.post("/ai/invoke", json=_sentiment_body(), headers=auth_headers)

    assert response.status_code == 429
    detail = response.json()["detail"]
    assert detail["error"] == "quota_exceeded"
    assert detail["limit"] == "daily_request_limit"


@pytest.mark.asyncio
async def test_invoke_rate_limited_sets_retry_after(client, auth_headers, ai_gateway):
    await ai_gateway.apply_rate_limit("user-1", 120)

    response = await client.post("/ai/invoke", json=_sentiment_body(), headers=auth_headers)

    assert response.status_code == 429
    assert response.json()["detail"]["error"] == "rate_limited"
    assert response.headers["Retry-After"] == "Sat, 14 Mar 2026 12:02:00 GMT"


@pytest.mark.asyncio
async def test_invoke_disabled_is_403(client, auth_headers, ai_gateway):
    await ai_gateway.disable_user("user-1", "abuse report")

    response = await client.post("/ai/invoke", json=_sentiment_body(), headers=auth_headers)

    assert response.status_code == 403
    assert response.json()["detail"]["error"] == "disabled"


@pytest.mark.asyncio
async def test_invoke_invalid_model_answer_is_502(client, auth_headers, provider):
    provider.script = ["not json at all"]

    response = await client.post("/ai/invoke", json=_sentiment_body(), headers=auth_headers)

    assert response.status_code == 502
    assert response.json()["detail"]["error"] == "invalid_response"


@pytest.mark.asyncio
async def test_invoke_remote_down_is_503(client, auth_headers, provider):
    provider.script = [ProviderError("Bad request", retryable=False, status_code=400)]

    response = await client.post("/ai/invoke", json=_sentiment_body(), headers=auth_headers)

    assert response.status_code == 503
    assert response.json()["detail"]["error"] == "service_unavailable"


@pytest.mark.asyncio
async def test_invoke_suggestion_with_caller_estimate(client, auth_headers, provider):
    provider.script = [json.dumps({
        "suggestions": [
            {"text": "Sure, Thursday at 3pm works.", "confidence": 0.9, "tone": "casual", "length_category": "short"},
        ],
    })]
    body = {
        "request": {"kind": "suggestion", "content": "Thursday?", "tone": "casual"},
        "token_estimate": 50,
    }

    response = await client.post("/ai/invoke", json=body, headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["result"]["suggestions"][0]["tone"] == "casual"


@pytest.mark.asyncio
async def test_get_ai_usage(client, auth_headers):
    await client.post("/ai/invoke", json=_sentiment_body(), headers=auth_headers)

    response = await client.get("/me/ai-usage", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["requests_today"] == 1
    assert data["tokens_today"] == 150
    assert data["requests_this_month"] == 1
    assert "daily_limit_remaining" in data
    assert "monthly_limit_remaining" in data


@pytest.mark.asyncio
async def test_get_ai_usage_requires_auth(client):
    response = await client.get("/me/ai-usage")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_get_ai_usage_logs(client, auth_headers, provider):
    provider.script = ["not json at all"]
    await client.post("/ai/invoke", json=_sentiment_body(message_id="msg_1"), headers=auth_headers)
    await client.post("/ai/invoke", json=_sentiment_body(message_id="msg_2"), headers=auth_headers)

    response = await client.get("/me/ai-usage/logs?limit=1", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["limit"] == 1
    assert data["offset"] == 0
    assert len(data["logs"]) == 1
    assert data["logs"][0]["message_id"] == "msg_2"
    assert data["logs"][0]["status"] == "success"

    response = await client.get("/me/ai-usage/logs?offset=1", headers=auth_headers)
    older = response.json()["logs"]
    assert older[0]["error_code"] == "invalid_response"
    assert older[0]["metadata"]["validation_errors"]


@pytest.mark.asyncio
async def test_get_ai_usage_logs_rejects_bad_limit(client, auth_headers):
    response = await client.get("/me/ai-usage/logs?limit=0", headers=auth_headers)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database"] == "connected"
    assert data["ai_service"] == "reachable"


@pytest.mark.asyncio
async def test_health_degraded_when_ai_unreachable(client, provider):
    provider.script = [ProviderError("down", retryable=True, status_code=503)]

    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"
    assert response.json()["ai_service"] == "unreachable"
