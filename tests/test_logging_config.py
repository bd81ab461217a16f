"""
Unit tests for log redaction.
"""
from app.core import config
from app.core.logging_config import sanitize_log_data
from app.main import startup_settings


def test_sanitize_log_data_redacts_secrets():
    data = {
        "user_id": "user-1",
        "openai_api_key": "sk-live-123",
        "Authorization": "Bearer abc",
        "database_url": "postgresql://app:pw@db/ai",
        "refresh_token": "xyz",
    }

    sanitized = sanitize_log_data(data)

    assert sanitized["user_id"] == "user-1"
    assert sanitized["openai_api_key"] == "***REDACTED***"
    assert sanitized["Authorization"] == "***REDACTED***"
    assert sanitized["database_url"] == "***REDACTED***"
    assert sanitized["refresh_token"] == "***REDACTED***"
    # Input is left untouched
    assert data["openai_api_key"] == "sk-live-123"


def test_startup_settings_never_expose_secrets(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-live-123")
    monkeypatch.setattr(config, "SECRET_KEY", "jwt-secret")

    settings = startup_settings()

    assert "sk-live-123" not in str(settings)
    assert "jwt-secret" not in str(settings)
    assert settings["ai_model"] == config.AI_MODEL
