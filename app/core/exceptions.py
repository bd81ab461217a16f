"""
Gateway error taxonomy.

Callers of the AI gateway only ever see one of these outcomes besides a
validated payload. Each error carries the audit status it is recorded with.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional


class GatewayError(Exception):
    """Base class for every failure surfaced by the AI gateway."""
    code = "gateway_error"
    audit_status = "failure"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class Denied(GatewayError):
    """Rejected before any remote call was made; never costs anything."""
    code = "denied"


class QuotaExceeded(Denied):
    """A daily or monthly request, token, or cost ceiling would be crossed."""
    code = "quota_exceeded"
    audit_status = "quota_exceeded"

    def __init__(self, message: str, limit_name: Optional[str] = None):
        super().__init__(message)
        self.limit_name = limit_name

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["limit"] = self.limit_name
        return data


class AIDisabled(QuotaExceeded):
    """AI features were switched off for the user by an administrator."""
    code = "disabled"

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message, limit_name="is_active")
        self.reason = reason


class RateLimited(Denied):
    """A short-term throttle is active for the user."""
    code = "rate_limited"
    audit_status = "rate_limited"

    def __init__(self, message: str, reset_at: Optional[datetime] = None):
        super().__init__(message)
        self.reset_at = reset_at

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reset_at"] = self.reset_at.isoformat() if self.reset_at else None
        return data


class RemoteUnavailable(GatewayError):
    """The model service could not produce a response."""
    code = "service_unavailable"

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        rate_limited: bool = False,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.rate_limited = rate_limited
        self.retryable = retryable


class ParseError(GatewayError):
    """The model answered, but the answer failed its schema or invariants."""
    code = "invalid_response"

    def __init__(self, message: str, kind: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.kind = kind
        self.errors = errors or []
