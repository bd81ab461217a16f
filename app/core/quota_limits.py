"""
Default AI quota limits.

Single source of truth for the per-user limits a quota row is created with.
Each default can be overridden system-wide through the environment; individual
users can be given different limits through QuotaLedger.update_limits().
"""
import os
from typing import Dict, List, Union

Limit = Union[int, float]

# Limit fields on a user's quota row
QUOTA_LIMIT_FIELDS: List[str] = [
    "daily_request_limit",
    "daily_token_limit",
    "daily_cost_limit",
    "monthly_request_limit",
    "monthly_token_limit",
    "monthly_cost_limit",
]

# System-wide defaults (cost limits in USD)
DEFAULT_QUOTA_LIMITS: Dict[str, Limit] = {
    "daily_request_limit": int(os.getenv("AI_DAILY_REQUEST_LIMIT", "1000")),
    "daily_token_limit": int(os.getenv("AI_DAILY_TOKEN_LIMIT", "100000")),
    "daily_cost_limit": float(os.getenv("AI_DAILY_COST_LIMIT", "10")),
    "monthly_request_limit": int(os.getenv("AI_MONTHLY_REQUEST_LIMIT", "20000")),
    "monthly_token_limit": int(os.getenv("AI_MONTHLY_TOKEN_LIMIT", "1000000")),
    "monthly_cost_limit": float(os.getenv("AI_MONTHLY_COST_LIMIT", "100")),
}


def get_default_limits() -> Dict[str, Limit]:
    """Get a copy of the system-wide default limits."""
    return dict(DEFAULT_QUOTA_LIMITS)


def validate_limit_updates(updates: Dict[str, Limit]) -> Dict[str, Limit]:
    """
    Validate a partial set of limit overrides.

    Args:
        updates: Mapping of limit field name to new value

    Returns:
        The validated updates, with request/token limits coerced to int

    Raises:
        ValueError: If a field is unknown or a value is negative
    """
    validated: Dict[str, Limit] = {}
    for field, value in updates.items():
        if field not in QUOTA_LIMIT_FIELDS:
            raise ValueError(f"Unknown quota limit: {field}")
        if value is None or value < 0:
            raise ValueError(f"{field} must be a non-negative number")
        validated[field] = float(value) if field.endswith("_cost_limit") else int(value)
    return validated
