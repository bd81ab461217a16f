"""
Model pricing table and cost estimation.

Costs are floating-point USD; no rounding is applied beyond display formatting.
"""
from typing import Dict

# Model pricing per 1M tokens (input/output)
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},  # $0.15/$0.60 per 1M tokens
    "gpt-4o": {"input": 2.50, "output": 10.00},  # $2.50/$10.00 per 1M tokens
    "gpt-4": {"input": 30.00, "output": 60.00},  # $30/$60 per 1M tokens
    "text-embedding-3-small": {"input": 0.02, "output": 0.0},
    "text-embedding-3-large": {"input": 0.13, "output": 0.0},
}

# Unknown models are priced like the most expensive chat model so estimates stay upper bounds
FALLBACK_PRICING = MODEL_PRICING["gpt-4"]


def get_pricing(model: str) -> Dict[str, float]:
    """Get per-1M-token pricing for a model."""
    return MODEL_PRICING.get(model, FALLBACK_PRICING)


def estimate_cost(model: str, tokens_in: int, tokens_out: int) -> float:
    """
    Cost in USD of a call with the given token counts.

    Args:
        model: Model identifier
        tokens_in: Input (prompt) tokens
        tokens_out: Output (completion) tokens

    Returns:
        Estimated cost in USD
    """
    pricing = get_pricing(model)
    cost_input = (tokens_in / 1_000_000) * pricing["input"]
    cost_output = (tokens_out / 1_000_000) * pricing["output"]
    return cost_input + cost_output


def estimate_reservation_cost(model: str, tokens: int) -> float:
    """Upper-bound cost of a token estimate: every token priced at the higher of the two rates."""
    pricing = get_pricing(model)
    return (tokens / 1_000_000) * max(pricing["input"], pricing["output"])
