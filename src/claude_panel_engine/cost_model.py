from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ModelPricing:
    input_per_million: float
    output_per_million: float


_PRICING: dict[str, ModelPricing] = {
    "sonnet": ModelPricing(3.0, 15.0),
    "opus": ModelPricing(15.0, 75.0),
    "haiku": ModelPricing(0.80, 4.00),
    "default": ModelPricing(3.0, 15.0),
}

# Cache writes and reads are billed as a fraction of the input price.
_CACHE_CREATION_FACTOR = 0.25
_CACHE_READ_FACTOR = 0.10


def pricing_for(model: str) -> ModelPricing:
    return _PRICING.get(model, _PRICING["default"])


def calculate_cost(
    model: str,
    input_tokens: int,
    output_tokens: int,
    cache_creation_tokens: int = 0,
    cache_read_tokens: int = 0,
) -> float:
    """Estimate the USD cost of one usage record for the given model alias."""
    pricing = pricing_for(model)
    input_cost = (input_tokens / 1_000_000) * pricing.input_per_million
    output_cost = (output_tokens / 1_000_000) * pricing.output_per_million
    cache_creation_cost = (cache_creation_tokens / 1_000_000) * pricing.input_per_million * _CACHE_CREATION_FACTOR
    cache_read_cost = (cache_read_tokens / 1_000_000) * pricing.input_per_million * _CACHE_READ_FACTOR
    return input_cost + output_cost + cache_creation_cost + cache_read_cost
