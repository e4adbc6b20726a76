"""Token cost estimation for successful generation calls."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "USD"


@dataclass(slots=True, frozen=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float


@dataclass(slots=True, frozen=True)
class CostEstimate:
    """Computed cost; `total_cost` is None when the model has no known price."""

    total_cost: float | None
    currency: str = DEFAULT_CURRENCY


DEFAULT_PRICE_TABLE: dict[tuple[str, str], ModelPricing] = {
    ("anthropic", "claude-3-7-sonnet-20250219"): ModelPricing(3.0, 15.0),
    ("anthropic", "claude-3-5-sonnet-20241022"): ModelPricing(3.0, 15.0),
    ("anthropic", "claude-3-5-haiku-20241022"): ModelPricing(0.8, 4.0),
    ("openai", "gpt-4o"): ModelPricing(2.5, 10.0),
    ("openai", "gpt-4o-mini"): ModelPricing(0.15, 0.6),
    ("openai", "o3-mini"): ModelPricing(1.1, 4.4),
    ("google", "gemini-2.0-flash"): ModelPricing(0.1, 0.4),
    ("google", "gemini-2.5-pro-preview-03-25"): ModelPricing(1.25, 10.0),
    ("perplexity", "sonar-pro"): ModelPricing(3.0, 15.0),
    ("perplexity", "sonar"): ModelPricing(1.0, 1.0),
    ("xai", "grok-3"): ModelPricing(3.0, 15.0),
    ("mistral", "mistral-large-latest"): ModelPricing(2.0, 6.0),
    ("ollama", "*"): ModelPricing(0.0, 0.0),
    ("echo", "*"): ModelPricing(0.0, 0.0),
}


def compute_cost(
    *,
    provider: str,
    model_id: str,
    input_tokens: int,
    output_tokens: int,
) -> CostEstimate:
    """Estimate call cost from token usage; unknown models yield a null cost."""

    pricing = lookup_pricing(provider=provider, model_id=model_id)
    if pricing is None:
        logger.debug("No pricing for provider=%s model=%s", provider, model_id)
        return CostEstimate(total_cost=None)

    total = (input_tokens / 1_000_000) * pricing.input_per_1m + (
        output_tokens / 1_000_000
    ) * pricing.output_per_1m
    return CostEstimate(total_cost=total)


def lookup_pricing(*, provider: str, model_id: str) -> ModelPricing | None:
    """Find pricing: env overrides first, then the static table, wildcards last."""

    provider_key = provider.strip().lower()
    model_key = model_id.strip()
    overrides = _parse_pricing_mapping(os.getenv("MODEL_RELAY_PRICING", ""))
    for table in (overrides, DEFAULT_PRICE_TABLE):
        direct = table.get((provider_key, model_key))
        if direct is not None:
            return direct
    for table in (overrides, DEFAULT_PRICE_TABLE):
        wildcard_model = table.get((provider_key, "*"))
        if wildcard_model is not None:
            return wildcard_model
    return overrides.get(("*", "*"))


def _parse_pricing_mapping(raw: str) -> dict[tuple[str, str], ModelPricing]:
    """Parse `MODEL_RELAY_PRICING` mapping.

    Format:
    - `provider:model:input_per_1m:output_per_1m`
    - multiple entries separated by `,`
    - supports wildcards in provider/model (`*`)
    - rows with negative prices are ignored
    """

    parsed: dict[tuple[str, str], ModelPricing] = {}
    if not raw.strip():
        return parsed

    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.split(":")]
        if len(parts) != 4:
            continue
        provider, model, input_price, output_price = parts
        try:
            input_per_1m = float(input_price)
            output_per_1m = float(output_price)
        except ValueError:
            continue
        if input_per_1m < 0 or output_per_1m < 0:
            continue
        parsed[(provider.lower(), model)] = ModelPricing(
            input_per_1m=input_per_1m,
            output_per_1m=output_per_1m,
        )
    return parsed
