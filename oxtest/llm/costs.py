from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime

from oxtest.core.exceptions import OxtestError

log = logging.getLogger(__name__)


class BudgetExceededError(OxtestError):
    """Raised when recorded usage pushes spending past the configured budget."""


@dataclass(frozen=True, slots=True)
class ModelPricing:
    input_per_million: float
    output_per_million: float


# USD per one million tokens.
MODEL_PRICING: dict[str, ModelPricing] = {
    "gpt-4o": ModelPricing(2.5, 10.0),
    "gpt-4o-mini": ModelPricing(0.15, 0.6),
    "gpt-4-turbo": ModelPricing(10.0, 30.0),
    "gpt-3.5-turbo": ModelPricing(0.5, 1.5),
    "claude-3-5-sonnet-latest": ModelPricing(3.0, 15.0),
    "claude-3-5-haiku-latest": ModelPricing(0.8, 4.0),
    "claude-3-opus-20240229": ModelPricing(15.0, 75.0),
    "gemini-2.5-flash": ModelPricing(0.3, 2.5),
    "gemini-2.5-pro": ModelPricing(1.25, 10.0),
}

# Unknown models are priced like the most expensive entry so budgets stay safe.
UNKNOWN_MODEL_PRICING = ModelPricing(15.0, 75.0)


@dataclass(slots=True)
class CostRecord:
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    cost: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    pricing = MODEL_PRICING.get(model, UNKNOWN_MODEL_PRICING)
    return (input_tokens * pricing.input_per_million + output_tokens * pricing.output_per_million) / 1_000_000


class CostTracker:
    def __init__(self, budget_usd: float | None = None) -> None:
        self.budget_usd = budget_usd
        self.records: list[CostRecord] = []

    def record(self, provider: str, model: str, input_tokens: int, output_tokens: int) -> CostRecord:
        entry = CostRecord(provider, model, input_tokens, output_tokens, calculate_cost(model, input_tokens, output_tokens))
        self.records.append(entry)
        log.debug("%s/%s used %d+%d tokens ($%.6f)", provider, model, input_tokens, output_tokens, entry.cost)
        if self.budget_usd is not None and self.total_cost > self.budget_usd:
            raise BudgetExceededError(
                f"LLM budget of ${self.budget_usd:.2f} exceeded (spent ${self.total_cost:.4f})"
            )
        return entry

    @property
    def total_cost(self) -> float:
        return sum(record.cost for record in self.records)

    @property
    def remaining_budget(self) -> float | None:
        if self.budget_usd is None:
            return None
        return max(self.budget_usd - self.total_cost, 0.0)

    def summary(self) -> dict[str, object]:
        by_model: dict[str, float] = defaultdict(float)
        by_provider: dict[str, float] = defaultdict(float)
        for record in self.records:
            by_model[record.model] += record.cost
            by_provider[record.provider] += record.cost
        requests = len(self.records)
        tokens = sum(record.input_tokens + record.output_tokens for record in self.records)
        return {
            "total_cost": self.total_cost,
            "total_requests": requests,
            "total_tokens": tokens,
            "average_cost": self.total_cost / requests if requests else 0.0,
            "by_model": dict(by_model),
            "by_provider": dict(by_provider),
        }

    def reset(self) -> None:
        self.records.clear()
