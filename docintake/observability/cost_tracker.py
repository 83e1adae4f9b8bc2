"""
Cost Tracker — Per-Document Token Cost Accounting

Two layers:

  Pure functions (no I/O):
    price(input, output, tier, use_bulk_discount)   one extraction call
    summarize(records)                              aggregate stored rows
    estimate_batch(count, avg_tokens, tier, bulk)   pre-submission preview

  CostTracker (reads cost_metrics through the repository):
    get_summary()           summarize() over every row
    get_cost_by_model()     {model: {count, cost, tokens}}
    get_cost_over_time(n)   [{date, cost, count}] per calendar day, last n days

Pricing catalogue (USD per 1M tokens, public list prices):

    tier   input   output
    high    1.25   10.00
    low     0.30    2.50

Bulk (batch API) submissions are billed at exactly half.

Precision: prices are computed in floats and never rounded here; the
database column keeps 6 decimals and display layers round further.

batch_savings is the amount saved versus standard pricing on discounted
rows, i.e. estimated_cost / BULK_DISCOUNT_FACTOR - estimated_cost. With a
50 % discount that is numerically equal to what was paid on those rows.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Protocol

from docintake.llm.router import ModelTier

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pricing catalogue (USD per 1M tokens)
# ---------------------------------------------------------------------------

# (input_price_per_1m, output_price_per_1m)
MODEL_PRICING: dict[ModelTier, tuple[float, float]] = {
    ModelTier.HIGH: (1.25, 10.00),
    ModelTier.LOW:  (0.30,  2.50),
}

BULK_DISCOUNT_FACTOR = 0.5

# Pre-submission estimate assumes this input/output split
ESTIMATE_INPUT_SHARE = 0.8


def price(
    input_tokens:      float,
    output_tokens:     float,
    tier:              ModelTier,
    use_bulk_discount: bool = False,
) -> float:
    """USD cost of one call; halved when billed through the bulk path."""
    price_in, price_out = MODEL_PRICING[ModelTier(tier)]
    cost = (input_tokens / 1_000_000 * price_in) + (output_tokens / 1_000_000 * price_out)
    if use_bulk_discount:
        cost *= BULK_DISCOUNT_FACTOR
    return cost


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

class CostRecord(Protocol):
    """Duck type satisfied by CostMetrics rows."""
    model:          str
    estimated_cost: float
    used_batch_api: bool


@dataclass
class CostSummary:
    total_documents:           int
    total_cost:                float
    cost_by_model:             dict[str, float] = field(default_factory=dict)
    batch_savings:             float = 0.0
    average_cost_per_document: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_documents":           self.total_documents,
            "total_cost":                self.total_cost,
            "cost_by_model":             dict(self.cost_by_model),
            "batch_savings":             self.batch_savings,
            "average_cost_per_document": self.average_cost_per_document,
        }


def summarize(records: Iterable[CostRecord]) -> CostSummary:
    count = 0
    total = 0.0
    savings = 0.0
    by_model: dict[str, float] = defaultdict(float)

    for record in records:
        cost = float(record.estimated_cost or 0.0)
        count += 1
        total += cost
        by_model[record.model or "unknown"] += cost
        if record.used_batch_api:
            savings += cost / BULK_DISCOUNT_FACTOR - cost

    return CostSummary(
        total_documents=count,
        total_cost=total,
        cost_by_model=dict(by_model),
        batch_savings=savings,
        average_cost_per_document=total / count if count else 0.0,
    )


@dataclass
class BatchCostEstimate:
    document_count: int
    standard_cost:  float
    batch_cost:     float
    savings:        float

    def as_dict(self) -> dict[str, Any]:
        return {
            "document_count": self.document_count,
            "standard_cost":  self.standard_cost,
            "batch_cost":     self.batch_cost,
            "savings":        self.savings,
        }


def estimate_batch(
    document_count:     int,
    avg_tokens_per_doc: float = 5000,
    tier:               ModelTier = ModelTier.LOW,
    use_bulk_discount:  bool = True,
) -> BatchCostEstimate:
    input_tokens  = avg_tokens_per_doc * ESTIMATE_INPUT_SHARE
    output_tokens = avg_tokens_per_doc - input_tokens

    standard = price(input_tokens, output_tokens, tier, False) * document_count
    batch    = price(input_tokens, output_tokens, tier, use_bulk_discount) * document_count
    return BatchCostEstimate(
        document_count=document_count,
        standard_cost=standard,
        batch_cost=batch,
        savings=standard - batch,
    )


# ---------------------------------------------------------------------------
# CostTracker — reporting over persisted cost rows
# ---------------------------------------------------------------------------

class CostTracker:
    """
    Read-side cost reporting.

    Usage::

        tracker = CostTracker(repository)
        summary = await tracker.get_summary()
    """

    def __init__(self, repository: Any) -> None:
        self._repository = repository

    async def get_summary(self) -> CostSummary:
        rows = await self._repository.list_cost_metrics()
        return summarize(rows)

    async def get_cost_by_model(self) -> dict[str, dict[str, float]]:
        rows = await self._repository.list_cost_metrics()
        result: dict[str, dict[str, float]] = {}
        for row in rows:
            entry = result.setdefault(row.model or "unknown", {"count": 0, "cost": 0.0, "tokens": 0})
            entry["count"]  += 1
            entry["cost"]   += float(row.estimated_cost or 0.0)
            entry["tokens"] += (row.input_tokens or 0) + (row.output_tokens or 0)
        return result

    async def get_cost_over_time(self, days: int = 7) -> list[dict[str, Any]]:
        since = datetime.now(timezone.utc) - timedelta(days=days)
        rows = await self._repository.list_cost_metrics(since=since)

        by_date: dict[str, dict[str, Any]] = {}
        for row in rows:
            day = row.created_at.date().isoformat()
            entry = by_date.setdefault(day, {"date": day, "cost": 0.0, "count": 0})
            entry["cost"]  += float(row.estimated_cost or 0.0)
            entry["count"] += 1

        logger.debug("CostTracker | cost over time days=%d buckets=%d", days, len(by_date))
        return [by_date[d] for d in sorted(by_date)]
