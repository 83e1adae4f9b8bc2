"""
Observability Package — Tracing + Cost Tracking

Provides:
  TracingConfig   — LangSmith initialisation
  traced          — decorator for instrumenting async functions
  CostTracker     — per-document spend aggregation (summary, by model, by day)
  price           — USD cost of one provider call

Usage::

    # At app startup (in main.py lifespan):
    from docintake.observability import TracingConfig
    TracingConfig.init(settings)

    # Reporting:
    summary = await CostTracker(repository).get_summary()
"""

from docintake.observability.cost_tracker import (
    CostSummary,
    CostTracker,
    estimate_batch,
    price,
    summarize,
)
from docintake.observability.tracing import TracingConfig, traced

__all__ = [
    "CostSummary",
    "CostTracker",
    "TracingConfig",
    "estimate_batch",
    "price",
    "summarize",
    "traced",
]
