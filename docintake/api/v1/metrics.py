"""
Metrics API Router
GET /api/v1/metrics?days=7         cost summary, per-model breakdown, per-day series
GET /api/v1/metrics/estimate       projected cost of a batch before submitting it
GET /api/v1/rate-limit             current rate-limiter status
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query

from docintake.api.dependencies import Costs, Limiter
from docintake.llm.router import ModelTier
from docintake.observability.cost_tracker import estimate_batch
from docintake.schemas.extraction import (
    CostEstimateResponse,
    MetricsResponse,
    RateLimitStatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Metrics"])


@router.get("/metrics", response_model=MetricsResponse, summary="Cost metrics")
async def get_metrics(
    costs: Costs,
    days: int = Query(7, ge=1, le=365, description="Days covered by the over-time series"),
) -> MetricsResponse:
    summary = await costs.get_summary()
    by_model = await costs.get_cost_by_model()
    over_time = await costs.get_cost_over_time(days)
    return MetricsResponse(
        summary=summary.as_dict(),
        by_model=by_model,
        over_time=over_time,
    )


@router.get("/metrics/estimate", response_model=CostEstimateResponse, summary="Batch cost preview")
async def get_cost_estimate(
    document_count:     int       = Query(..., ge=1, description="Documents in the planned batch"),
    avg_tokens_per_doc: float     = Query(5000, gt=0),
    tier:               ModelTier = Query(ModelTier.LOW),
    use_bulk_discount:  bool      = Query(True),
) -> CostEstimateResponse:
    estimate = estimate_batch(
        document_count,
        avg_tokens_per_doc=avg_tokens_per_doc,
        tier=tier,
        use_bulk_discount=use_bulk_discount,
    )
    return CostEstimateResponse(**estimate.as_dict())


@router.get("/rate-limit", response_model=RateLimitStatusResponse, summary="Rate limiter status")
async def get_rate_limit_status(limiter: Limiter) -> RateLimitStatusResponse:
    return RateLimitStatusResponse(**limiter.get_status().as_dict())
