"""
Composed FastAPI Dependencies

Route handlers reach the pipeline through the PipelineContext stored on
app.state by the lifespan (or handed to create_app by tests); they never
construct services themselves.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from docintake.core.context import PipelineContext
from docintake.extraction.service import ExtractionService
from docintake.llm.rate_limiter import RateLimiter
from docintake.observability.cost_tracker import CostTracker
from docintake.queue.processing_queue import ProcessingQueue
from docintake.services.batch import BatchCoordinator


def get_context(request: Request) -> PipelineContext:
    return request.app.state.context


def get_extraction_service(context: Annotated[PipelineContext, Depends(get_context)]) -> ExtractionService:
    return context.extraction


def get_batch_coordinator(context: Annotated[PipelineContext, Depends(get_context)]) -> BatchCoordinator:
    return context.batches


def get_document_queue(context: Annotated[PipelineContext, Depends(get_context)]) -> ProcessingQueue:
    return context.queue


def get_cost_tracker(context: Annotated[PipelineContext, Depends(get_context)]) -> CostTracker:
    return context.cost_tracker


def get_rate_limiter(context: Annotated[PipelineContext, Depends(get_context)]) -> RateLimiter:
    return context.rate_limiter


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

Context       = Annotated[PipelineContext,   Depends(get_context)]
Extraction    = Annotated[ExtractionService, Depends(get_extraction_service)]
Batches       = Annotated[BatchCoordinator,  Depends(get_batch_coordinator)]
DocumentQueue = Annotated[ProcessingQueue,   Depends(get_document_queue)]
Costs         = Annotated[CostTracker,       Depends(get_cost_tracker)]
Limiter       = Annotated[RateLimiter,       Depends(get_rate_limiter)]
