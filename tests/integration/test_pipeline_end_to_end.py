"""
Integration Tests — Pipeline end to end
════════════════════════════════════════
BatchCoordinator → ProcessingQueue → ExtractionService → repository,
with a slow provider so the queue actually runs jobs side by side.

Coverage targets:
  ✅ Every document reaches COMPLETED with extracted data
  ✅ Queue stats settle at {pending 0, processing 0, completed N, failed 0}
  ✅ Reported total cost equals the sum of per-document prices
  ✅ Mixed classifications route to different tiers in one batch
  ✅ A throttled provider is absorbed by the RateLimiter, not the queue
"""

from __future__ import annotations

import pytest

from docintake.core.context import build_context
from docintake.core.exceptions import RateLimitedError
from docintake.llm.rate_limiter import RateLimiter
from docintake.llm.router import ModelTier
from docintake.models.documents import DocumentStatus
from docintake.observability.cost_tracker import price
from tests.conftest import (
    HANDWRITTEN_CLASSIFICATION,
    HIGH_MODEL,
    LOW_MODEL,
    FakeClock,
    FakeProvider,
    create_document,
)

pytestmark = pytest.mark.integration


class TestPipeline:

    async def test_batch_runs_to_completion(self, context, fake_provider):
        fake_provider.delay = 0.02
        docs = [await create_document(context) for _ in range(3)]

        submission = await context.batches.submit_batch([d.id for d in docs])

        assert submission.succeeded == 3
        assert context.queue.get_stats().as_dict() == {
            "pending": 0, "processing": 0, "completed": 3, "failed": 0, "total": 3,
        }
        for doc in docs:
            stored = await context.repository.get_document(doc.id)
            assert stored.status == DocumentStatus.COMPLETED.value
            assert await context.repository.get_extracted_data(doc.id) is not None

        summary = await context.cost_tracker.get_summary()
        assert summary.total_documents == 3
        assert summary.total_cost == pytest.approx(3 * price(1000, 200, ModelTier.LOW))
        assert summary.batch_savings == 0.0

    async def test_tiers_follow_classification(self, context, fake_provider):
        typed = await create_document(context)
        await context.batches.submit_batch([typed.id])

        fake_provider.classification = HANDWRITTEN_CLASSIFICATION
        handwritten = await create_document(context)
        await context.batches.submit_batch([handwritten.id])

        by_model = await context.cost_tracker.get_cost_by_model()
        assert by_model[LOW_MODEL]["count"] == 1
        assert by_model[HIGH_MODEL]["count"] == 1

        summary = await context.cost_tracker.get_summary()
        expected = price(1000, 200, ModelTier.LOW) + price(1000, 200, ModelTier.HIGH)
        assert summary.total_cost == pytest.approx(expected)

    async def test_throttling_absorbed_by_rate_limiter(self, settings):
        clock = FakeClock()
        provider = FakeProvider(extraction=[RateLimitedError(retry_after=2.0)])
        limiter = RateLimiter(clock=clock, sleep=clock.sleep)
        ctx = await build_context(settings, provider=provider, rate_limiter=limiter)
        try:
            doc = await create_document(ctx)

            submission = await ctx.batches.submit_batch([doc.id])

            assert submission.succeeded == 1
            job = ctx.queue.get_job(doc.id)
            assert job.retries == 0
            assert len(provider.extraction_calls) == 2
            assert limiter.consecutive_errors == 0
        finally:
            await ctx.aclose()
