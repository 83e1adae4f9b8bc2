"""
PipelineContext — every process-wide singleton, wired once

    Settings
      ├─ engine / session factory ─ DocumentRepository ─┬─ CostTracker
      ├─ LocalDocumentStorage                            │
      ├─ RateLimiter                                     │
      ├─ ModelRouter ─ ChatExtractionProvider            │
      ├─ Classifier                                      │
      ├─ WebhookNotifier                                 │
      ├─ ExtractionService ◄─────────────────────────────┘
      ├─ ProcessingQueue(DocumentJobProcessor(ExtractionService))
      └─ BatchCoordinator

The FastAPI lifespan builds one context and stores it on app.state; tests
build a fresh one per test and override collaborators (fake provider,
controllable clock) through keyword arguments.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from docintake.classification.classifier import Classifier
from docintake.core.config import Settings
from docintake.db.session import create_engine_from_settings, create_session_factory, init_models
from docintake.extraction.service import ExtractionResult, ExtractionService
from docintake.llm.gateway import ChatExtractionProvider, ExtractionProvider
from docintake.llm.rate_limiter import RateLimiter
from docintake.llm.router import ModelRouter
from docintake.observability.cost_tracker import CostTracker
from docintake.queue.processing_queue import ProcessingQueue
from docintake.services.batch import BatchCoordinator, DocumentJob, DocumentJobProcessor
from docintake.services.repository import DocumentRepository
from docintake.services.webhooks import WebhookConfig, WebhookNotifier
from docintake.storage.local import LocalDocumentStorage

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    settings:        Settings
    engine:          AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    repository:      DocumentRepository
    storage:         LocalDocumentStorage
    rate_limiter:    RateLimiter
    router:          ModelRouter
    provider:        ExtractionProvider
    classifier:      Classifier
    notifier:        WebhookNotifier
    extraction:      ExtractionService
    queue:           ProcessingQueue[DocumentJob, ExtractionResult]
    batches:         BatchCoordinator
    cost_tracker:    CostTracker

    async def aclose(self) -> None:
        await self.batches.aclose()
        await self.queue.shutdown()
        await self.notifier.aclose()
        self.rate_limiter.reset()
        await self.engine.dispose()
        logger.info("PipelineContext closed")


async def build_context(
    settings:     Settings,
    *,
    engine:       Optional[AsyncEngine] = None,
    provider:     Optional[ExtractionProvider] = None,
    rate_limiter: Optional[RateLimiter] = None,
    notifier:     Optional[WebhookNotifier] = None,
    queue_sleep:  Any = None,
) -> PipelineContext:
    """Build and wire every component; creates tables when configured to."""
    engine = engine or create_engine_from_settings(settings)
    if settings.db_create_tables:
        await init_models(engine)

    session_factory = create_session_factory(engine)
    repository = DocumentRepository(session_factory)
    storage = LocalDocumentStorage(settings.upload_dir)

    rate_limiter = rate_limiter or RateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        base_delay=settings.rate_limit_base_delay_seconds,
        max_delay=settings.rate_limit_max_delay_seconds,
        max_retries=settings.rate_limit_max_retries,
    )
    router = ModelRouter(settings)
    provider = provider or ChatExtractionProvider(router, timeout=settings.provider_timeout_seconds)
    classifier = Classifier(provider, rate_limiter, use_text_hint=settings.quick_classify_enabled)

    if notifier is None:
        notifier = WebhookNotifier(timeout=settings.webhook_timeout_seconds)
        for index, url in enumerate(settings.webhook_url_list):
            notifier.register(
                f"settings-{index}",
                WebhookConfig(url=url, secret=settings.webhook_secret or None),
            )

    extraction = ExtractionService(
        repository=repository,
        storage=storage,
        provider=provider,
        rate_limiter=rate_limiter,
        classifier=classifier,
        router=router,
        notifier=notifier,
        review_threshold=settings.review_confidence_threshold,
    )

    queue_kwargs: dict[str, Any] = {}
    if queue_sleep is not None:
        queue_kwargs["sleep"] = queue_sleep
    queue: ProcessingQueue[DocumentJob, ExtractionResult] = ProcessingQueue(
        processor=DocumentJobProcessor(extraction),
        concurrency=settings.queue_concurrency,
        max_retries=settings.queue_max_retries,
        retry_delay=settings.queue_retry_delay_seconds,
        name="documents",
        **queue_kwargs,
    )

    batches = BatchCoordinator(
        repository=repository,
        queue=queue,
        notifier=notifier,
        bulk_threshold=settings.bulk_discount_threshold,
        sync_max=settings.sync_batch_max_documents,
        sync_timeout=settings.sync_batch_timeout_seconds,
    )

    logger.info(
        "PipelineContext ready | concurrency=%d rate_limit=%d/%.0fs high=%s low=%s",
        settings.queue_concurrency,
        settings.rate_limit_max_requests, settings.rate_limit_window_seconds,
        settings.high_tier_model, settings.low_tier_model,
    )

    return PipelineContext(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        repository=repository,
        storage=storage,
        rate_limiter=rate_limiter,
        router=router,
        provider=provider,
        classifier=classifier,
        notifier=notifier,
        extraction=extraction,
        queue=queue,
        batches=batches,
        cost_tracker=CostTracker(repository),
    )
