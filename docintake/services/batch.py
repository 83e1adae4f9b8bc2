"""
Batch Coordinator — bulk submission over the document queue

submit_batch(document_ids):

  1. use_batch_api = len(ids) > bulk_threshold (100)     ← 50 % pricing path
  2. create the batch_jobs record (PROCESSING)
  3. mark documents: QUEUED_FOR_BATCH (bulk) or back to PENDING
     (completed and in-flight documents are left alone)
  4. enqueue one DocumentJob per id, whatever the size
  5. small batch (≤ sync_max_documents, 10):
        await this batch's own jobs, up to sync_timeout (60 s)
        → per-document success/failure list, batch COMPLETED
        → on timeout unfinished documents are reported as failures and
          the batch record is finalized in the background
     large batch:
        return immediately with the batch id and a queue-stats snapshot;
        a background task finalizes the record when every job is terminal
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from docintake.extraction.service import (
    ExtractionResult,
    ExtractionService,
    ExtractOptions,
    can_transition,
)
from docintake.models.documents import BatchJob, BatchStatus, DocumentStatus, utcnow
from docintake.observability.tracing import traced
from docintake.queue.processing_queue import JobStatus, ProcessingQueue, QueueJob, QueueStats
from docintake.services.repository import DocumentRepository

logger = logging.getLogger(__name__)

BULK_DISCOUNT_THRESHOLD = 100
SYNC_MAX_DOCUMENTS      = 10
SYNC_TIMEOUT_SECONDS    = 60.0

TIMEOUT_MESSAGE = "Timed out waiting for extraction"


def uses_bulk_discount(document_count: int, threshold: int = BULK_DISCOUNT_THRESHOLD) -> bool:
    return document_count > threshold


# ---------------------------------------------------------------------------
# Queue payload + processor
# ---------------------------------------------------------------------------

@dataclass
class DocumentJob:
    document_id:   str
    use_batch_api: bool = False
    batch_job_id:  Optional[str] = None


class DocumentJobProcessor:
    """Adapts ExtractionService.extract to the queue's processor interface."""

    def __init__(self, service: ExtractionService) -> None:
        self._service = service

    async def __call__(self, job: QueueJob[DocumentJob]) -> ExtractionResult:
        payload = job.payload
        return await self._service.extract(
            payload.document_id,
            ExtractOptions(
                use_batch_api=payload.use_batch_api,
                batch_job_id=payload.batch_job_id,
            ),
        )


# ---------------------------------------------------------------------------
# Submission result
# ---------------------------------------------------------------------------

@dataclass
class DocumentOutcome:
    document_id: str
    success:     bool
    error:       Optional[str] = None
    result:      Optional[dict[str, Any]] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "success":     self.success,
            "error":       self.error,
            "result":      self.result,
        }


@dataclass
class BatchSubmission:
    batch_id:       str
    use_batch_api:  bool
    document_count: int
    synchronous:    bool
    stats:          QueueStats
    results:        list[DocumentOutcome] = field(default_factory=list)
    timed_out:      bool = False

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)


def _outcome(job: QueueJob[DocumentJob]) -> DocumentOutcome:
    if job.status is JobStatus.COMPLETED:
        result = job.result.as_dict() if isinstance(job.result, ExtractionResult) else job.result
        return DocumentOutcome(document_id=job.id, success=True, result=result)
    if job.status is JobStatus.FAILED:
        return DocumentOutcome(document_id=job.id, success=False, error=job.error)
    return DocumentOutcome(document_id=job.id, success=False, error=TIMEOUT_MESSAGE)


# ---------------------------------------------------------------------------
# BatchCoordinator
# ---------------------------------------------------------------------------

class BatchCoordinator:

    def __init__(
        self,
        repository:      DocumentRepository,
        queue:           ProcessingQueue[DocumentJob, ExtractionResult],
        notifier:        Any = None,
        bulk_threshold:  int   = BULK_DISCOUNT_THRESHOLD,
        sync_max:        int   = SYNC_MAX_DOCUMENTS,
        sync_timeout:    float = SYNC_TIMEOUT_SECONDS,
    ) -> None:
        self._repository     = repository
        self._queue          = queue
        self._notifier       = notifier
        self._bulk_threshold = bulk_threshold
        self._sync_max       = sync_max
        self._sync_timeout   = sync_timeout
        self._finalizers: set[asyncio.Task] = set()

    @traced("batch.submit")
    async def submit_batch(self, document_ids: list[str]) -> BatchSubmission:
        if not document_ids:
            raise ValueError("document_ids must not be empty")

        count = len(document_ids)
        use_batch_api = uses_bulk_discount(count, self._bulk_threshold)

        batch = await self._repository.create_batch_job(
            status=BatchStatus.PROCESSING.value,
            use_batch_api=use_batch_api,
            document_count=count,
        )
        logger.info(
            "Batch | id=%s documents=%d bulk_discount=%s", batch.id, count, use_batch_api,
        )
        self._notify("batch.started", {
            "batch_id":       batch.id,
            "document_count": count,
            "use_batch_api":  use_batch_api,
        })

        for document_id in document_ids:
            await self._prepare_document(document_id, use_batch_api)

        jobs = [
            self._queue.add(document_id, DocumentJob(document_id, use_batch_api, batch.id))
            for document_id in document_ids
        ]

        if count > self._sync_max:
            self._finalize_in_background(batch.id, jobs)
            return BatchSubmission(
                batch_id=batch.id,
                use_batch_api=use_batch_api,
                document_count=count,
                synchronous=False,
                stats=self._queue.get_stats(),
            )

        finished = await self._queue.wait_for(jobs, timeout=self._sync_timeout)
        results = [_outcome(job) for job in jobs]

        if finished:
            await self._finalize(batch.id, jobs)
        else:
            logger.warning(
                "Batch | id=%s timed out after %.0fs, finalizing in background",
                batch.id, self._sync_timeout,
            )
            self._finalize_in_background(batch.id, jobs)

        return BatchSubmission(
            batch_id=batch.id,
            use_batch_api=use_batch_api,
            document_count=count,
            synchronous=True,
            stats=self._queue.get_stats(),
            results=results,
            timed_out=not finished,
        )

    async def get_batch(self, batch_id: str) -> Optional[BatchJob]:
        return await self._repository.get_batch_job(batch_id)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    async def _prepare_document(self, document_id: str, use_batch_api: bool) -> None:
        doc = await self._repository.get_document(document_id)
        if doc is None:
            # the queued job fails fast with DocumentNotFoundError
            logger.warning("Batch | unknown document=%s", document_id)
            return

        current = DocumentStatus(doc.status)
        target = DocumentStatus.QUEUED_FOR_BATCH if use_batch_api else DocumentStatus.PENDING
        if current is target or not can_transition(current, target):
            return
        await self._repository.update_document(document_id, status=target.value)

    async def _finalize(self, batch_id: str, jobs: list[QueueJob[DocumentJob]]) -> None:
        completed = sum(1 for j in jobs if j.status is JobStatus.COMPLETED)
        failed = sum(1 for j in jobs if j.status is JobStatus.FAILED)

        await self._repository.update_batch_job(
            batch_id,
            status=BatchStatus.COMPLETED.value,
            completed_count=completed,
            failed_count=failed,
            completed_at=utcnow(),
        )
        logger.info("Batch | id=%s completed ok=%d failed=%d", batch_id, completed, failed)
        self._notify("batch.completed", {
            "batch_id":  batch_id,
            "completed": completed,
            "failed":    failed,
        })

    def _finalize_in_background(self, batch_id: str, jobs: list[QueueJob[DocumentJob]]) -> None:
        async def _run() -> None:
            await self._queue.wait_for(jobs)
            await self._finalize(batch_id, jobs)

        task = asyncio.ensure_future(_run())
        self._finalizers.add(task)
        task.add_done_callback(self._on_finalizer_done)

    def _on_finalizer_done(self, task: asyncio.Task) -> None:
        self._finalizers.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Batch | background finalizer failed: %s", task.exception())

    def _notify(self, event: str, data: dict[str, Any]) -> None:
        if self._notifier is not None:
            self._notifier.notify(event, data)

    async def drain(self) -> None:
        """Wait for background finalizers (tests)."""
        if self._finalizers:
            await asyncio.gather(*list(self._finalizers), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._finalizers):
            task.cancel()
        await self.drain()
