"""
Processing Queue — bounded-concurrency in-memory job runner

    add(id, payload) ──► pending (FIFO deque) ──► tick() ──► processing (≤ concurrency)
                              ▲                                  │
                              │ sleep(retry_delay * retries)     │ processor(job)
                              └──── retryable error, retries left┤
                                                                 ├─ ok      → completed
                                                                 └─ give up → failed

  - Admission is FIFO with a fixed ceiling; completion order is not.
  - Failed attempts are retried with linear backoff until max_retries
    attempts have failed. Errors rejected by `should_retry` (by default
    FatalExtractionError) fail on the first attempt.
  - Every job carries a completion future resolved on its terminal state,
    so callers can await a specific set of jobs instead of polling stats.
  - on_complete(id, callback) fires once, on the terminal state only.

State lives in process memory only: a restart loses queued and in-flight
jobs. Single-threaded asyncio, so no locks; no state mutation spans an
await.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, Protocol, TypeVar

from docintake.core.exceptions import FatalExtractionError

logger = logging.getLogger(__name__)

P = TypeVar("P")
R = TypeVar("R")

DEFAULT_CONCURRENCY = 5
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 2.0   # seconds; n-th retry waits delay * n


class JobStatus(str, Enum):
    PENDING    = "pending"
    PROCESSING = "processing"
    COMPLETED  = "completed"
    FAILED     = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Job + stats
# ---------------------------------------------------------------------------

@dataclass
class QueueJob(Generic[P]):
    id:          str
    payload:     P
    max_retries: int
    key:         int                       # unique per add(); ids may repeat
    done:        asyncio.Future = field(repr=False)
    status:      JobStatus = JobStatus.PENDING
    result:      Any = None
    error:       Optional[str] = None
    retries:     int = 0
    created_at:  datetime = field(default_factory=_utcnow)
    started_at:  Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def summary(self) -> dict[str, Any]:
        return {
            "id":           self.id,
            "status":       self.status.value,
            "retries":      self.retries,
            "error":        self.error,
            "created_at":   self.created_at.isoformat(),
            "started_at":   self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class QueueStats:
    pending:    int = 0
    processing: int = 0
    completed:  int = 0
    failed:     int = 0
    total:      int = 0

    @property
    def is_idle(self) -> bool:
        return self.pending == 0 and self.processing == 0

    def as_dict(self) -> dict[str, int]:
        return {
            "pending":    self.pending,
            "processing": self.processing,
            "completed":  self.completed,
            "failed":     self.failed,
            "total":      self.total,
        }


class JobProcessor(Protocol[P, R]):
    async def __call__(self, job: QueueJob[P]) -> R: ...


CompletionCallback = Callable[[QueueJob], None]


def _default_should_retry(exc: BaseException) -> bool:
    return not isinstance(exc, FatalExtractionError)


# ---------------------------------------------------------------------------
# ProcessingQueue
# ---------------------------------------------------------------------------

class ProcessingQueue(Generic[P, R]):
    """
    Usage::

        queue = ProcessingQueue(processor=my_processor, concurrency=5)
        job = queue.add("doc-1", payload)
        await queue.wait_for([job], timeout=60)
    """

    def __init__(
        self,
        processor:    Optional[JobProcessor[P, R]] = None,
        concurrency:  int   = DEFAULT_CONCURRENCY,
        max_retries:  int   = DEFAULT_MAX_RETRIES,
        retry_delay:  float = DEFAULT_RETRY_DELAY,
        should_retry: Callable[[BaseException], bool] = _default_should_retry,
        sleep:        Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name:         str = "queue",
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency  = concurrency
        self.max_retries  = max_retries
        self.retry_delay  = retry_delay
        self.name         = name
        self._processor   = processor
        self._should_retry = should_retry
        self._sleep       = sleep

        self._keys = itertools.count(1)
        self._jobs: dict[int, QueueJob[P]] = {}
        self._pending: deque[QueueJob[P]] = deque()
        self._processing: set[int] = set()
        self._tasks: set[asyncio.Task] = set()
        self._listeners: dict[str, CompletionCallback] = {}
        self._closed = False

    # -----------------------------------------------------------------------
    # Registration / submission
    # -----------------------------------------------------------------------

    def process(self, processor: JobProcessor[P, R]) -> None:
        """Register the processor if none was injected; otherwise a no-op."""
        if self._processor is not None:
            logger.debug("Queue | %s processor already registered", self.name)
            return
        self._processor = processor
        self._tick()

    def add(self, job_id: str, payload: P) -> QueueJob[P]:
        loop = asyncio.get_running_loop()
        job = QueueJob(
            id=job_id,
            payload=payload,
            max_retries=self.max_retries,
            key=next(self._keys),
            done=loop.create_future(),
        )
        self._jobs[job.key] = job
        self._pending.append(job)
        logger.debug("Queue | %s added job=%s", self.name, job_id)
        self._tick()
        return job

    def on_complete(self, job_id: str, callback: CompletionCallback) -> None:
        """At most one listener per id; it fires once on the terminal state."""
        self._listeners[job_id] = callback

    # -----------------------------------------------------------------------
    # Scheduling
    # -----------------------------------------------------------------------

    def _tick(self) -> None:
        if self._processor is None or self._closed:
            return
        while self._pending and len(self._processing) < self.concurrency:
            job = self._pending.popleft()
            job.status = JobStatus.PROCESSING
            job.started_at = _utcnow()
            self._processing.add(job.key)
            self._spawn(self._execute(job))

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _execute(self, job: QueueJob[P]) -> None:
        try:
            result = await self._processor(job)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._handle_failure(job, exc)
        else:
            job.result = result
            job.status = JobStatus.COMPLETED
            job.completed_at = _utcnow()
            logger.info("Queue | %s job=%s completed", self.name, job.id)
            self._finish(job)
        finally:
            self._processing.discard(job.key)
            self._tick()

    def _handle_failure(self, job: QueueJob[P], exc: Exception) -> None:
        job.retries += 1
        job.error = str(exc) or type(exc).__name__

        if self._should_retry(exc) and job.retries < job.max_retries:
            delay = self.retry_delay * job.retries
            job.status = JobStatus.PENDING
            logger.warning(
                "Queue | %s job=%s attempt %d/%d failed, retrying in %.1fs: %s",
                self.name, job.id, job.retries, job.max_retries, delay, job.error,
            )
            self._spawn(self._requeue_after(job, delay))
            return

        job.status = JobStatus.FAILED
        job.completed_at = _utcnow()
        logger.error(
            "Queue | %s job=%s failed after %d attempt(s): %s",
            self.name, job.id, job.retries, job.error,
        )
        self._finish(job)

    async def _requeue_after(self, job: QueueJob[P], delay: float) -> None:
        if delay > 0:
            await self._sleep(delay)
        if job.key not in self._jobs:
            return  # cleared while waiting
        self._pending.append(job)
        self._tick()

    def _finish(self, job: QueueJob[P]) -> None:
        if not job.done.done():
            job.done.set_result(job)
        callback = self._listeners.pop(job.id, None)
        if callback is not None:
            try:
                callback(job)
            except Exception as exc:
                logger.warning("Queue | %s completion listener for job=%s raised: %s", self.name, job.id, exc)

    # -----------------------------------------------------------------------
    # Introspection
    # -----------------------------------------------------------------------

    async def wait_for(self, jobs: list[QueueJob[P]], timeout: Optional[float] = None) -> bool:
        """Wait until every job is terminal; False if the timeout hit first."""
        futures = [job.done for job in jobs if not job.done.done()]
        if not futures:
            return True
        _, not_done = await asyncio.wait(futures, timeout=timeout)
        return not not_done

    def get_job(self, job_id: str) -> Optional[QueueJob[P]]:
        """Most recently added job with this id."""
        for job in reversed(list(self._jobs.values())):
            if job.id == job_id:
                return job
        return None

    def all_jobs(self) -> list[QueueJob[P]]:
        return list(self._jobs.values())

    def recent_jobs(self, limit: int = 50) -> list[QueueJob[P]]:
        return list(reversed(list(self._jobs.values())))[:limit]

    def get_stats(self) -> QueueStats:
        stats = QueueStats(total=len(self._jobs))
        for job in self._jobs.values():
            if job.status is JobStatus.PENDING:
                stats.pending += 1
            elif job.status is JobStatus.PROCESSING:
                stats.processing += 1
            elif job.status is JobStatus.COMPLETED:
                stats.completed += 1
            else:
                stats.failed += 1
        return stats

    def clear(self) -> int:
        """Drop completed/failed jobs; pending and processing are untouched."""
        terminal = [key for key, job in self._jobs.items() if job.is_terminal]
        for key in terminal:
            del self._jobs[key]
        logger.info("Queue | %s cleared %d terminal job(s)", self.name, len(terminal))
        return len(terminal)

    async def shutdown(self) -> None:
        """Cancel in-flight work and requeue timers (process exit)."""
        self._closed = True
        self._pending.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for job in self._jobs.values():
            if not job.done.done():
                job.done.cancel()
        self._processing.clear()
        logger.info("Queue | %s shut down, cancelled %d task(s)", self.name, len(tasks))
