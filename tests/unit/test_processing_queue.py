"""
Unit Tests — ProcessingQueue
═════════════════════════════
Bounded concurrency, FIFO admission, retry policy and completion futures.

Coverage targets:
  ✅ Never more than `concurrency` jobs in flight
  ✅ FIFO admission order
  ✅ Always-failing job fails after exactly max_retries attempts
  ✅ Transient failure retried, then completes
  ✅ Linear retry delay (delay * attempt)
  ✅ FatalExtractionError fails on the first attempt
  ✅ on_complete fires once, on the terminal state only
  ✅ wait_for() honours its timeout
  ✅ Jobs added before a processor is registered wait for it
  ✅ clear() drops only terminal jobs; stats and recent_jobs
  ✅ shutdown() cancels in-flight work
"""

from __future__ import annotations

import asyncio

import pytest

from docintake.core.exceptions import DocumentNotFoundError, ProviderError
from docintake.queue.processing_queue import JobStatus, ProcessingQueue, QueueJob
from tests.conftest import no_sleep


# ─────────────────────────────────────────────────────────────────────────────
# Processors
# ─────────────────────────────────────────────────────────────────────────────

class _Recorder:
    """Tracks attempts and peak concurrency; optionally fails N times per job."""

    def __init__(self, fail_times: int = 0, error: Exception | None = None, hold: float = 0.01) -> None:
        self.fail_times = fail_times
        self.error = error or ProviderError("transient")
        self.hold = hold
        self.attempts: dict[str, int] = {}
        self.started: list[str] = []
        self.active = 0
        self.peak = 0

    async def __call__(self, job: QueueJob) -> str:
        self.attempts[job.id] = self.attempts.get(job.id, 0) + 1
        self.started.append(job.id)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.hold)
            if self.attempts[job.id] <= self.fail_times:
                raise self.error
            return f"done:{job.payload}"
        finally:
            self.active -= 1


def _queue(processor, **overrides) -> ProcessingQueue:
    kwargs = dict(concurrency=5, max_retries=3, retry_delay=0.0, sleep=no_sleep)
    kwargs.update(overrides)
    return ProcessingQueue(processor=processor, **kwargs)


# ─────────────────────────────────────────────────────────────────────────────
# Concurrency + ordering
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.queue
class TestConcurrency:

    async def test_never_exceeds_concurrency(self):
        processor = _Recorder(hold=0.02)
        queue = _queue(processor, concurrency=2)

        jobs = [queue.add(f"doc-{i}", i) for i in range(5)]
        assert await queue.wait_for(jobs, timeout=5)

        assert processor.peak == 2
        assert all(job.status is JobStatus.COMPLETED for job in jobs)

    async def test_admission_is_fifo(self):
        processor = _Recorder()
        queue = _queue(processor, concurrency=1)

        jobs = [queue.add(f"doc-{i}", i) for i in range(4)]
        await queue.wait_for(jobs, timeout=5)

        assert processor.started == ["doc-0", "doc-1", "doc-2", "doc-3"]

    async def test_stats_while_running(self):
        gate = asyncio.Event()

        async def _blocked(job: QueueJob) -> None:
            await gate.wait()

        queue = _queue(_blocked, concurrency=1)
        jobs = [queue.add(f"doc-{i}", i) for i in range(3)]
        await asyncio.sleep(0)

        stats = queue.get_stats()
        assert (stats.pending, stats.processing, stats.completed, stats.failed, stats.total) == (2, 1, 0, 0, 3)

        gate.set()
        await queue.wait_for(jobs, timeout=5)
        assert queue.get_stats().is_idle

    async def test_result_stored_on_job(self):
        queue = _queue(_Recorder())

        job = queue.add("doc-1", "payload")
        await queue.wait_for([job], timeout=5)

        assert job.result == "done:payload"
        assert job.started_at is not None
        assert job.completed_at is not None


# ─────────────────────────────────────────────────────────────────────────────
# Retry policy
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.queue
class TestRetries:

    async def test_always_failing_job_fails_after_three_attempts(self):
        processor = _Recorder(fail_times=99)
        queue = _queue(processor)

        job = queue.add("doc-1", 1)
        await queue.wait_for([job], timeout=5)

        assert processor.attempts["doc-1"] == 3
        assert job.status is JobStatus.FAILED
        assert job.retries == 3
        assert job.error == "transient"

    async def test_transient_failure_recovers(self):
        processor = _Recorder(fail_times=2)
        queue = _queue(processor)

        job = queue.add("doc-1", 1)
        await queue.wait_for([job], timeout=5)

        assert job.status is JobStatus.COMPLETED
        assert job.retries == 2
        assert processor.attempts["doc-1"] == 3

    async def test_retry_delay_is_linear(self):
        slept: list[float] = []

        async def _sleep(seconds: float) -> None:
            slept.append(seconds)

        queue = _queue(_Recorder(fail_times=99), retry_delay=2.0, sleep=_sleep)

        job = queue.add("doc-1", 1)
        await queue.wait_for([job], timeout=5)

        assert slept == [2.0, 4.0]

    async def test_fatal_error_is_not_retried(self):
        processor = _Recorder(fail_times=99, error=DocumentNotFoundError("doc-1"))
        queue = _queue(processor)

        job = queue.add("doc-1", 1)
        await queue.wait_for([job], timeout=5)

        assert processor.attempts["doc-1"] == 1
        assert job.status is JobStatus.FAILED
        assert "Document not found" in job.error

    async def test_custom_retry_filter(self):
        processor = _Recorder(fail_times=99, error=ValueError("bad"))
        queue = _queue(processor, should_retry=lambda exc: not isinstance(exc, ValueError))

        job = queue.add("doc-1", 1)
        await queue.wait_for([job], timeout=5)

        assert processor.attempts["doc-1"] == 1


# ─────────────────────────────────────────────────────────────────────────────
# Completion
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.queue
class TestCompletion:

    async def test_on_complete_fires_once_on_terminal_state(self):
        queue = _queue(_Recorder(fail_times=2))
        seen: list[JobStatus] = []
        queue.on_complete("doc-1", lambda job: seen.append(job.status))

        job = queue.add("doc-1", 1)
        await queue.wait_for([job], timeout=5)

        assert seen == [JobStatus.COMPLETED]

    async def test_on_complete_fires_for_failures(self):
        queue = _queue(_Recorder(fail_times=99))
        seen: list[JobStatus] = []
        queue.on_complete("doc-1", lambda job: seen.append(job.status))

        job = queue.add("doc-1", 1)
        await queue.wait_for([job], timeout=5)

        assert seen == [JobStatus.FAILED]

    async def test_wait_for_times_out(self):
        gate = asyncio.Event()

        async def _blocked(job: QueueJob) -> None:
            await gate.wait()

        queue = _queue(_blocked)
        job = queue.add("doc-1", 1)

        assert await queue.wait_for([job], timeout=0.05) is False
        assert job.status is JobStatus.PROCESSING

        gate.set()
        assert await queue.wait_for([job], timeout=5) is True

    async def test_jobs_wait_for_late_processor(self):
        queue: ProcessingQueue = ProcessingQueue(sleep=no_sleep)
        job = queue.add("doc-1", 1)
        await asyncio.sleep(0)
        assert job.status is JobStatus.PENDING

        queue.process(_Recorder())
        await queue.wait_for([job], timeout=5)

        assert job.status is JobStatus.COMPLETED

    async def test_second_processor_is_ignored(self):
        first = _Recorder()
        queue = _queue(first)
        queue.process(_Recorder())

        job = queue.add("doc-1", 1)
        await queue.wait_for([job], timeout=5)

        assert first.attempts == {"doc-1": 1}

    async def test_duplicate_ids_tracked_separately(self):
        queue = _queue(_Recorder())

        first = queue.add("doc-1", "a")
        second = queue.add("doc-1", "b")
        await queue.wait_for([first, second], timeout=5)

        assert queue.get_stats().completed == 2
        assert queue.get_job("doc-1") is second


# ─────────────────────────────────────────────────────────────────────────────
# Housekeeping
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.queue
class TestHousekeeping:

    async def test_clear_drops_only_terminal_jobs(self):
        gate = asyncio.Event()

        async def _maybe_block(job: QueueJob) -> None:
            if job.payload == "block":
                await gate.wait()

        queue = _queue(_maybe_block)
        done = queue.add("doc-1", "fast")
        blocked = queue.add("doc-2", "block")
        await queue.wait_for([done], timeout=5)

        assert queue.clear() == 1
        assert [j.id for j in queue.all_jobs()] == ["doc-2"]

        gate.set()
        await queue.wait_for([blocked], timeout=5)

    async def test_recent_jobs_newest_first(self):
        queue = _queue(_Recorder())
        jobs = [queue.add(f"doc-{i}", i) for i in range(4)]
        await queue.wait_for(jobs, timeout=5)

        recent = queue.recent_jobs(limit=2)

        assert [j.id for j in recent] == ["doc-3", "doc-2"]
        assert recent[0].summary()["status"] == "completed"

    async def test_shutdown_cancels_in_flight_work(self):
        gate = asyncio.Event()

        async def _blocked(job: QueueJob) -> None:
            await gate.wait()

        queue = _queue(_blocked, concurrency=1)
        running = queue.add("doc-1", 1)
        waiting = queue.add("doc-2", 2)
        await asyncio.sleep(0)

        await queue.shutdown()

        assert running.done.cancelled()
        assert waiting.done.cancelled()

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValueError):
            ProcessingQueue(concurrency=0)
