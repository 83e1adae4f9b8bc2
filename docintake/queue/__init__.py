"""
Queue Package — in-process bounded-concurrency job runner

Usage::

    from docintake.queue import ProcessingQueue

    queue = ProcessingQueue(processor=handler, concurrency=5, max_retries=3)
    job = queue.add("doc-1", payload)
    await queue.wait_for([job], timeout=60)
"""

from docintake.queue.processing_queue import JobStatus, ProcessingQueue, QueueJob, QueueStats

__all__ = ["JobStatus", "ProcessingQueue", "QueueJob", "QueueStats"]
