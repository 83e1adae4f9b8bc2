"""
Queue API Router
GET    /api/v1/queue   stats + the 50 most recent job summaries
DELETE /api/v1/queue   drop completed/failed jobs
"""

from __future__ import annotations

import logging

from fastapi import APIRouter

from docintake.api.dependencies import DocumentQueue
from docintake.schemas.extraction import QueueClearResponse, QueueStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/queue",
    tags=["Queue"],
)

RECENT_JOBS_LIMIT = 50


@router.get("", response_model=QueueStatusResponse, summary="Queue statistics")
async def get_queue_status(queue: DocumentQueue) -> QueueStatusResponse:
    return QueueStatusResponse(
        stats=queue.get_stats().as_dict(),
        recent_jobs=[job.summary() for job in queue.recent_jobs(RECENT_JOBS_LIMIT)],
    )


@router.delete("", response_model=QueueClearResponse, summary="Clear finished jobs")
async def clear_queue(queue: DocumentQueue) -> QueueClearResponse:
    cleared = queue.clear()
    return QueueClearResponse(message="Queue cleared", cleared=cleared)
