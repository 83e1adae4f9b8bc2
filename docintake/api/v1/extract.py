"""
Extraction API Router
POST /api/v1/extract
POST /api/v1/extract/bulk
GET  /api/v1/extract/batches/{batch_id}

Request lifecycle (single document):
  ┌─────────────────────────────────────────────────────────┐
  │ 1. Body validation (document_id, force_model?, skip?)   │
  │ 2. ExtractionService.extract                            │
  │      unknown id            → 404                        │
  │      COMPLETED, not forced → stored data, no model call │
  │ 3. Any other failure → 500 with the failure message     │
  └─────────────────────────────────────────────────────────┘

Bulk: ≤ 10 documents are processed before responding (200 with per-document
outcomes); larger submissions return 202 with the batch id and a queue-stats
snapshot while the queue works through them.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from docintake.api.dependencies import Batches, Extraction
from docintake.core.exceptions import DocumentNotFoundError
from docintake.extraction.service import ExtractOptions
from docintake.schemas.extraction import (
    BatchJobResponse,
    BulkExtractRequest,
    BulkExtractResponse,
    ErrorResponse,
    ExtractionErrors,
    ExtractRequest,
    ExtractResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/extract",
    tags=["Extraction"],
)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


# ---------------------------------------------------------------------------
# POST /extract
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=ExtractResponse,
    summary="Extract fields from one document",
    responses={
        200: {"model": ExtractResponse},
        404: {"model": ErrorResponse, "description": "Unknown document"},
        422: {"model": ErrorResponse, "description": "Invalid request body"},
        500: {"model": ErrorResponse, "description": "Extraction failed"},
    },
)
async def extract_document(body: ExtractRequest, request: Request, service: Extraction) -> JSONResponse:
    options = ExtractOptions(
        force_model=body.force_model,
        skip_classification=body.skip_classification,
    )

    try:
        result = await service.extract(body.document_id, options)
    except DocumentNotFoundError:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=ExtractionErrors.document_not_found(
                body.document_id, _request_id(request),
            ).model_dump(mode="json"),
        )
    except Exception as exc:
        logger.exception("Extraction API error | doc=%s", body.document_id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ExtractionErrors.extraction_failed(
                str(exc), _request_id(request),
            ).model_dump(mode="json"),
        )

    response = ExtractResponse(
        message="Document already processed" if result.reused else "Extraction completed",
        data=result.as_dict(),
    )
    return JSONResponse(status_code=status.HTTP_200_OK, content=response.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# POST /extract/bulk
# ---------------------------------------------------------------------------

@router.post(
    "/bulk",
    response_model=BulkExtractResponse,
    summary="Submit a batch of documents",
    responses={
        200: {"model": BulkExtractResponse, "description": "Small batch processed synchronously"},
        202: {"model": BulkExtractResponse, "description": "Large batch accepted for background processing"},
        422: {"model": ErrorResponse, "description": "Empty or invalid id list"},
    },
)
async def extract_bulk(body: BulkExtractRequest, batches: Batches) -> JSONResponse:
    submission = await batches.submit_batch(body.document_ids)

    if submission.synchronous:
        message = f"Processed {submission.succeeded} documents, {submission.failed} failed"
        status_code = status.HTTP_200_OK
    else:
        message = f"Accepted {submission.document_count} documents for background processing"
        status_code = status.HTTP_202_ACCEPTED

    response = BulkExtractResponse(
        message=message,
        batch_id=submission.batch_id,
        use_batch_api=submission.use_batch_api,
        document_count=submission.document_count,
        synchronous=submission.synchronous,
        timed_out=submission.timed_out,
        stats=submission.stats.as_dict(),
        results=[outcome.as_dict() for outcome in submission.results],
    )
    headers = {} if submission.synchronous else {
        "Location": f"/api/v1/extract/batches/{submission.batch_id}",
    }
    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(mode="json"),
        headers=headers,
    )


# ---------------------------------------------------------------------------
# GET /extract/batches/{batch_id}
# ---------------------------------------------------------------------------

@router.get(
    "/batches/{batch_id}",
    response_model=BatchJobResponse,
    summary="Aggregate status of a submitted batch",
    responses={
        200: {"model": BatchJobResponse},
        404: {"model": ErrorResponse},
    },
)
async def get_batch(batch_id: str, request: Request, batches: Batches):
    job = await batches.get_batch(batch_id)
    if job is None:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=ExtractionErrors.batch_not_found(batch_id, _request_id(request)).model_dump(mode="json"),
        )

    return BatchJobResponse(
        batch_id=job.id,
        status=job.status,
        use_batch_api=job.use_batch_api,
        document_count=job.document_count,
        completed_count=job.completed_count,
        failed_count=job.failed_count,
        submitted_at=job.submitted_at,
        completed_at=job.completed_at,
    )
