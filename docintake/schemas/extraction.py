"""
Extraction API — Pydantic Request/Response Schemas

Covers:
  - POST /api/v1/extract            single-document (re-)extraction
  - POST /api/v1/extract/bulk       batch submission (200 sync / 202 async)
  - GET  /api/v1/extract/batches/x  aggregate batch record
  - GET  /api/v1/queue              queue stats + recent job summaries
  - GET  /api/v1/metrics            cost summary, per-model, per-day
  - All structured error bodies (404, 422, 500)

Design decisions:
  - Field names are snake_case on the wire.
  - Money is float USD; token counts are ints.
  - All timestamps are ISO-8601 UTC strings.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from docintake.llm.router import ModelTier


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class ExtractRequest(BaseModel):
    document_id:         str                 = Field(..., min_length=1, description="Document to extract")
    force_model:         Optional[ModelTier] = Field(None, description="Pin the model tier (high | low); forces re-extraction")
    skip_classification: bool                = Field(False, description="Skip the classifier and use the low tier")


class BulkExtractRequest(BaseModel):
    document_ids: list[str] = Field(..., min_length=1, description="Documents to extract, in submission order")

    @field_validator("document_ids")
    @classmethod
    def _no_blank_ids(cls, value: list[str]) -> list[str]:
        if any(not item.strip() for item in value):
            raise ValueError("document_ids must not contain blank ids")
        return value


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class ExtractionData(BaseModel):
    document_id:        str
    name:               Optional[str] = None
    address:            Optional[str] = None
    postal_code:        Optional[str] = None
    city:               Optional[str] = None
    birthday:           Optional[str] = None
    date:               Optional[str] = None
    time:               Optional[str] = None
    handwritten:        Optional[bool] = None
    signed:             Optional[bool] = None
    stamp:              Optional[str] = None
    pdf_file_name:      str
    status:             str = Field(..., description="success | partial")
    confidence_scores:  dict[str, float] = Field(default_factory=dict)
    overall_confidence: float
    needs_review:       bool
    review_notes:       Optional[str] = None


class ExtractResponse(BaseModel):
    success: bool = True
    message: str
    data:    Optional[ExtractionData] = None


class QueueStatsModel(BaseModel):
    pending:    int
    processing: int
    completed:  int
    failed:     int
    total:      int


class DocumentOutcomeModel(BaseModel):
    document_id: str
    success:     bool
    error:       Optional[str] = None
    result:      Optional[ExtractionData] = None


class BulkExtractResponse(BaseModel):
    """
    200 — small batch, processed before responding (results populated)
    202 — large batch, accepted; poll GET /extract/batches/{batch_id}
    """
    success:        bool = True
    message:        str
    batch_id:       str
    use_batch_api:  bool
    document_count: int
    synchronous:    bool
    timed_out:      bool = False
    stats:          QueueStatsModel
    results:        list[DocumentOutcomeModel] = Field(default_factory=list)


class BatchJobResponse(BaseModel):
    batch_id:        str
    status:          str
    use_batch_api:   bool
    document_count:  int
    completed_count: int
    failed_count:    int
    submitted_at:    datetime
    completed_at:    Optional[datetime] = None


class QueueJobSummary(BaseModel):
    id:           str
    status:       str
    retries:      int
    error:        Optional[str] = None
    created_at:   str
    started_at:   Optional[str] = None
    completed_at: Optional[str] = None


class QueueStatusResponse(BaseModel):
    stats:       QueueStatsModel
    recent_jobs: list[QueueJobSummary]


class QueueClearResponse(BaseModel):
    success: bool = True
    message: str
    cleared: int


class CostSummaryModel(BaseModel):
    total_documents:           int
    total_cost:                float
    cost_by_model:             dict[str, float]
    batch_savings:             float
    average_cost_per_document: float


class ModelCostModel(BaseModel):
    count:  int
    cost:   float
    tokens: int


class DailyCostModel(BaseModel):
    date:  str
    cost:  float
    count: int


class MetricsResponse(BaseModel):
    summary:   CostSummaryModel
    by_model:  dict[str, ModelCostModel]
    over_time: list[DailyCostModel]


class CostEstimateResponse(BaseModel):
    document_count: int
    standard_cost:  float
    batch_cost:     float
    savings:        float


class RateLimitStatusResponse(BaseModel):
    is_limited:         bool
    retry_after:        Optional[float] = None
    requests_remaining: int
    message:            str


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error; may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")


class ExtractionErrors:
    """Factories for every documented error case."""

    @staticmethod
    def document_not_found(document_id: str, request_id: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="DOCUMENT_NOT_FOUND",
            message="Document not found",
            details=[
                ErrorDetail(
                    field="document_id",
                    message=f"No document with id '{document_id}'.",
                    code="DOCUMENT_NOT_FOUND",
                )
            ],
            request_id=request_id,
        )

    @staticmethod
    def batch_not_found(batch_id: str, request_id: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="BATCH_NOT_FOUND",
            message="Batch job not found",
            details=[
                ErrorDetail(
                    field="batch_id",
                    message=f"No batch job with id '{batch_id}'.",
                    code="BATCH_NOT_FOUND",
                )
            ],
            request_id=request_id,
        )

    @staticmethod
    def extraction_failed(message: str, request_id: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="EXTRACTION_FAILED",
            message=message or "Extraction failed",
            request_id=request_id,
        )

    @staticmethod
    def internal_error(request_id: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred.",
            request_id=request_id,
        )

