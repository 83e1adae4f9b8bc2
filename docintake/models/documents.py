"""
SQLAlchemy ORM Models — Documents, Extracted Data, Cost Metrics, Batch Jobs

Using SQLAlchemy 2.x mapped classes for full async support. Tables are
created by db/session.py:init_models() on startup.

Relationships (all keyed by documents.id):

    documents 1 ── 0..1 extracted_data    (replaced on forced re-extraction)
    documents 1 ── 0..1 cost_metrics      (upserted on forced re-extraction)
    batch_jobs 1 ── * cost_metrics        (bulk submissions only)

Portability: status columns are plain strings guarded by CHECK constraints
and JSON columns fall back to generic JSON outside PostgreSQL, so the same
models run on asyncpg in production and aiosqlite in tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Enums shared by the ORM, the pipeline, and the API schemas
# ---------------------------------------------------------------------------

class DocumentStatus(str, Enum):
    """
    Per-document pipeline state.

        PENDING → PREPROCESSING → CLASSIFYING → EXTRACTING → COMPLETED
        any non-terminal state → FAILED
        QUEUED_FOR_BATCH marks a bulk-discount document before a slot opens
    """
    PENDING          = "PENDING"
    QUEUED_FOR_BATCH = "QUEUED_FOR_BATCH"
    PREPROCESSING    = "PREPROCESSING"
    CLASSIFYING      = "CLASSIFYING"
    EXTRACTING       = "EXTRACTING"
    COMPLETED        = "COMPLETED"
    FAILED           = "FAILED"


class DocumentType(str, Enum):
    """Coarse visual-content tag driving model-tier routing."""
    HANDWRITTEN = "HANDWRITTEN"
    TYPED       = "TYPED"
    MIXED       = "MIXED"
    SCANNED     = "SCANNED"


class BatchStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED  = "COMPLETED"
    FAILED     = "FAILED"


def _values(enum_cls: type[Enum]) -> str:
    return ", ".join(f"'{m.value}'" for m in enum_cls)


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# JSONB on PostgreSQL, generic JSON (TEXT) elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Declarative base — shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document — documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    One uploaded PDF (possibly one of several split from a larger upload).

    Mutated exclusively by the extraction service after upload. COMPLETED
    implies an extracted_data row exists; FAILED carries error_message.
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            f"status IN ({_values(DocumentStatus)})",
            name="documents_status_check",
        ),
        CheckConstraint(
            f"classification IS NULL OR classification IN ({_values(DocumentType)})",
            name="documents_classification_check",
        ),
        Index("idx_documents_status", "status"),
        Index("idx_documents_file_hash", "file_hash"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    file_name: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Stored file name, relative to UPLOAD_DIR",
    )
    original_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    file_hash: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, comment="SHA-256 of the raw bytes (dedup)",
    )
    page_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=DocumentStatus.PENDING.value,
    )
    classification: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    classification_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    model_used: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow,
    )
    processing_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    processing_completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Document id={self.id} status={self.status} file={self.original_name!r}>"


# ---------------------------------------------------------------------------
# ExtractedData — extracted_data
# ---------------------------------------------------------------------------

class ExtractedData(Base):
    """Structured fields pulled out of one document by the extraction model."""

    __tablename__ = "extracted_data"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    document_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    name:        Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address:     Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city:        Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    birthday:    Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    date:        Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    time:        Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    handwritten: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    signed:      Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    stamp:       Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    raw_json: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    confidence_scores: Mapped[dict[str, float]] = mapped_column(
        JSONType, nullable=False, default=dict,
    )
    overall_confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow,
    )


# ---------------------------------------------------------------------------
# CostMetrics — cost_metrics
# ---------------------------------------------------------------------------

class CostMetrics(Base):
    """
    Token usage and price of the extraction call for one document.

    estimated_cost = price(input, output, tier) * (0.5 if used_batch_api else 1)
    """

    __tablename__ = "cost_metrics"
    __table_args__ = (
        CheckConstraint("model_tier IN ('high', 'low')", name="cost_metrics_tier_check"),
        Index("idx_cost_metrics_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    document_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    input_tokens:  Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    model:         Mapped[str] = mapped_column(String(64), nullable=False)
    model_tier:    Mapped[str] = mapped_column(String(8), nullable=False)
    estimated_cost: Mapped[float] = mapped_column(
        Numeric(14, 6, asdecimal=False), nullable=False, default=0.0,
    )
    used_batch_api: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    batch_job_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("batch_jobs.id", ondelete="SET NULL"), nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow,
    )


# ---------------------------------------------------------------------------
# BatchJob — batch_jobs
# ---------------------------------------------------------------------------

class BatchJob(Base):
    """Aggregate record for one bulk submission."""

    __tablename__ = "batch_jobs"
    __table_args__ = (
        CheckConstraint(
            f"status IN ({_values(BatchStatus)})",
            name="batch_jobs_status_check",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=BatchStatus.PROCESSING.value,
    )
    use_batch_api:   Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    document_count:  Mapped[int]  = mapped_column(Integer, nullable=False, default=0)
    completed_count: Mapped[int]  = mapped_column(Integer, nullable=False, default=0)
    failed_count:    Mapped[int]  = mapped_column(Integer, nullable=False, default=0)

    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
