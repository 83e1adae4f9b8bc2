"""
Extraction Service — per-document pipeline state machine

  PENDING ─┐
  QUEUED_FOR_BATCH ─┴→ PREPROCESSING → CLASSIFYING → EXTRACTING → COMPLETED
                          │               │             │
                          └───────────────┴─────────────┴──→ FAILED

extract(document_id, options):
  1. Load the document (missing → DocumentNotFoundError, fatal)
     COMPLETED and not forced → return the stored result, no provider call
  2. → PREPROCESSING, stamp processing_started_at
  3. Read bytes from storage (unreadable → StorageReadError, fatal),
     inspect the PDF for page count and text layer
  4. → CLASSIFYING
       force_model           use it, keep any stored classification
       skip_classification   LOW tier, keep any stored classification
       otherwise             Classifier (never raises); any other error here
                             degrades to TYPED so extraction still runs
  5. → EXTRACTING, persist model id; pick the prompt; provider call through
     the RateLimiter; record cost as soon as usage is known so a billed
     call is always accounted, even if a later step fails
  6. Parse (malformed → all-null result flagged parse_error, not fatal)
  7. Validate formats → issue strings
  8. overall_confidence = mean(scores) or 0.5; needs_review = issues or any
     score < threshold
  9. Replace extracted_data
 10. → COMPLETED, stamp processing_completed_at

Any exception after step 2 marks the document FAILED (error_message,
completion time) and is re-raised to the queue / API layer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from docintake.classification.classifier import Classifier
from docintake.core.exceptions import DocumentNotFoundError, InvalidStatusTransitionError
from docintake.extraction.parsing import FIELD_NAMES, MalformedResponse, parse_extraction_response
from docintake.extraction.prompts import get_extraction_prompt
from docintake.extraction.validation import (
    REVIEW_THRESHOLD,
    needs_review,
    overall_confidence,
    suggest_file_name,
    validate_fields,
)
from docintake.llm.gateway import ExtractionProvider
from docintake.llm.rate_limiter import RateLimiter
from docintake.llm.router import ModelRouter, ModelTier, recommend_tier
from docintake.models.documents import Document, DocumentStatus, DocumentType, ExtractedData, utcnow
from docintake.observability.cost_tracker import price
from docintake.observability.tracing import traced
from docintake.processing.pdf import inspect_pdf
from docintake.services.repository import DocumentRepository

logger = logging.getLogger(__name__)

S = DocumentStatus

# Re-entry into PREPROCESSING from in-flight states covers documents left
# behind by a crashed process.
ALLOWED_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    S.PENDING:          frozenset({S.PREPROCESSING, S.QUEUED_FOR_BATCH, S.FAILED}),
    S.QUEUED_FOR_BATCH: frozenset({S.PREPROCESSING, S.PENDING, S.FAILED}),
    S.PREPROCESSING:    frozenset({S.CLASSIFYING, S.PREPROCESSING, S.FAILED}),
    S.CLASSIFYING:      frozenset({S.EXTRACTING, S.PREPROCESSING, S.FAILED}),
    S.EXTRACTING:       frozenset({S.COMPLETED, S.PREPROCESSING, S.FAILED}),
    S.COMPLETED:        frozenset({S.PREPROCESSING}),
    S.FAILED:           frozenset({S.PREPROCESSING, S.PENDING, S.QUEUED_FOR_BATCH}),
}


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


# ---------------------------------------------------------------------------
# Options / result
# ---------------------------------------------------------------------------

@dataclass
class ExtractOptions:
    force_model:         Optional[ModelTier] = None
    skip_classification: bool = False
    use_batch_api:       bool = False
    batch_job_id:        Optional[str] = None


@dataclass
class ExtractionResult:
    """Normalized result handed back to the queue and the API."""
    document_id:       str
    name:              Optional[str] = None
    address:           Optional[str] = None
    postal_code:       Optional[str] = None
    city:              Optional[str] = None
    birthday:          Optional[str] = None
    date:              Optional[str] = None
    time:              Optional[str] = None
    handwritten:       Optional[bool] = None
    signed:            Optional[bool] = None
    stamp:             Optional[str] = None
    pdf_file_name:     str = "document.pdf"
    status:            str = "success"     # success | partial
    confidence_scores: dict[str, float] = field(default_factory=dict)
    overall_confidence: float = 0.5
    needs_review:      bool = False
    review_notes:      Optional[str] = None
    reused:            bool = False        # short-circuited, no provider call

    def as_dict(self) -> dict[str, Any]:
        return {
            "document_id":        self.document_id,
            "name":               self.name,
            "address":            self.address,
            "postal_code":        self.postal_code,
            "city":               self.city,
            "birthday":           self.birthday,
            "date":               self.date,
            "time":               self.time,
            "handwritten":        self.handwritten,
            "signed":             self.signed,
            "stamp":              self.stamp,
            "pdf_file_name":      self.pdf_file_name,
            "status":             self.status,
            "confidence_scores":  dict(self.confidence_scores),
            "overall_confidence": self.overall_confidence,
            "needs_review":       self.needs_review,
            "review_notes":       self.review_notes,
        }

    @classmethod
    def from_record(cls, document_id: str, row: ExtractedData, reused: bool = False) -> "ExtractionResult":
        fields = {name: getattr(row, name) for name in FIELD_NAMES}
        return cls(
            document_id=document_id,
            name=row.name,
            address=row.address,
            postal_code=row.postal_code,
            city=row.city,
            birthday=row.birthday,
            date=row.date,
            time=row.time,
            handwritten=row.handwritten,
            signed=row.signed,
            stamp=row.stamp,
            pdf_file_name=suggest_file_name(fields),
            status="partial" if row.needs_review else "success",
            confidence_scores=dict(row.confidence_scores or {}),
            overall_confidence=row.overall_confidence,
            needs_review=row.needs_review,
            review_notes=row.review_notes,
            reused=reused,
        )


# ---------------------------------------------------------------------------
# ExtractionService
# ---------------------------------------------------------------------------

class ExtractionService:
    """
    Usage::

        service = ExtractionService(repository, storage, provider, rate_limiter,
                                    classifier, router)
        result = await service.extract(document_id)
    """

    def __init__(
        self,
        repository:       DocumentRepository,
        storage:          Any,
        provider:         ExtractionProvider,
        rate_limiter:     RateLimiter,
        classifier:       Classifier,
        router:           ModelRouter,
        notifier:         Any = None,
        review_threshold: float = REVIEW_THRESHOLD,
    ) -> None:
        self._repository       = repository
        self._storage          = storage
        self._provider         = provider
        self._rate_limiter     = rate_limiter
        self._classifier       = classifier
        self._router           = router
        self._notifier         = notifier
        self._review_threshold = review_threshold
        # in-flight state per document, for failure logging
        self._last_status: dict[str, DocumentStatus] = {}

    # -----------------------------------------------------------------------
    # Status transitions
    # -----------------------------------------------------------------------

    async def _transition(
        self,
        document_id: str,
        current:     DocumentStatus,
        target:      DocumentStatus,
        **fields:    Any,
    ) -> DocumentStatus:
        if not can_transition(current, target):
            raise InvalidStatusTransitionError(document_id, current.value, target.value)
        await self._repository.update_document(document_id, status=target.value, **fields)
        logger.info("Extraction | doc=%s %s -> %s", document_id, current.value, target.value)
        return target

    async def _mark_failed(self, document_id: str, current: DocumentStatus, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        try:
            await self._repository.update_document(
                document_id,
                status=DocumentStatus.FAILED.value,
                error_message=message,
                processing_completed_at=utcnow(),
            )
        except Exception as db_exc:
            logger.error("Extraction | could not mark doc=%s failed: %s", document_id, db_exc)
        logger.error(
            "Extraction | doc=%s failed in %s: %s",
            document_id, current.value, message, exc_info=exc,
        )
        self._notify("document.failed", {"document_id": document_id, "error": message})

    def _notify(self, event: str, data: dict[str, Any]) -> None:
        if self._notifier is not None:
            self._notifier.notify(event, data)

    # -----------------------------------------------------------------------
    # Pipeline
    # -----------------------------------------------------------------------

    @traced("extraction.extract")
    async def extract(self, document_id: str, options: Optional[ExtractOptions] = None) -> ExtractionResult:
        options = options or ExtractOptions()

        # --- Step 1: load + idempotence ------------------------------------
        doc = await self._repository.get_document(document_id)
        if doc is None:
            raise DocumentNotFoundError(document_id)

        status = DocumentStatus(doc.status)
        if status is DocumentStatus.COMPLETED and options.force_model is None:
            existing = await self._repository.get_extracted_data(document_id)
            if existing is not None:
                logger.info("Extraction | doc=%s already completed, returning stored data", document_id)
                return ExtractionResult.from_record(document_id, existing, reused=True)
            logger.warning("Extraction | doc=%s COMPLETED without extracted data, re-running", document_id)

        # --- Step 2: PREPROCESSING -------------------------------------------
        status = await self._transition(
            document_id, status, DocumentStatus.PREPROCESSING,
            processing_started_at=utcnow(),
            processing_completed_at=None,
            error_message=None,
        )
        self._notify("document.processing", {"document_id": document_id})

        try:
            result = await self._run(doc, options)
        except Exception as exc:
            await self._mark_failed(document_id, self._last_status.get(document_id, status), exc)
            raise
        finally:
            self._last_status.pop(document_id, None)

        self._notify("document.completed", {
            "document_id":  document_id,
            "needs_review": result.needs_review,
            "status":       result.status,
        })
        return result

    async def _run(self, doc: Document, options: ExtractOptions) -> ExtractionResult:
        document_id = doc.id
        status = DocumentStatus.PREPROCESSING

        # --- Step 3: storage + PDF inspection --------------------------------
        payload = await self._storage.read_document_bytes(doc.file_name)
        info = await inspect_pdf(payload)

        # --- Step 4: CLASSIFYING --------------------------------------------
        status = await self._advance(document_id, status, DocumentStatus.CLASSIFYING, page_count=info.page_count)
        tier, classification = await self._choose_tier(doc, payload, info.text, options)

        # --- Step 5: EXTRACTING ---------------------------------------------
        spec = self._router.spec_for(tier)
        status = await self._advance(document_id, status, DocumentStatus.EXTRACTING, model_used=spec.model_id)

        is_handwritten = classification in (DocumentType.HANDWRITTEN, DocumentType.MIXED)
        prompt = get_extraction_prompt(is_handwritten, info.page_count > 1)

        response = await self._rate_limiter.with_rate_limit(
            lambda: self._provider.call(prompt, payload, tier)
        )

        if response.usage is not None:
            await self._record_cost(document_id, response.model_id, tier, response.usage, options)
        else:
            logger.warning("Extraction | doc=%s provider returned no usage, cost not recorded", document_id)

        # --- Step 6: parse ---------------------------------------------------
        parsed = parse_extraction_response(response.text)
        if isinstance(parsed, MalformedResponse):
            fields: dict[str, Any] = {name: None for name in FIELD_NAMES}
            scores: dict[str, float] = {}
            raw: dict[str, Any] = {"raw_text": parsed.raw_text, "parse_error": True}
            parse_issues = [f"Response could not be parsed: {parsed.reason}"]
        else:
            fields = parsed.payload.fields()
            scores = dict(parsed.payload.confidence_scores)
            raw = parsed.raw
            parse_issues = []

        # --- Step 7-8: validate + confidence --------------------------------
        issues = parse_issues + validate_fields(fields, scores)
        overall = overall_confidence(scores)
        review = needs_review(issues, scores, self._review_threshold)

        # --- Step 9: persist extracted data ---------------------------------
        row = await self._repository.replace_extracted_data(
            document_id,
            **fields,
            raw_json=raw,
            confidence_scores=scores,
            overall_confidence=overall,
            needs_review=review,
            review_notes="; ".join(issues) if issues else None,
        )

        # --- Step 10: COMPLETED ---------------------------------------------
        await self._advance(
            document_id, status, DocumentStatus.COMPLETED,
            processing_completed_at=utcnow(),
        )
        logger.info(
            "Extraction | doc=%s completed tier=%s overall_confidence=%.2f needs_review=%s issues=%d",
            document_id, tier.value, overall, review, len(issues),
        )
        return ExtractionResult.from_record(document_id, row)

    async def _advance(
        self,
        document_id: str,
        current:     DocumentStatus,
        target:      DocumentStatus,
        **fields:    Any,
    ) -> DocumentStatus:
        status = await self._transition(document_id, current, target, **fields)
        self._last_status[document_id] = status
        return status

    async def _choose_tier(
        self,
        doc:       Document,
        payload:   bytes,
        text_hint: str,
        options:   ExtractOptions,
    ) -> tuple[ModelTier, Optional[DocumentType]]:
        stored = DocumentType(doc.classification) if doc.classification else None

        if options.force_model is not None:
            return ModelTier(options.force_model), stored
        if options.skip_classification:
            return ModelTier.LOW, stored

        try:
            result = await self._classifier.classify(payload, text_hint=text_hint)
            await self._repository.update_document(
                doc.id,
                classification=result.type.value,
                classification_confidence=result.confidence,
            )
        except Exception as exc:
            logger.warning("Extraction | doc=%s classification step failed, assuming TYPED: %s", doc.id, exc)
            return recommend_tier(DocumentType.TYPED), DocumentType.TYPED

        return result.recommended_model, result.type

    async def _record_cost(
        self,
        document_id: str,
        model_id:    str,
        tier:        ModelTier,
        usage:       Any,
        options:     ExtractOptions,
    ) -> None:
        cost = price(usage.input_tokens, usage.output_tokens, tier, options.use_batch_api)
        await self._repository.upsert_cost_metrics(
            document_id,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            model=model_id,
            model_tier=tier.value,
            estimated_cost=cost,
            used_batch_api=options.use_batch_api,
            batch_job_id=options.batch_job_id,
        )
        logger.info(
            "Cost | doc=%s model=%s input=%d output=%d cost=%.6f bulk=%s",
            document_id, model_id, usage.input_tokens, usage.output_tokens, cost, options.use_batch_api,
        )
