"""
Document Classifier — visual complexity tag + model tier recommendation

    classify(sample, text_hint)
      │
      ├─ text_hint looks like clean typed text?  → TYPED / 0.8 / LOW (no model call)
      │
      └─ low-tier model call (through the RateLimiter) with CLASSIFICATION_PROMPT
           → {"type", "confidence", "reasoning"}
           → recommend_tier(type)

Any failure (provider error, throttling budget spent, unparseable answer)
degrades to MIXED / 0.5 / HIGH: never fail toward the cheap tier.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from docintake.extraction.parsing import parse_classification_response
from docintake.extraction.prompts import CLASSIFICATION_PROMPT
from docintake.llm.gateway import ExtractionProvider
from docintake.llm.rate_limiter import RateLimiter
from docintake.llm.router import ModelTier, recommend_tier
from docintake.models.documents import DocumentType
from docintake.observability.tracing import traced

logger = logging.getLogger(__name__)

QUICK_CLASSIFY_MIN_CHARS = 50
QUICK_CLASSIFY_MIN_WORDS = 20
QUICK_CLASSIFY_CONFIDENCE = 0.8


@dataclass
class ClassificationResult:
    type:              DocumentType
    confidence:        float
    recommended_model: ModelTier
    from_text:         bool = False


FALLBACK_CLASSIFICATION = ClassificationResult(
    type=DocumentType.MIXED,
    confidence=0.5,
    recommended_model=ModelTier.HIGH,
)


def quick_classify_from_text(text: Optional[str]) -> Optional[DocumentType]:
    """
    Zero-cost hint from the PDF text layer.

    TYPED when there is plenty of text with ordinary word lengths; None
    means inconclusive and the model should decide.
    """
    if not text or len(text) < QUICK_CLASSIFY_MIN_CHARS:
        return None

    word_count = len(text.split())
    if word_count == 0:
        return None
    avg_word_length = len(text) / word_count

    if 3 < avg_word_length < 12 and word_count > QUICK_CLASSIFY_MIN_WORDS:
        return DocumentType.TYPED
    return None


class Classifier:

    def __init__(
        self,
        provider:      ExtractionProvider,
        rate_limiter:  RateLimiter,
        use_text_hint: bool = True,
    ) -> None:
        self._provider      = provider
        self._rate_limiter  = rate_limiter
        self._use_text_hint = use_text_hint

    @traced("classifier.classify")
    async def classify(
        self,
        sample:    bytes,
        text_hint: Optional[str] = None,
        mime_type: str = "application/pdf",
    ) -> ClassificationResult:
        if self._use_text_hint and quick_classify_from_text(text_hint) is DocumentType.TYPED:
            logger.info("Classifier | text layer looks typed, skipping model call")
            return ClassificationResult(
                type=DocumentType.TYPED,
                confidence=QUICK_CLASSIFY_CONFIDENCE,
                recommended_model=recommend_tier(DocumentType.TYPED),
                from_text=True,
            )

        try:
            response = await self._rate_limiter.with_rate_limit(
                lambda: self._provider.call(CLASSIFICATION_PROMPT, sample, ModelTier.LOW, mime_type)
            )
            doc_type, confidence = parse_classification_response(response.text)
        except Exception as exc:
            logger.warning(
                "Classifier | failed, defaulting to %s/%s: %s: %s",
                FALLBACK_CLASSIFICATION.type.value,
                FALLBACK_CLASSIFICATION.recommended_model.value,
                type(exc).__name__, exc,
            )
            return ClassificationResult(
                type=FALLBACK_CLASSIFICATION.type,
                confidence=FALLBACK_CLASSIFICATION.confidence,
                recommended_model=FALLBACK_CLASSIFICATION.recommended_model,
            )

        tier = recommend_tier(doc_type)
        logger.info(
            "Classifier | type=%s confidence=%.2f tier=%s",
            doc_type.value, confidence, tier.value,
        )
        return ClassificationResult(type=doc_type, confidence=confidence, recommended_model=tier)
