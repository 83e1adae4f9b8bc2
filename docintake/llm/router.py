"""
Model Router — two-tier model catalogue and routing policy

  HIGH  accurate / expensive   (handwriting, mixed content, scans)
  LOW   fast / cheap           (clean typed text only)

Routing is a pure function of the document type: only TYPED documents go
to the low tier. Anything ambiguous is sent to the high tier, trading cost
for accuracy; an unknown classification never falls toward the cheap tier.

Both tiers are served by the same OpenAI-compatible endpoint, so one
LangChain ChatOpenAI builder covers them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from langchain_core.language_models.chat_models import BaseChatModel

from docintake.core.config import Settings
from docintake.models.documents import DocumentType

logger = logging.getLogger(__name__)


class ModelTier(str, Enum):
    HIGH = "high"
    LOW  = "low"


@dataclass
class ModelSpec:
    """Static metadata for one model tier."""
    tier:      ModelTier
    model_id:  str
    description: str = ""


_TIER_FOR_TYPE: dict[DocumentType, ModelTier] = {
    DocumentType.HANDWRITTEN: ModelTier.HIGH,
    DocumentType.MIXED:       ModelTier.HIGH,
    DocumentType.SCANNED:     ModelTier.HIGH,
    DocumentType.TYPED:       ModelTier.LOW,
}


def recommend_tier(doc_type: Optional[DocumentType]) -> ModelTier:
    """TYPED → LOW; everything else (including unknown) → HIGH."""
    if doc_type is None:
        return ModelTier.HIGH
    return _TIER_FOR_TYPE.get(doc_type, ModelTier.HIGH)


class ModelRouter:
    """
    Maps tiers to concrete model ids and builds LangChain chat models.

    Usage::

        router = ModelRouter(settings)
        spec = router.spec_for(router.recommend(DocumentType.TYPED))
        llm  = router.build_llm(spec)
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._specs: dict[ModelTier, ModelSpec] = {
            ModelTier.HIGH: ModelSpec(
                tier=ModelTier.HIGH,
                model_id=settings.high_tier_model,
                description="high accuracy — handwriting, mixed and scanned documents",
            ),
            ModelTier.LOW: ModelSpec(
                tier=ModelTier.LOW,
                model_id=settings.low_tier_model,
                description="fast and cheap — clean typed documents",
            ),
        }
        self._llm_cache: dict[ModelTier, BaseChatModel] = {}

    def spec_for(self, tier: ModelTier) -> ModelSpec:
        return self._specs[ModelTier(tier)]

    @staticmethod
    def recommend(doc_type: Optional[DocumentType]) -> ModelTier:
        return recommend_tier(doc_type)

    def build_llm(self, spec: ModelSpec) -> BaseChatModel:
        """
        Instantiate (once per tier) the LangChain chat model for a ModelSpec.

        max_retries=0: throttling retries belong to the RateLimiter, so the
        SDK must surface 429s instead of retrying them silently.
        """
        cached = self._llm_cache.get(spec.tier)
        if cached is not None:
            return cached

        from langchain_openai import ChatOpenAI

        llm = ChatOpenAI(
            model=spec.model_id,
            api_key=self._settings.provider_api_key or "not-configured",
            base_url=self._settings.provider_base_url,
            temperature=self._settings.llm_temperature,
            max_tokens=self._settings.llm_max_tokens,
            timeout=self._settings.provider_timeout_seconds,
            max_retries=0,
        )
        self._llm_cache[spec.tier] = llm
        logger.info("ModelRouter | built llm tier=%s model=%s", spec.tier.value, spec.model_id)
        return llm
