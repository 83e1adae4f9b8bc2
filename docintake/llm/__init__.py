"""
LLM Package — provider access for the extraction pipeline

Provides:
  RateLimiter            — sliding-window admission + 429 backoff/retry
  ModelRouter            — high/low tier → concrete model id
  ChatExtractionProvider — multimodal call via an OpenAI-compatible endpoint

Usage::

    from docintake.llm import ChatExtractionProvider, ModelRouter, ModelTier, RateLimiter

    limiter = RateLimiter()
    provider = ChatExtractionProvider(ModelRouter(settings))
    response = await limiter.with_rate_limit(
        lambda: provider.call(prompt, pdf_bytes, ModelTier.LOW)
    )
"""

from docintake.llm.gateway import (
    ChatExtractionProvider,
    ExtractionProvider,
    ProviderResponse,
    TokenUsage,
)
from docintake.llm.rate_limiter import RateLimiter, RateLimitStatus, is_rate_limit_error
from docintake.llm.router import ModelRouter, ModelSpec, ModelTier, recommend_tier

__all__ = [
    "ChatExtractionProvider",
    "ExtractionProvider",
    "ModelRouter",
    "ModelSpec",
    "ModelTier",
    "ProviderResponse",
    "RateLimitStatus",
    "RateLimiter",
    "TokenUsage",
    "is_rate_limit_error",
    "recommend_tier",
]
