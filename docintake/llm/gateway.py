"""
Extraction Provider — the single call site for the multimodal model

    ExtractionProvider.call(prompt, payload, tier)
         │
         ▼
    ModelRouter.build_llm(spec)      ← ChatOpenAI for the tier
         │
         ▼
    llm.ainvoke([HumanMessage(text + document)])   (asyncio.wait_for timeout)
         │
         ▼
    ProviderResponse(text, usage, model_id, latency_ms)

The document is sent inline as a base64 data URL next to the prompt text.
Vendor exceptions never leave this module:

    openai.RateLimitError / status 429   → RateLimitedError(retry_after)
    anything else                        → ProviderError

Callers wrap call() in RateLimiter.with_rate_limit(); this module performs
no retries of its own.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import openai
from langchain_core.messages import HumanMessage

from docintake.core.exceptions import ProviderError, RateLimitedError
from docintake.llm.rate_limiter import is_rate_limit_error
from docintake.llm.router import ModelRouter, ModelTier

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------

@dataclass
class TokenUsage:
    input_tokens:  int
    output_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ProviderResponse:
    text:       str
    usage:      Optional[TokenUsage]
    model_id:   str
    tier:       ModelTier
    latency_ms: float = 0.0


class ExtractionProvider(Protocol):
    """Anything that turns (prompt, document bytes, tier) into model text."""

    async def call(
        self,
        prompt:    str,
        payload:   bytes,
        tier:      ModelTier,
        mime_type: str = "application/pdf",
    ) -> ProviderResponse: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _retry_after_seconds(exc: BaseException) -> Optional[float]:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _message_text(content: Any) -> str:
    """AIMessage.content may be a str or a list of content parts."""
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


def _usage_from(message: Any) -> Optional[TokenUsage]:
    usage = getattr(message, "usage_metadata", None)
    if not usage:
        return None
    return TokenUsage(
        input_tokens=int(usage.get("input_tokens", 0) or 0),
        output_tokens=int(usage.get("output_tokens", 0) or 0),
    )


# ---------------------------------------------------------------------------
# ChatExtractionProvider
# ---------------------------------------------------------------------------

class ChatExtractionProvider:
    """
    ExtractionProvider backed by LangChain's ChatOpenAI.

    Usage::

        provider = ChatExtractionProvider(router, timeout=120)
        response = await provider.call(prompt, pdf_bytes, ModelTier.LOW)
    """

    def __init__(self, router: ModelRouter, timeout: float = 120.0) -> None:
        self._router  = router
        self._timeout = timeout

    async def call(
        self,
        prompt:    str,
        payload:   bytes,
        tier:      ModelTier,
        mime_type: str = "application/pdf",
    ) -> ProviderResponse:
        spec = self._router.spec_for(tier)
        llm  = self._router.build_llm(spec)

        encoded = base64.b64encode(payload).decode("ascii")
        message = HumanMessage(content=[
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
        ])

        t0 = time.perf_counter()
        try:
            result = await asyncio.wait_for(llm.ainvoke([message]), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderError(
                f"Provider call timed out after {self._timeout:.0f}s (model={spec.model_id})"
            ) from exc
        except Exception as exc:
            if isinstance(exc, openai.RateLimitError) or is_rate_limit_error(exc):
                raise RateLimitedError(str(exc), retry_after=_retry_after_seconds(exc)) from exc
            raise ProviderError(f"{type(exc).__name__}: {exc}") from exc

        latency = (time.perf_counter() - t0) * 1000
        usage   = _usage_from(result)

        logger.info(
            "Provider call | model=%s tier=%s input_tokens=%s output_tokens=%s latency=%.0fms",
            spec.model_id, spec.tier.value,
            usage.input_tokens if usage else "-",
            usage.output_tokens if usage else "-",
            latency,
        )
        return ProviderResponse(
            text=_message_text(result.content),
            usage=usage,
            model_id=spec.model_id,
            tier=spec.tier,
            latency_ms=latency,
        )
