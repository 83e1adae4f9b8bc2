"""
Observability Tracing — LangSmith integration + @traced decorator

LangSmith (hosted):
  - Activated purely through environment variables; LangChain reads
    LANGCHAIN_TRACING_V2 / LANGCHAIN_API_KEY / LANGCHAIN_PROJECT on import.
  - Every ChatOpenAI call made by the extraction provider is traced
    automatically once enabled.

Decorator `@traced(name)`:
  Instruments any async function with timing and error logging. Works
  whether or not LangSmith is configured.

Environment variables:
  LANGSMITH_API_KEY=ls__...
  LANGSMITH_PROJECT=docintake
"""

from __future__ import annotations

import functools
import logging
import os
import time
from typing import Any, Callable, Coroutine, TypeVar

from docintake.core.config import Settings

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Coroutine[Any, Any, Any]])


# ---------------------------------------------------------------------------
# TracingConfig — initialise at app startup
# ---------------------------------------------------------------------------

class TracingConfig:
    """
    Call once at application startup::

        TracingConfig.init(settings)
    """

    _initialised: bool = False

    @classmethod
    def init(cls, settings: Settings) -> None:
        if cls._initialised:
            return
        cls._initialised = True

        if settings.langsmith_api_key and not os.environ.get("LANGCHAIN_API_KEY"):
            os.environ["LANGCHAIN_TRACING_V2"] = "true"
            os.environ["LANGCHAIN_API_KEY"]    = settings.langsmith_api_key
            os.environ["LANGCHAIN_PROJECT"]    = settings.langsmith_project
            logger.info("LangSmith tracing enabled | project=%s", settings.langsmith_project)
        elif os.environ.get("LANGCHAIN_TRACING_V2") == "true":
            logger.info(
                "LangSmith tracing active (from env) | project=%s",
                os.environ.get("LANGCHAIN_PROJECT", "default"),
            )
        else:
            logger.debug("LangSmith tracing disabled (no LANGSMITH_API_KEY)")


# ---------------------------------------------------------------------------
# @traced decorator
# ---------------------------------------------------------------------------

def traced(name: str) -> Callable[[F], F]:
    """
    Log duration and failures of an async function.

    Usage::

        @traced("extraction.extract")
        async def extract(self, document_id: str) -> ExtractionResult: ...
    """
    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            t0 = time.perf_counter()
            try:
                result = await fn(*args, **kwargs)
            except Exception as exc:
                elapsed = (time.perf_counter() - t0) * 1000
                logger.warning(
                    "Trace | span=%s status=error elapsed=%.1fms error=%s: %s",
                    name, elapsed, type(exc).__name__, exc,
                )
                raise
            elapsed = (time.perf_counter() - t0) * 1000
            logger.debug("Trace | span=%s status=ok elapsed=%.1fms", name, elapsed)
            return result

        return wrapper  # type: ignore[return-value]

    return decorator
