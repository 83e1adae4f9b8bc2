"""
Root conftest.py — Shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  function-scoped : settings, fake_provider, context, async_client

Environment strategy:
  - Every test gets its own SQLite file under tmp_path (aiosqlite), so
    concurrent queue workers use separate connections.
  - The extraction provider is a scripted FakeProvider; no network calls.
  - Uploaded PDFs are real (blank) PDFs written with pypdf.

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only (fast, no I/O)
  pytest -m integration           # API + end-to-end pipeline
  pytest tests/unit/test_rate_limiter.py
"""

from __future__ import annotations

import asyncio
import io
import json
import os
import uuid
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional, Union

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any app imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("DATABASE_URL",     "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("UPLOAD_DIR",       "./.test-uploads")
os.environ.setdefault("PROVIDER_API_KEY", "test-key")
os.environ.setdefault("WEBHOOK_URLS",     "")
os.environ.setdefault("LANGSMITH_API_KEY", "")
os.environ.setdefault("APP_ENV",          "development")
os.environ.setdefault("DEBUG",            "false")

from pypdf import PdfWriter  # noqa: E402

from docintake.core.config import Settings  # noqa: E402
from docintake.core.context import PipelineContext, build_context  # noqa: E402
from docintake.extraction.prompts import CLASSIFICATION_PROMPT  # noqa: E402
from docintake.llm.gateway import ProviderResponse, TokenUsage  # noqa: E402
from docintake.llm.router import ModelTier  # noqa: E402
from docintake.models.documents import Document, DocumentStatus  # noqa: E402

HIGH_MODEL = "gemini-2.5-pro"
LOW_MODEL  = "gemini-2.5-flash"


# ─────────────────────────────────────────────────────────────────────────────
# Canned model responses
# ─────────────────────────────────────────────────────────────────────────────

GOOD_EXTRACTION: dict[str, Any] = {
    "name":        "Anna Schmidt",
    "address":     "Hauptstrasse 5",
    "postalcode":  "10115",
    "city":        "Berlin",
    "birthday":    "01.02.1980",
    "date":        "15.03.2024",
    "time":        "09:30",
    "handwritten": False,
    "signed":      True,
    "stamp":       "BB",
    "confidence_scores": {
        "name":       0.95,
        "address":    0.90,
        "postalcode": 0.92,
        "city":       0.93,
        "birthday":   0.90,
        "date":       0.94,
    },
}

TYPED_CLASSIFICATION       = '{"type": "TYPED", "confidence": 0.92}'
HANDWRITTEN_CLASSIFICATION = '{"type": "HANDWRITTEN", "confidence": 0.88}'


def extraction_json(**overrides: Any) -> str:
    """GOOD_EXTRACTION with top-level keys replaced, as model text."""
    data = dict(GOOD_EXTRACTION)
    data.update(overrides)
    return "```json\n" + json.dumps(data) + "\n```"


def make_pdf(pages: int = 1) -> bytes:
    """Blank PDF with `pages` pages (no text layer)."""
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=612, height=792)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


# ─────────────────────────────────────────────────────────────────────────────
# Scripted extraction provider
# ─────────────────────────────────────────────────────────────────────────────

Scripted = Union[str, BaseException]


@dataclass
class ProviderCall:
    prompt: str
    tier:   ModelTier

    @property
    def is_classification(self) -> bool:
        return self.prompt == CLASSIFICATION_PROMPT


class FakeProvider:
    """
    ExtractionProvider double.

    Extraction calls consume `extraction` in order (then fall back to
    `default_extraction`); classification calls always answer
    `classification`. Scripted exceptions are raised instead of answering.
    """

    def __init__(
        self,
        extraction:     Optional[list[Scripted]] = None,
        classification: Scripted = TYPED_CLASSIFICATION,
        usage:          Optional[TokenUsage] = TokenUsage(input_tokens=1000, output_tokens=200),
        delay:          float = 0.0,
    ) -> None:
        self.extraction         = list(extraction or [])
        self.default_extraction = extraction_json()
        self.classification     = classification
        self.usage              = usage
        self.delay              = delay
        self.calls: list[ProviderCall] = []

    @property
    def extraction_calls(self) -> list[ProviderCall]:
        return [c for c in self.calls if not c.is_classification]

    @property
    def classification_calls(self) -> list[ProviderCall]:
        return [c for c in self.calls if c.is_classification]

    async def call(
        self,
        prompt:    str,
        payload:   bytes,
        tier:      ModelTier,
        mime_type: str = "application/pdf",
    ) -> ProviderResponse:
        self.calls.append(ProviderCall(prompt=prompt, tier=tier))
        if self.delay:
            await asyncio.sleep(self.delay)

        if prompt == CLASSIFICATION_PROMPT:
            item: Scripted = self.classification
        elif self.extraction:
            item = self.extraction.pop(0)
        else:
            item = self.default_extraction

        if isinstance(item, BaseException):
            raise item
        return ProviderResponse(
            text=item,
            usage=self.usage,
            model_id=HIGH_MODEL if tier is ModelTier.HIGH else LOW_MODEL,
            tier=tier,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Controllable clock for the rate limiter
# ─────────────────────────────────────────────────────────────────────────────

class FakeClock:
    """Monotonic clock whose sleep() advances time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


# ─────────────────────────────────────────────────────────────────────────────
# Settings + pipeline context
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        upload_dir=str(tmp_path / "uploads"),
        provider_api_key="test-key",
        high_tier_model=HIGH_MODEL,
        low_tier_model=LOW_MODEL,
        queue_concurrency=5,
        queue_max_retries=3,
        queue_retry_delay_seconds=0.0,
        sync_batch_timeout_seconds=30.0,
        webhook_urls="",
    )


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest_asyncio.fixture
async def context(settings: Settings, fake_provider: FakeProvider) -> AsyncGenerator[PipelineContext, None]:
    ctx = await build_context(settings, provider=fake_provider)
    yield ctx
    await ctx.aclose()


@pytest_asyncio.fixture
async def async_client(context: PipelineContext) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX client over the ASGI app, bound to the test context."""
    from docintake.main import create_app

    app = create_app(context)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def create_document(
    ctx:    PipelineContext,
    pages:  int = 1,
    status: DocumentStatus = DocumentStatus.PENDING,
    **fields: Any,
) -> Document:
    """Store a blank PDF and insert its documents row."""
    file_name = f"{uuid.uuid4().hex}.pdf"
    data = make_pdf(pages)
    file_hash = await ctx.storage.save_document_bytes(file_name, data)
    return await ctx.repository.create_document(
        file_name=file_name,
        original_name=fields.pop("original_name", "scan.pdf"),
        file_size=len(data),
        file_hash=file_hash,
        status=status.value,
        **fields,
    )
