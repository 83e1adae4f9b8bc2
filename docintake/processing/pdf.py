"""
PDF inspection for the PREPROCESSING step.

Reads page count and the native text layer with pypdf. Inspection is
best-effort: a PDF pypdf cannot parse is still sent to the extraction
model as-is, so failures degrade to page_count=1 and empty text rather
than failing the document.
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Only the first pages feed the text heuristic; no need to scrape a 200-page scan
MAX_TEXT_PAGES = 3


@dataclass
class PdfInfo:
    page_count: int
    text: str
    readable: bool = True


def _inspect_sync(data: bytes) -> PdfInfo:
    from pypdf import PdfReader

    reader = PdfReader(io.BytesIO(data))
    page_count = len(reader.pages)
    pages = [page.extract_text() or "" for page in reader.pages[:MAX_TEXT_PAGES]]
    return PdfInfo(page_count=max(page_count, 1), text="\n\n".join(pages))


async def inspect_pdf(data: bytes) -> PdfInfo:
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, _inspect_sync, data)
    except Exception as exc:
        logger.warning("PDF inspection failed (non-fatal): %s", exc)
        return PdfInfo(page_count=1, text="", readable=False)
