"""
Model response parsing — two stages

  1. find_json_object(text)
       Prefer the body of a ```json fenced block; otherwise take the first
       balanced {...} span in the free text. Brace matching skips braces
       inside JSON string literals.

  2. Schema validation (pydantic)
       The candidate is decoded and validated against ExtractionPayload.

parse_extraction_response() never raises: it returns either
ParsedExtraction or MalformedResponse, and the caller decides what a
malformed response means for review.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from docintake.models.documents import DocumentType

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


# ---------------------------------------------------------------------------
# Stage 1 — candidate JSON span
# ---------------------------------------------------------------------------

def _balanced_object(text: str) -> Optional[str]:
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # unbalanced from this brace; try the next one
        start = text.find("{", start + 1)
    return None


def find_json_object(text: str) -> Optional[str]:
    if not text:
        return None
    for block in _FENCE_RE.findall(text):
        candidate = _balanced_object(block)
        if candidate:
            return candidate
    return _balanced_object(text)


def _load_object(text: str) -> dict[str, Any]:
    candidate = find_json_object(text)
    if candidate is None:
        raise ValueError("no JSON object found in response")
    data = json.loads(candidate)
    if not isinstance(data, dict):
        raise ValueError("response JSON is not an object")
    return data


# ---------------------------------------------------------------------------
# Stage 2 — extraction schema
# ---------------------------------------------------------------------------

FIELD_NAMES = (
    "name", "address", "postal_code", "city", "birthday",
    "date", "time", "handwritten", "signed", "stamp",
)


class ExtractionPayload(BaseModel):
    """Fields the extraction prompt asks for; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name:        Optional[str] = None
    address:     Optional[str] = None
    postal_code: Optional[str] = Field(
        None, validation_alias=AliasChoices("postalcode", "postal_code"),
    )
    city:        Optional[str] = None
    birthday:    Optional[str] = None
    date:        Optional[str] = None
    time:        Optional[str] = None
    handwritten: Optional[bool] = None
    signed:      Optional[bool] = None
    stamp:       Optional[str] = None
    confidence_scores: dict[str, float] = Field(default_factory=dict)

    @field_validator(
        "name", "address", "postal_code", "city", "birthday", "date", "time", "stamp",
        mode="before",
    )
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        # models sometimes emit postal codes as numbers
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("confidence_scores", mode="before")
    @classmethod
    def _numeric_scores(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError("confidence_scores must be an object")
        return {
            ("postal_code" if key == "postalcode" else key): score
            for key, score in value.items()
            if isinstance(score, (int, float)) and not isinstance(score, bool)
        }

    def fields(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in FIELD_NAMES}


@dataclass
class ParsedExtraction:
    payload: ExtractionPayload
    raw:     dict[str, Any] = field(default_factory=dict)


@dataclass
class MalformedResponse:
    raw_text: str
    reason:   str


ParseResult = Union[ParsedExtraction, MalformedResponse]


def parse_extraction_response(text: str) -> ParseResult:
    try:
        data = _load_object(text)
        payload = ExtractionPayload.model_validate(data)
    except (ValueError, ValidationError) as exc:
        # json.JSONDecodeError is a ValueError
        logger.warning("Response parse failed | reason=%s", exc)
        return MalformedResponse(raw_text=text, reason=str(exc))
    return ParsedExtraction(payload=payload, raw=data)


# ---------------------------------------------------------------------------
# Classification response
# ---------------------------------------------------------------------------

def parse_classification_response(text: str) -> tuple[DocumentType, float]:
    """
    Returns (type, confidence). Unknown types map to TYPED; confidence is
    clamped to [0, 1] and defaults to 0.5 when not a number.

    Raises ValueError when the text holds no JSON object.
    """
    data = _load_object(text)

    raw_type = str(data.get("type") or "").strip().upper()
    try:
        doc_type = DocumentType(raw_type)
    except ValueError:
        doc_type = DocumentType.TYPED

    confidence = data.get("confidence")
    if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
        confidence = min(1.0, max(0.0, float(confidence)))
    else:
        confidence = 0.5

    return doc_type, confidence
