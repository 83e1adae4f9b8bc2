"""
Field validation and review policy.

Format rules (each violation is one human-readable issue string):

    birthday, date   DD.MM.YYYY
    postal_code      exactly 5 digits
    time             HH:MM
    stamp            BB | AB | FK | S, comma-separated combinations allowed

needs_review is true when any issue exists OR any single confidence score
is below REVIEW_THRESHOLD (0.7). Scores below LOW_CONFIDENCE_NOTE (0.5)
additionally add a review note.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional

DATE_RE        = re.compile(r"\d{2}\.\d{2}\.\d{4}")
POSTAL_CODE_RE = re.compile(r"\d{5}")
TIME_RE        = re.compile(r"\d{2}:\d{2}")

STAMP_CODES = frozenset({"BB", "AB", "FK", "S"})

REVIEW_THRESHOLD      = 0.7
LOW_CONFIDENCE_NOTE   = 0.5
DEFAULT_CONFIDENCE    = 0.5


def is_valid_date(value: str) -> bool:
    return bool(DATE_RE.fullmatch(value))


def is_valid_postal_code(value: str) -> bool:
    return bool(POSTAL_CODE_RE.fullmatch(value))


def is_valid_time(value: str) -> bool:
    return bool(TIME_RE.fullmatch(value))


def is_valid_stamp(value: str) -> bool:
    codes = [c.strip().upper() for c in value.split(",")]
    return bool(codes) and all(c in STAMP_CODES for c in codes)


def _numeric_scores(scores: Optional[Mapping[str, Any]]) -> dict[str, float]:
    if not scores:
        return {}
    return {
        k: float(v) for k, v in scores.items()
        if isinstance(v, (int, float)) and not isinstance(v, bool)
    }


def validate_fields(
    fields: Mapping[str, Any],
    confidence_scores: Optional[Mapping[str, Any]] = None,
) -> list[str]:
    issues: list[str] = []

    birthday = fields.get("birthday")
    if birthday and not is_valid_date(birthday):
        issues.append(f"Birthday format invalid: {birthday}")

    date = fields.get("date")
    if date and not is_valid_date(date):
        issues.append(f"Date format invalid: {date}")

    postal_code = fields.get("postal_code")
    if postal_code and not is_valid_postal_code(postal_code):
        issues.append(f"Postal code format invalid: {postal_code}")

    time_value = fields.get("time")
    if time_value and not is_valid_time(time_value):
        issues.append(f"Time format invalid: {time_value}")

    stamp = fields.get("stamp")
    if stamp and not is_valid_stamp(stamp):
        issues.append(f"Stamp value invalid: {stamp}")

    for name, score in _numeric_scores(confidence_scores).items():
        if score < LOW_CONFIDENCE_NOTE:
            issues.append(f"Low confidence for {name}: {score}")

    return issues


def overall_confidence(confidence_scores: Optional[Mapping[str, Any]]) -> float:
    values = list(_numeric_scores(confidence_scores).values())
    if not values:
        return DEFAULT_CONFIDENCE
    return sum(values) / len(values)


def needs_review(
    issues: list[str],
    confidence_scores: Optional[Mapping[str, Any]],
    threshold: float = REVIEW_THRESHOLD,
) -> bool:
    if issues:
        return True
    return any(score < threshold for score in _numeric_scores(confidence_scores).values())


def suggest_file_name(fields: Mapping[str, Any]) -> str:
    """date_First_Last_signed.pdf, falling back to document.pdf"""
    parts: list[str] = []

    date = fields.get("date")
    if date:
        parts.append(str(date).replace("/", "-"))

    name = fields.get("name")
    if name:
        letters_only = re.sub(r"[^a-zA-Z\s]", "", str(name))
        words = [w for w in letters_only.split() if w][:2]
        if words:
            parts.append("_".join(words))

    if fields.get("signed"):
        parts.append("signed")

    if not parts:
        parts.append("document")
    return "_".join(parts) + ".pdf"
