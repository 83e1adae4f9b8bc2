"""
Prompt catalogue for classification and field extraction.

Prompt selection (get_extraction_prompt):

    multi-page          → MULTI_PAGE_PROMPT       (wins over handwriting)
    handwritten / mixed → HANDWRITTEN_PROMPT
    otherwise           → EXTRACTION_PROMPT

All extraction prompts ask for the same JSON object; see parsing.py for the
schema the response is validated against.
"""

from __future__ import annotations

CLASSIFICATION_PROMPT = """\
You classify scanned and digital documents by how their text was produced.
Look at the attached document and decide which category fits best:

- HANDWRITTEN: most of the content is written by hand (notes, signatures, filled-in forms)
- TYPED: most of the content is machine printed, including forms with typed entries
- MIXED: substantial amounts of both handwritten and printed content
- SCANNED: the scan quality is too poor to tell reliably

Also give your confidence between 0.0 and 1.0.

Answer with JSON only, exactly in this shape:
{"type": "HANDWRITTEN" | "TYPED" | "MIXED" | "SCANNED", "confidence": 0.85, "reasoning": "one short sentence"}
"""

_FIELD_RULES = """\
Extract the following fields. Use null for anything that is not present and
never invent values. Give every extracted field a confidence between 0.0 and 1.0.

Format rules:
- Dates (birthday, date) use DD.MM.YYYY
- Times use 24-hour HH:MM
- Postal codes are exactly 5 digits
- stamp is one of BB, AB, FK, S, or a comma-separated combination such as "BB,AB"
- handwritten is true when the document is mainly handwritten
- signed is true when a signature is present

Keep names exactly as written, including umlauts. Addresses include street
and house number. Lower the confidence when the text is hard to read.

Answer with JSON only, exactly in this shape:
{
  "name": "string or null",
  "address": "string or null",
  "postalcode": "5 digits or null",
  "city": "string or null",
  "birthday": "DD.MM.YYYY or null",
  "date": "DD.MM.YYYY or null",
  "time": "HH:MM or null",
  "handwritten": true,
  "signed": false,
  "stamp": "BB|AB|FK|S combination or null",
  "confidence_scores": {
    "name": 0.0, "address": 0.0, "postalcode": 0.0, "city": 0.0,
    "birthday": 0.0, "date": 0.0, "time": 0.0, "signed": 0.0, "stamp": 0.0
  }
}
"""

EXTRACTION_PROMPT = (
    "You extract structured data from documents with high precision.\n\n" + _FIELD_RULES
)

HANDWRITTEN_PROMPT = """\
This document contains handwriting that may be hard to read.

- Watch for digits that are easy to confuse (1/7, 4/9, 5/6, 0/6)
- Watch for letters that are easy to confuse (a/o, u/n, r/n)
- Umlauts may be written out as ae, oe, ue
- When several readings are possible, pick the one that fits the context
  and lower the confidence for that field
- Postal codes must be plausible 5-digit German postal codes

""" + EXTRACTION_PROMPT

MULTI_PAGE_PROMPT = """\
This document spans several pages. Read every page and combine the
information into one result. When a field appears on more than one page,
use the most complete and legible occurrence.

""" + EXTRACTION_PROMPT


def get_extraction_prompt(is_handwritten: bool, is_multi_page: bool) -> str:
    if is_multi_page:
        return MULTI_PAGE_PROMPT
    return HANDWRITTEN_PROMPT if is_handwritten else EXTRACTION_PROMPT
