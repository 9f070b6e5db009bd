"""Tolerant parsing of model output into transcript and notes.

The model is asked for ``{"transcript": "...", "notes": [...]}`` but that is
an instruction, not a contract. Parsing runs in layers and never raises:

1. strip a surrounding code fence,
2. parse the whole text as a JSON object,
3. parse the span between the first ``{`` and the last ``}``,
4. fall back to the raw text as transcript and flag it.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)

_LEADING_FENCE = re.compile(r"^```[a-zA-Z0-9_-]*[ \t]*\r?\n?")
_TRAILING_FENCE = re.compile(r"\r?\n?```\s*$")
_BULLET_PREFIX = re.compile(r"^[\s\-•]+")


@dataclass(frozen=True)
class ParsedResponse:
    transcript: str
    notes: Tuple[str, ...]
    raw_response_fallback: Optional[str] = None


def strip_code_fence(text: str) -> str:
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = _LEADING_FENCE.sub("", cleaned, count=1)
        cleaned = _TRAILING_FENCE.sub("", cleaned, count=1)
    elif cleaned.endswith("```"):
        cleaned = _TRAILING_FENCE.sub("", cleaned, count=1)
    return cleaned.strip()


def normalize_notes(value: Any) -> Tuple[str, ...]:
    """Coerce a ``notes`` field into a tuple of non-empty strings."""
    if value is None:
        return ()
    if isinstance(value, str):
        lines = (_BULLET_PREFIX.sub("", line).strip() for line in value.splitlines())
        return tuple(line for line in lines if line)
    if isinstance(value, (list, tuple)):
        items = ("" if item is None else str(item).strip() for item in value)
        return tuple(item for item in items if item)
    text = str(value).strip()
    return (text,) if text else ()


def _parse_object(text: str) -> Optional[ParsedResponse]:
    try:
        data = json.loads(text)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    transcript = data.get("transcript")
    transcript = transcript.strip() if isinstance(transcript, str) else ""
    return ParsedResponse(transcript=transcript, notes=normalize_notes(data.get("notes")))


def parse_response(raw_text: str) -> ParsedResponse:
    cleaned = strip_code_fence(raw_text)

    parsed = _parse_object(cleaned)
    if parsed is not None:
        return parsed

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end != -1 and start < end:
        parsed = _parse_object(cleaned[start:end + 1])
        if parsed is not None:
            logger.debug("Recovered JSON object embedded in model output")
            return parsed

    logger.warning("Model output is not structured JSON; returning raw text")
    return ParsedResponse(transcript=cleaned, notes=(), raw_response_fallback=cleaned)
