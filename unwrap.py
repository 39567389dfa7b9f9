"""
Response unwrapper for free-form model output.

Small models wrap JSON in prose and markdown fences and leave trailing
commas behind. extract_json() peels those layers off in order and returns
None instead of raising, so callers can move on to the next strategy.
"""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",(\s*[\]}])")


def _candidate_parts(response: dict) -> list:
    """Parts of the first candidate, tolerating content given as a bare list."""
    candidates = response.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return []
    first = candidates[0]
    if not isinstance(first, dict):
        return []
    content = first.get("content")
    if isinstance(content, dict):
        parts = content.get("parts")
        return parts if isinstance(parts, list) else []
    if isinstance(content, list):
        return content
    return []


def unwrap_text(text: str) -> Any | None:
    """Decode a JSON object embedded in free-form text.

    Strips ```json fences, keeps the span from the first "{" to the last "}",
    removes trailing commas, then parses. Returns None when nothing parses.
    """
    if not isinstance(text, str):
        return None

    cleaned = _FENCE.sub("", text).strip()

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        logger.debug("No JSON object found in model text")
        return None
    cleaned = cleaned[start : end + 1]

    cleaned = _TRAILING_COMMA.sub(r"\1", cleaned)

    try:
        return json.loads(cleaned)
    except (json.JSONDecodeError, RecursionError):
        logger.warning(f"Model JSON parse failed; first 200 chars: {cleaned[:200]!r}")
        return None


def extract_json(response: Any) -> Any | None:
    """Extract the JSON payload from a generateContent response (or raw text).

    Never raises. None means "try the next strategy or fall back".
    """
    if isinstance(response, str):
        return unwrap_text(response)
    if not isinstance(response, dict):
        return None

    parts = _candidate_parts(response)
    if not parts:
        logger.warning("Gemini response has no candidate content")
        return None

    raw_text = ""
    for part in parts:
        if not isinstance(part, dict):
            continue
        if part.get("json") is not None:
            return part["json"]
        if isinstance(part.get("text"), str):
            raw_text += part["text"] + "\n"

    if not raw_text.strip():
        return None
    return unwrap_text(raw_text)
