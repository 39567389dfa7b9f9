"""
Specification-name normalization.

Stage 1 and Stage 2 name the same specification differently ("Sheet
Thickness" vs "Thk", "Perforation Size" vs "Hole Size"). Every cross-stage
comparison goes through the match key built here, so this module is the
single equality oracle for "the same specification".

The rule table is data: ordered (regex, replacement) pairs applied to the
lower-cased name. It can be overridden from a JSON file.
"""

import json
import logging
import re
from collections.abc import Iterable, Sequence
from pathlib import Path

logger = logging.getLogger(__name__)

# Ordered (pattern, replacement) pairs. Vocabulary that sellers and the model
# attach inconsistently is stripped; near-synonyms are rewritten to one form.
NAME_RULES: tuple[tuple[str, str], ...] = (
    (r"sheet|plate|material", ""),
    (r"perforation", "hole"),
    (r"thk", "thickness"),
    (r"type", "shape"),
)

_WHITESPACE = re.compile(r"\s+")

# Rewrites can expose a new match ("thkheet" -> "thicknessheet"), so rules are
# re-applied until the string is stable. Bounded in case a custom table cycles.
_MAX_PASSES = 5


def load_name_rules(path: str | Path) -> tuple[tuple[str, str], ...]:
    """Load a rule table from a JSON list of [pattern, replacement] pairs."""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    rules: list[tuple[str, str]] = []
    for entry in raw:
        if not isinstance(entry, (list, tuple)) or len(entry) != 2:
            raise ValueError(f"Invalid normalization rule in {path}: {entry!r}")
        pattern, replacement = entry
        re.compile(pattern)  # fail fast on a bad pattern
        rules.append((str(pattern), str(replacement)))
    logger.info(f"Loaded {len(rules)} name normalization rules from {path}")
    return tuple(rules)


def _apply_rules(text: str, rules: Sequence[tuple[str, str]]) -> str:
    for pattern, replacement in rules:
        text = re.sub(pattern, replacement, text)
    return _WHITESPACE.sub(" ", text).strip()


def normalize_spec_name(name: object, rules: Sequence[tuple[str, str]] = NAME_RULES) -> str:
    """Canonicalize a free-text spec name into a comparison key.

    Non-string or empty input yields "". The result is idempotent:
    normalize_spec_name(normalize_spec_name(x)) == normalize_spec_name(x).
    """
    if not isinstance(name, str) or not name.strip():
        return ""

    text = _WHITESPACE.sub(" ", name.lower()).strip()
    for _ in range(_MAX_PASSES):
        updated = _apply_rules(text, rules)
        if updated == text:
            break
        text = updated
    else:
        logger.warning(f"Name rules did not converge for {name!r} after {_MAX_PASSES} passes")
    return text


def spec_match_key(name: object, rules: Sequence[tuple[str, str]] = NAME_RULES) -> str:
    """Equality key for comparing two spec names.

    Names built entirely from stripped vocabulary ("Material", "Plate")
    normalize to "" but are still real names; they compare on their
    lower-cased form instead. Empty or non-string names give "" and never
    match anything.
    """
    key = normalize_spec_name(name, rules)
    if key:
        return key
    if isinstance(name, str):
        return _WHITESPACE.sub(" ", name.lower()).strip()
    return ""


def option_key(value: str) -> str:
    """Comparison key for an option value (case and spacing insensitive)."""
    return _WHITESPACE.sub(" ", value.lower()).strip()


def dedupe_options(options: Iterable[object] | None, limit: int | None = None) -> list[str]:
    """Clean an option list: strip, drop empties/non-strings, dedupe keeping first spelling."""
    if not options or isinstance(options, (str, bytes)):
        return []

    seen: set[str] = set()
    cleaned: list[str] = []
    for value in options:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if not isinstance(value, str):
            continue
        value = _WHITESPACE.sub(" ", value).strip()
        if not value:
            continue
        key = option_key(value)
        if key in seen:
            continue
        seen.add(key)
        cleaned.append(value)
        if limit is not None and len(cleaned) >= limit:
            break
    return cleaned
