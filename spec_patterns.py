"""
Regex specification miner: the deterministic Stage 2 fallback.

Every fallback path reads the one SPEC_PATTERNS table below. A pattern
finds a label followed by a list of values ("Thickness: 1 mm, 2 mm / 3 mm");
the value_split_pattern cuts that list into options. Page text from
pages.html_to_text has one block per line, so table rows where the label
and value sit in adjacent cells still match across the newline.
"""

import logging
import re
from collections.abc import Sequence
from typing import NamedTuple

from models import ISQ, MAX_SPEC_OPTIONS, Stage2Result
from normalize import NAME_RULES, option_key, spec_match_key

logger = logging.getLogger(__name__)


class SpecPattern(NamedTuple):
    label: str
    match_pattern: re.Pattern
    value_split_pattern: re.Pattern


class MinedSpec(NamedTuple):
    label: str
    options: list[str]
    url_count: int


# Separators inside a value list: "304, 316 / 316L or 202"
_LIST = r"\s*(?:,|/|&|\bor\b|\band\b)\s*"
_LIST_RE = re.compile(_LIST, re.IGNORECASE)
# Between a label and its values: "Thickness: 2 mm", "Thickness - 2 mm", "Thickness\n2 mm"
_SEP = r"\s*(?:[:=\-–]|\bis\b)?\s*"

_NUM = r"\d+(?:\.\d+)?"
_LENGTH_UNIT = r"(?:mm|cm|ft|feet|inch(?:es)?|in|m)\b"


def _pattern(label: str, label_re: str, option_re: str) -> SpecPattern:
    match = re.compile(
        rf"\b(?:{label_re}){_SEP}(?P<value>(?:{option_re})(?:{_LIST}(?:{option_re}))*)",
        re.IGNORECASE,
    )
    return SpecPattern(label, match, _LIST_RE)


SPEC_PATTERNS: tuple[SpecPattern, ...] = (
    _pattern(
        "Material Grade",
        r"material\s+grade|steel\s+grade|grade",
        r"\b(?:SS\s?|AISI\s?)?[2-9]\d{2}[LH]?\b",
    ),
    _pattern(
        "Thickness",
        r"thickness|thk",
        rf"{_NUM}\s?(?:mm|cm|micron|gauge|swg)\b",
    ),
    _pattern(
        "Size",
        r"(?<!hole\s)(?<!perforation\s)(?<!sheet\s)size|sheet\s+size",
        rf"{_NUM}\s?(?:{_LENGTH_UNIT}\s?)?[x×*]\s?{_NUM}\s?(?:{_LENGTH_UNIT})?|{_NUM}\s?{_LENGTH_UNIT}",
    ),
    _pattern(
        "Dimensions",
        r"dimensions?",
        rf"{_NUM}\s?[x×*]\s?{_NUM}(?:\s?[x×*]\s?{_NUM})?(?:\s?{_LENGTH_UNIT})?",
    ),
    _pattern(
        "Finish",
        r"surface\s+finish|finish(?:ing)?",
        r"\b(?:mirror|matte?|glossy|brushed|satin|hairline|polished|2B|BA|No\.?\s?[48]"
        r"|galvani[sz]ed|powder\s+coated|hot\s+rolled|cold\s+rolled)\b",
    ),
    _pattern(
        "Hole Size",
        r"(?:hole|perforation)\s+(?:size|dia(?:meter)?)",
        rf"{_NUM}\s?(?:mm|cm|inch(?:es)?|in)\b",
    ),
    _pattern(
        "Brand",
        r"brand(?:\s+name)?",
        r"(?-i:[A-Z][A-Za-z0-9&.\-]+(?: [A-Z][A-Za-z0-9&.\-]+)?)",
    ),
    _pattern(
        "Capacity",
        r"capacity",
        rf"{_NUM}\s?(?:kg|g|tons?|tonnes?|l|ltr|litres?|liters?|ml|kw|kva|hp|tph)\b",
    ),
    _pattern(
        "Color",
        r"colou?r",
        r"\b(?:black|white|silver|grey|gray|red|blue|green|yellow|golden|gold|brown|orange|natural"
        r"|multicolou?r)\b",
    ),
    _pattern(
        "Certification",
        r"certifications?|certified",
        r"\b(?:ISI|ISO\s?\d{4,5}(?::\d{4})?|CE|BIS|RoHS|UL|FDA|NSF)\b",
    ),
)

# Hardcoded last-resort Stage 2 answer (steel sheet domain)
DEFAULT_CONFIG: tuple[str, list[str]] = ("Material Grade", ["304", "316", "304L"])
DEFAULT_KEYS: tuple[tuple[str, list[str]], ...] = (
    ("Thickness", ["1 mm", "2 mm", "3 mm", "5 mm"]),
    ("Size", ["4 ft x 8 ft", "5 ft x 10 ft", "1250 x 2500 mm"]),
    ("Finish", ["2B", "Mirror", "Matte", "No. 4"]),
)


def _clean_option(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip(" .;")


def find_spec_values(text: str, patterns: Sequence[SpecPattern] = SPEC_PATTERNS) -> dict[str, list[str]]:
    """Values found for each pattern on one page. Labels without values are omitted."""
    found: dict[str, list[str]] = {}
    if not text:
        return found

    for pattern in patterns:
        values: list[str] = []
        seen: set[str] = set()
        for m in pattern.match_pattern.finditer(text):
            for raw in pattern.value_split_pattern.split(m.group("value")):
                value = _clean_option(raw)
                key = option_key(value)
                if value and key not in seen:
                    seen.add(key)
                    values.append(value)
        if values:
            found[pattern.label] = values
    return found


def mine_specs(
    texts: Sequence[str],
    patterns: Sequence[SpecPattern] = SPEC_PATTERNS,
    min_urls: int = 2,
    min_options: int = 2,
) -> list[MinedSpec]:
    """Specs corroborated across pages, most widespread first.

    A spec is kept only if it matched on at least min_urls pages and has at
    least min_options distinct values across them. Options are ordered by
    how many pages mention them, then first appearance.
    """
    order = {p.label: i for i, p in enumerate(patterns)}
    url_counts: dict[str, int] = {}
    option_counts: dict[str, dict[str, int]] = {}
    spelling: dict[str, dict[str, str]] = {}

    for text in texts:
        for label, values in find_spec_values(text, patterns).items():
            url_counts[label] = url_counts.get(label, 0) + 1
            counts = option_counts.setdefault(label, {})
            names = spelling.setdefault(label, {})
            for value in values:
                key = option_key(value)
                counts[key] = counts.get(key, 0) + 1
                names.setdefault(key, value)

    mined: list[MinedSpec] = []
    for label, n_urls in url_counts.items():
        counts = option_counts[label]
        if n_urls < min_urls or len(counts) < min_options:
            continue
        # dicts keep insertion order, so the stable sort breaks ties by first appearance
        ranked = sorted(counts, key=lambda k: -counts[k])
        options = [spelling[label][k] for k in ranked][:MAX_SPEC_OPTIONS]
        mined.append(MinedSpec(label, options, n_urls))

    mined.sort(key=lambda s: (-s.url_count, -len(s.options), order[s.label]))
    return mined


def heuristic_isqs(
    texts: Sequence[str],
    patterns: Sequence[SpecPattern] = SPEC_PATTERNS,
    rules: Sequence[tuple[str, str]] = NAME_RULES,
) -> Stage2Result | None:
    """Build a Stage 2 result from mined specs, or None when nothing qualifies."""
    mined = mine_specs(texts, patterns)
    if not mined:
        logger.info("  Regex miner found no spec on 2+ pages")
        return None

    config = mined[0]
    used = {spec_match_key(config.label, rules)}
    keys: list[ISQ] = []
    for spec in mined[1:]:
        key = spec_match_key(spec.label, rules)
        if key in used:
            continue
        used.add(key)
        keys.append(ISQ(name=spec.label, options=spec.options))
        if len(keys) == 3:
            break

    if len(keys) < 3:
        for name, options in (DEFAULT_CONFIG, *DEFAULT_KEYS):
            key = spec_match_key(name, rules)
            if key in used:
                continue
            used.add(key)
            keys.append(ISQ(name=name, options=options))
            if len(keys) == 3:
                break
        logger.info(f"  Regex miner found {len(mined)} spec(s); padded keys with defaults")

    logger.info(f"  Regex miner: config={config.label!r}, keys={[k.name for k in keys]}")
    return Stage2Result(
        config=ISQ(name=config.label, options=config.options),
        keys=keys,
        source="heuristic",
    )
