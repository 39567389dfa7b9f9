"""
Stage 2 extractor: seller-page evidence -> one config ISQ + three key ISQs.

Retry chain, stopping at the first result that passes is_valid_isq_set:
  A) Fetch every URL concurrently (failures become "")
  B) "first" prompt: detailed, also asks for buyer ISQs (temperature 0.7)
  C) "validation" prompt: stricter re-derivation (temperature 0.7)
  D) "fallback" prompt: minimal (temperature 0.3)
  E) Regex miner over the page text (no model)
  F) Hardcoded default, so Stage 2 always produces something
"""

import asyncio
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from config import Settings
from errors import GenerationAPIError, as_quota_error, is_quota_error
from llm import GeminiClient, TextGenerator
from models import ISQ, MAX_BUYER_OPTIONS, InputData, Stage2Result
from normalize import NAME_RULES, dedupe_options, spec_match_key
from pages import fetch_all_pages
from prompts import build_fallback_prompt, build_first_prompt, build_validation_prompt
from spec_patterns import DEFAULT_CONFIG, DEFAULT_KEYS, heuristic_isqs
from unwrap import extract_json

logger = logging.getLogger(__name__)

PromptBuilder = Callable[[InputData, list[str], list[str], int], str]

# (attempt name, prompt builder, temperature), tried in this order
ATTEMPTS: tuple[tuple[str, PromptBuilder, float], ...] = (
    ("first", build_first_prompt, 0.7),
    ("validation", build_validation_prompt, 0.7),
    ("fallback", build_fallback_prompt, 0.3),
)

REQUIRED_KEYS = 3
MIN_OPTIONS = 2
MAX_BUYERS = 2


# ===== Metrics =====


@dataclass
class AttemptOutcome:
    name: str
    # "accepted", "invalid", "no_json" or "error"
    status: str
    duration: float = 0.0
    error: str | None = None


@dataclass
class ExtractionMetrics:
    """Per-run metrics collected during Stage 2."""

    urls_requested: int = 0
    urls_fetched: int = 0
    page_chars: int = 0
    # Stage timing (seconds)
    fetch_time: float = 0.0
    llm_time: float = 0.0
    heuristic_time: float = 0.0
    total_time: float = 0.0
    attempts: list[AttemptOutcome] = field(default_factory=list)
    llm_calls: int = 0
    # Which strategy produced the result: first, validation, fallback, heuristic, default
    source: str = ""
    num_buyers: int = 0


# ===== Candidate validation =====


def _coerce_isq(item: Any) -> dict[str, Any] | None:
    if not isinstance(item, Mapping):
        return None
    name = item.get("name", item.get("spec_name"))
    options = item.get("options")
    if isinstance(options, str):
        options = options.split(",")
    return {"name": name.strip() if isinstance(name, str) else name, "options": dedupe_options(options)}


def coerce_candidate(payload: Any) -> dict[str, Any] | None:
    """Shape a decoded model payload into {config, keys, buyers}, or None.

    Options are deduplicated here. Names keep their original type so that
    is_valid_isq_set can reject non-string names.
    """
    if not isinstance(payload, Mapping):
        return None

    # Some answers nest the result one level down
    for wrapper in ("isqs", "result", "data"):
        if "config" not in payload and isinstance(payload.get(wrapper), Mapping):
            payload = payload[wrapper]

    config = _coerce_isq(payload.get("config"))
    if config is None:
        return None

    keys_raw = payload.get("keys")
    buyers_raw = payload.get("buyers")
    keys = [k for k in (_coerce_isq(i) for i in keys_raw) if k] if isinstance(keys_raw, list) else []
    buyers = [b for b in (_coerce_isq(i) for i in buyers_raw) if b] if isinstance(buyers_raw, list) else []
    return {"config": config, "keys": keys, "buyers": buyers}


def is_valid_isq_set(candidate: Mapping[str, Any] | None, rules: Sequence[tuple[str, str]] = NAME_RULES) -> bool:
    """Accept a candidate only if it is a usable config + three keys.

    - config name is a non-empty string with at least 2 options
    - at least 3 keys; the first 3 each have a non-empty name and at least 2 options
    - no two of config and those keys share a normalized name
    """
    if not isinstance(candidate, Mapping):
        return False

    config = candidate.get("config")
    if not isinstance(config, Mapping):
        return False
    name = config.get("name")
    if not isinstance(name, str) or not name.strip():
        return False
    if len(config.get("options") or []) < MIN_OPTIONS:
        return False

    keys = candidate.get("keys")
    if not isinstance(keys, list) or len(keys) < REQUIRED_KEYS:
        return False

    # Only the keys candidate_to_result keeps
    seen = {spec_match_key(name, rules)}
    for key in keys[:REQUIRED_KEYS]:
        if not isinstance(key, Mapping):
            return False
        key_name = key.get("name")
        if not isinstance(key_name, str) or not key_name.strip():
            return False
        if len(key.get("options") or []) < MIN_OPTIONS:
            return False
        match_key = spec_match_key(key_name, rules)
        if match_key in seen:
            return False
        seen.add(match_key)
    return True


def candidate_to_result(candidate: Mapping[str, Any], source: str) -> Stage2Result:
    """Build the Stage 2 result from a validated candidate: exactly 3 keys, at most 2 buyers."""
    buyers = [
        ISQ(name=b["name"], options=b["options"][:MAX_BUYER_OPTIONS])
        for b in candidate.get("buyers", [])
        if isinstance(b.get("name"), str) and b["name"].strip() and b["options"]
    ][:MAX_BUYERS]
    return Stage2Result(
        config=ISQ(**candidate["config"]),
        keys=[ISQ(**k) for k in candidate["keys"][:REQUIRED_KEYS]],
        buyers=buyers,
        source=source,
    )


def default_isqs() -> Stage2Result:
    """Last-resort Stage 2 answer."""
    name, options = DEFAULT_CONFIG
    return Stage2Result(
        config=ISQ(name=name, options=options),
        keys=[ISQ(name=n, options=o) for n, o in DEFAULT_KEYS],
        source="default",
    )


# ===== Retry chain =====


async def _run_attempt(
    llm: TextGenerator,
    prompt: str,
    temperature: float,
    settings: Settings,
    rules: Sequence[tuple[str, str]],
    outcome: AttemptOutcome,
) -> dict[str, Any] | None:
    """One prompt attempt. Returns the valid candidate or None; quota errors propagate."""
    t0 = time.monotonic()
    try:
        response = await llm.generate(
            prompt,
            temperature=temperature,
            max_output_tokens=settings.stage2_max_output_tokens,
        )
    except (GenerationAPIError, httpx.HTTPError) as e:
        if is_quota_error(e):
            raise as_quota_error(e) from e
        outcome.status = "error"
        outcome.error = str(e) or type(e).__name__
        return None
    finally:
        outcome.duration = time.monotonic() - t0

    candidate = coerce_candidate(extract_json(response))
    if candidate is None:
        outcome.status = "no_json"
        return None
    if not is_valid_isq_set(candidate, rules):
        outcome.status = "invalid"
        return None
    outcome.status = "accepted"
    return candidate


async def extract_isqs_with_metrics(
    data: InputData,
    settings: Settings,
    urls: list[str] | None = None,
    llm: TextGenerator | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> tuple[Stage2Result, ExtractionMetrics]:
    """Full Stage 2 chain. Returns the result and how it was reached."""
    settings.api_key_for("stage2")
    if llm is None:
        llm = GeminiClient.for_stage(settings, "stage2", http_client)
    rules = settings.name_rules()
    urls = list(data.urls if urls is None else urls)

    metrics = ExtractionMetrics(urls_requested=len(urls))
    t_start = time.monotonic()

    # A) Fetch seller pages
    t0 = time.monotonic()
    texts = await fetch_all_pages(urls, settings, http_client)
    metrics.fetch_time = time.monotonic() - t0
    metrics.urls_fetched = sum(1 for t in texts if t)
    metrics.page_chars = sum(len(t) for t in texts)
    logger.info(f"Stage 2: fetched {metrics.urls_fetched}/{len(urls)} seller pages")

    # B-D) Prompt attempts in strict order
    result: Stage2Result | None = None
    t0 = time.monotonic()
    for i, (name, build_prompt, temperature) in enumerate(ATTEMPTS):
        if i and settings.attempt_delay > 0:
            await asyncio.sleep(settings.attempt_delay)

        prompt = build_prompt(data, urls, texts, settings.prompt_page_chars)
        outcome = AttemptOutcome(name=name, status="error")
        metrics.attempts.append(outcome)
        metrics.llm_calls += 1

        candidate = await _run_attempt(llm, prompt, temperature, settings, rules, outcome)
        logger.info(f"  Attempt {name!r}: {outcome.status} ({outcome.duration:.1f}s)")
        if outcome.error:
            logger.warning(f"  Attempt {name!r} failed: {outcome.error}")
        if candidate is not None:
            result = candidate_to_result(candidate, name)
            break
    metrics.llm_time = time.monotonic() - t0

    # E) Regex miner
    if result is None:
        logger.warning("  All prompt attempts failed, mining page text")
        t0 = time.monotonic()
        result = heuristic_isqs(texts, rules=rules)
        metrics.heuristic_time = time.monotonic() - t0

    # F) Hardcoded default
    if result is None:
        logger.warning("  Regex miner found nothing, using default ISQs")
        result = default_isqs()

    metrics.source = result.source
    metrics.num_buyers = len(result.buyers)
    metrics.total_time = time.monotonic() - t_start
    logger.info(
        f"  Stage 2 result ({result.source}): config={result.config.name!r}, "
        f"keys={[k.name for k in result.keys]}"
    )
    return result, metrics


async def extract_isqs(
    data: InputData,
    settings: Settings,
    urls: list[str] | None = None,
    llm: TextGenerator | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Stage2Result:
    """Stage 2 without metrics."""
    result, _ = await extract_isqs_with_metrics(data, settings, urls, llm, http_client)
    return result
