"""
Stage 3 reconciler: choose at most two buyer ISQs.

A buyer ISQ must be a spec both stages agree on: Stage 1 generated it and
Stage 2 found it on seller pages (equality by normalized name). Options
corroborated by both stages are listed first, then page-only options, then
model-only options.

Three strategies share one entry point, build_buyer_isqs():
  intersection  pure ranking of the common specs (default, no network)
  llm           a third model call chooses among the common specs
  direct        buyers the Stage 2 model produced itself
"""

import logging
from collections.abc import Sequence
from typing import Literal

import httpx

from config import Settings
from errors import GenerationAPIError, as_quota_error, is_quota_error
from llm import GeminiClient, TextGenerator
from models import ISQ, MAX_BUYER_OPTIONS, CommonSpec, Stage1Output, Stage2Result
from normalize import NAME_RULES, dedupe_options, option_key, spec_match_key
from prompts import build_buyer_prompt
from spec_patterns import DEFAULT_CONFIG, DEFAULT_KEYS
from unwrap import extract_json

logger = logging.getLogger(__name__)

BuyerStrategy = Literal["intersection", "llm", "direct"]
STRATEGIES: tuple[str, ...] = ("intersection", "llm", "direct")

MAX_BUYERS = 2
STAGE3_TEMPERATURE = 0.3

# Shown when fewer than two common specs exist and padding is requested
DEFAULT_BUYERS: tuple[tuple[str, list[str]], ...] = (DEFAULT_CONFIG, DEFAULT_KEYS[0])

Rules = Sequence[tuple[str, str]]


def merge_options(
    stage1_options: Sequence[str],
    stage2_options: Sequence[str],
    limit: int | None = MAX_BUYER_OPTIONS,
) -> list[str]:
    """Both-stage options first (Stage 1 order), then Stage-2-only, then Stage-1-only."""
    s1_keys = {option_key(o) for o in stage1_options if isinstance(o, str)}
    s2_keys = {option_key(o) for o in stage2_options if isinstance(o, str)}

    both = [o for o in stage1_options if isinstance(o, str) and option_key(o) in s2_keys]
    stage2_only = [o for o in stage2_options if isinstance(o, str) and option_key(o) not in s1_keys]
    stage1_only = [o for o in stage1_options if isinstance(o, str) and option_key(o) not in s2_keys]
    return dedupe_options(both + stage2_only + stage1_only, limit=limit)


def find_common_specs(stage1: Stage1Output, stage2: Stage2Result, rules: Rules = NAME_RULES) -> list[CommonSpec]:
    """Stage 1 specs whose normalized name also appears among Stage 2's config and keys.

    A spec repeated across MCATs is merged: best tier wins, option lists are
    unioned in order. Result follows Stage 1 order.
    """
    stage2_by_key: dict[str, tuple[ISQ, bool]] = {}
    for isq, is_config in [(stage2.config, True)] + [(k, False) for k in stage2.keys]:
        key = spec_match_key(isq.name, rules)
        if key and key not in stage2_by_key:
            stage2_by_key[key] = (isq, is_config)

    merged: dict[str, CommonSpec] = {}
    for _mcat, tier, spec in stage1.iter_specs():
        key = spec_match_key(spec.spec_name, rules)
        if not key or key not in stage2_by_key:
            continue

        existing = merged.get(key)
        if existing is None:
            isq, is_config = stage2_by_key[key]
            merged[key] = CommonSpec(
                spec_name=spec.spec_name,
                tier=tier,
                input_type=spec.input_type,
                stage1_options=list(spec.options),
                stage2_options=list(isq.options),
                match_key=key,
                is_config=is_config,
            )
            continue

        if tier.rank < existing.tier.rank:
            existing.tier = tier
        existing.stage1_options = dedupe_options(existing.stage1_options + spec.options)

    return list(merged.values())


def rank_common_specs(common: Sequence[CommonSpec]) -> list[CommonSpec]:
    """Primary > Secondary > Tertiary; within a tier the price config first, then Stage 1 order."""
    indexed = list(enumerate(common))
    indexed.sort(key=lambda pair: (pair[1].tier.rank, 0 if pair[1].is_config else 1, pair[0]))
    return [c for _, c in indexed]


def _buyer_from_common(spec: CommonSpec) -> ISQ:
    return ISQ(name=spec.spec_name, options=merge_options(spec.stage1_options, spec.stage2_options), type="buyer")


def _fill_buyers(
    buyers: list[ISQ],
    ranked: Sequence[CommonSpec],
    pad_with_defaults: bool,
    rules: Rules,
) -> list[ISQ]:
    """Top up to two buyers from the ranked common specs, then optionally from defaults."""
    used = {spec_match_key(b.name, rules) for b in buyers}

    for spec in ranked:
        if len(buyers) >= MAX_BUYERS:
            break
        if spec.match_key not in used:
            used.add(spec.match_key)
            buyers.append(_buyer_from_common(spec))

    if pad_with_defaults and len(buyers) < MAX_BUYERS:
        for name, options in DEFAULT_BUYERS:
            if len(buyers) >= MAX_BUYERS:
                break
            key = spec_match_key(name, rules)
            if key not in used:
                used.add(key)
                buyers.append(ISQ(name=name, options=options[:MAX_BUYER_OPTIONS], type="buyer"))
                logger.info(f"  Padded buyer ISQs with default {name!r}")

    return buyers[:MAX_BUYERS]


def reconcile(
    stage1: Stage1Output,
    stage2: Stage2Result,
    pad_with_defaults: bool = False,
    rules: Rules = NAME_RULES,
) -> list[ISQ]:
    """Pure Stage 3: at most two buyer ISQs from the common specs."""
    common = find_common_specs(stage1, stage2, rules)
    logger.info(f"Stage 3: {len(common)} common spec(s): {[c.spec_name for c in common]}")
    buyers = _fill_buyers([], rank_common_specs(common), pad_with_defaults, rules)
    logger.info(f"  Buyer ISQs: {[b.name for b in buyers]}")
    return buyers


# ---------------------------------------------------------------------------
# LLM-backed variant
# ---------------------------------------------------------------------------


def _parse_llm_buyers(payload: object, common: Sequence[CommonSpec], rules: Rules) -> list[ISQ] | None:
    """Accept the model's choice only if it names one or two distinct common specs."""
    if isinstance(payload, dict):
        payload = payload.get("buyers")
    if not isinstance(payload, list):
        return None

    by_key = {c.match_key: c for c in common}
    chosen: list[ISQ] = []
    used: set[str] = set()
    for item in payload:
        if not isinstance(item, dict):
            continue
        key = spec_match_key(item.get("name", item.get("spec_name")), rules)
        spec = by_key.get(key)
        if spec is None or key in used:
            continue
        used.add(key)

        # Keep the model's ordering, but only over options one of the stages produced
        allowed = merge_options(spec.stage1_options, spec.stage2_options, limit=None)
        allowed_keys = {option_key(o) for o in allowed}
        picked = [o for o in dedupe_options(item.get("options")) if option_key(o) in allowed_keys]
        options = dedupe_options(picked + allowed, MAX_BUYER_OPTIONS)
        chosen.append(ISQ(name=spec.spec_name, options=options, type="buyer"))

    if not 1 <= len(chosen) <= MAX_BUYERS:
        return None
    return chosen


async def reconcile_with_llm(
    stage1: Stage1Output,
    stage2: Stage2Result,
    settings: Settings,
    llm: TextGenerator | None = None,
    pad_with_defaults: bool = False,
) -> list[ISQ]:
    """Let a third model call choose among the common specs; fall back to reconcile() on any failure."""
    settings.api_key_for("stage3")
    rules = settings.name_rules()

    common = find_common_specs(stage1, stage2, rules)
    if not common:
        logger.info("Stage 3: no common specs, skipping model call")
        return reconcile(stage1, stage2, pad_with_defaults, rules)

    if llm is None:
        llm = GeminiClient.for_stage(settings, "stage3")

    logger.info(f"Stage 3: asking model to choose among {len(common)} common spec(s)")
    try:
        response = await llm.generate(
            build_buyer_prompt(common),
            temperature=STAGE3_TEMPERATURE,
            max_output_tokens=settings.stage3_max_output_tokens,
        )
    except (GenerationAPIError, httpx.HTTPError) as e:
        if is_quota_error(e):
            raise as_quota_error(e) from e
        logger.warning(f"  Stage 3 call failed, using intersection ranking: {e}")
        return reconcile(stage1, stage2, pad_with_defaults, rules)

    chosen = _parse_llm_buyers(extract_json(response), common, rules)
    if chosen is None:
        logger.warning("  Stage 3 response unusable, using intersection ranking")
        return reconcile(stage1, stage2, pad_with_defaults, rules)

    buyers = _fill_buyers(chosen, rank_common_specs(common), pad_with_defaults, rules)
    logger.info(f"  Buyer ISQs (model): {[b.name for b in buyers]}")
    return buyers


# ---------------------------------------------------------------------------
# Direct-generation variant
# ---------------------------------------------------------------------------


def reconcile_direct(
    stage1: Stage1Output,
    stage2: Stage2Result,
    pad_with_defaults: bool = False,
    rules: Rules = NAME_RULES,
) -> list[ISQ]:
    """Use the buyers the Stage 2 model generated directly, topped up from the common specs."""
    buyers: list[ISQ] = []
    used: set[str] = set()
    for isq in stage2.buyers:
        key = spec_match_key(isq.name, rules)
        if not key or key in used or not isq.options:
            continue
        used.add(key)
        buyers.append(ISQ(name=isq.name, options=isq.options[:MAX_BUYER_OPTIONS], type="buyer"))
        if len(buyers) == MAX_BUYERS:
            break

    if not buyers:
        logger.info("Stage 3: Stage 2 produced no usable buyers, using intersection ranking")
        return reconcile(stage1, stage2, pad_with_defaults, rules)

    common = find_common_specs(stage1, stage2, rules)
    buyers = _fill_buyers(buyers, rank_common_specs(common), pad_with_defaults, rules)
    logger.info(f"  Buyer ISQs (direct): {[b.name for b in buyers]}")
    return buyers


async def build_buyer_isqs(
    strategy: BuyerStrategy,
    stage1: Stage1Output,
    stage2: Stage2Result,
    settings: Settings,
    llm: TextGenerator | None = None,
    pad_with_defaults: bool | None = None,
) -> list[ISQ]:
    """Run the chosen Stage 3 strategy."""
    pad = settings.pad_buyer_defaults if pad_with_defaults is None else pad_with_defaults
    if strategy == "intersection":
        return reconcile(stage1, stage2, pad, settings.name_rules())
    if strategy == "llm":
        return await reconcile_with_llm(stage1, stage2, settings, llm, pad)
    if strategy == "direct":
        return reconcile_direct(stage1, stage2, pad, settings.name_rules())
    raise ValueError(f"Unknown buyer strategy {strategy!r}; expected one of {', '.join(STRATEGIES)}")
