"""
Stage 1: tiered specification generator.

One model call per run. Any failure short of a quota or configuration
problem degrades to an empty Stage1Output so the pipeline keeps going.
"""

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from config import Settings
from errors import GenerationAPIError, as_quota_error, is_quota_error
from llm import GeminiClient, TextGenerator
from models import MAX_SPEC_OPTIONS, InputData, MCATSpec, SellerSpec, Spec, SpecList, Stage1Output, Tier
from prompts import build_stage1_prompt
from unwrap import extract_json

logger = logging.getLogger(__name__)

STAGE1_TEMPERATURE = 0.4

# Tier sizing: (minimum, maximum) specs per tier
TIER_LIMITS: dict[Tier, tuple[int, int]] = {
    Tier.PRIMARY: (2, 3),
    Tier.SECONDARY: (2, 3),
    Tier.TERTIARY: (0, 4),
}


async def generate_stage1(
    data: InputData,
    settings: Settings,
    llm: TextGenerator | None = None,
) -> Stage1Output:
    """Generate the tiered spec schema for every MCAT in the input.

    Raises ConfigurationError before any call when no key is configured and
    QuotaExhaustedError when the key is out of quota. Everything else returns
    an empty Stage1Output.
    """
    settings.api_key_for("stage1")
    if llm is None:
        llm = GeminiClient.for_stage(settings, "stage1")

    prompt = build_stage1_prompt(data)
    logger.info(f"Stage 1: generating specs for {len(data.mcats)} MCAT(s) ({len(prompt)} char prompt)")

    try:
        response = await llm.generate(
            prompt,
            temperature=STAGE1_TEMPERATURE,
            max_output_tokens=settings.stage1_max_output_tokens,
        )
    except (GenerationAPIError, httpx.HTTPError) as e:
        if is_quota_error(e):
            raise as_quota_error(e) from e
        logger.warning(f"  Stage 1 call failed, returning empty output: {e}")
        return Stage1Output()

    payload = extract_json(response)
    if not isinstance(payload, dict):
        logger.warning("  Stage 1 response had no usable JSON, returning empty output")
        return Stage1Output()

    try:
        output = Stage1Output.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"  Stage 1 JSON failed validation ({e.error_count()} errors), returning empty output")
        return Stage1Output()

    output = sanitize_stage1(output, data)
    total = sum(1 for _ in output.iter_specs())
    logger.info(f"  Stage 1 produced {total} specs across {len(data.mcats)} MCAT(s)")
    return output


# ---------------------------------------------------------------------------
# Sanitation
# ---------------------------------------------------------------------------


def _clean_spec(spec: Spec, tier: Tier) -> Spec:
    updates: dict[str, Any] = {"options": spec.options[:MAX_SPEC_OPTIONS]}
    if tier is not Tier.PRIMARY:
        updates["affix_flag"] = "None"
        updates["affix_presence_flag"] = "0"
    elif spec.affix_flag == "None":
        updates["affix_presence_flag"] = "0"
    return spec.model_copy(update=updates)


def _clean_tier(specs: list[Spec], tier: Tier, category: str) -> list[Spec]:
    low, high = TIER_LIMITS[tier]
    if len(specs) > high:
        logger.info(f"  {category}: {tier.value} tier had {len(specs)} specs, keeping {high}")
    kept = [_clean_spec(s, tier) for s in specs[:high]]
    if len(kept) < low:
        logger.info(f"  {category}: {tier.value} tier has only {len(kept)} spec(s) (expected {low}+)")
    return kept


def _match_mcat(generated: list[MCATSpec], mcat_id: str, name: str, used: set[int]) -> MCATSpec | None:
    """Find the generated entry for one input MCAT: by ID first, then by name."""
    if mcat_id:
        for i, entry in enumerate(generated):
            if i not in used and str(entry.mcat_id).strip() == mcat_id:
                used.add(i)
                return entry
    if name:
        for i, entry in enumerate(generated):
            if i not in used and entry.category_name.lower() == name.lower():
                used.add(i)
                return entry
    return None


def sanitize_stage1(output: Stage1Output, data: InputData) -> Stage1Output:
    """Force the generated tree into the shape the input asked for.

    Every input MCAT appears exactly once, in input order, with the input's
    name and ID. Missing MCATs get empty tiers; extras are dropped.
    """
    generated = [m for seller in output.seller_specs for m in seller.mcats]
    used: set[int] = set()
    mcats: list[MCATSpec] = []

    for mcat in data.mcats:
        mcat_id = str(mcat.mcat_id).strip()
        entry = _match_mcat(generated, mcat_id, mcat.mcat_name, used)
        if entry is None:
            logger.warning(f"  MCAT missing from Stage 1 output: {mcat.mcat_name or mcat_id}")
            entry = MCATSpec()

        category = mcat.mcat_name or mcat_id
        finalized = entry.finalized_specs.model_copy(
            update={
                "finalized_primary_specs": SpecList(
                    specs=_clean_tier(entry.finalized_specs.finalized_primary_specs.specs, Tier.PRIMARY, category)
                ),
                "finalized_secondary_specs": SpecList(
                    specs=_clean_tier(
                        entry.finalized_specs.finalized_secondary_specs.specs, Tier.SECONDARY, category
                    )
                ),
                "finalized_tertiary_specs": SpecList(
                    specs=_clean_tier(entry.finalized_specs.finalized_tertiary_specs.specs, Tier.TERTIARY, category)
                ),
            }
        )
        mcats.append(MCATSpec(category_name=mcat.mcat_name, mcat_id=mcat.mcat_id, finalized_specs=finalized))

    extras = len(generated) - len(used)
    if extras:
        logger.warning(f"  Dropped {extras} MCAT entr{'y' if extras == 1 else 'ies'} not in the input list")

    pmcat_name = data.pmcat_name
    pmcat_id: str | int = data.pmcat_id
    if output.seller_specs:
        pmcat_name = pmcat_name or output.seller_specs[0].pmcat_name
        pmcat_id = pmcat_id or output.seller_specs[0].pmcat_id

    return Stage1Output(seller_specs=[SellerSpec(pmcat_id=pmcat_id, pmcat_name=pmcat_name, mcats=mcats)])
