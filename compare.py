"""Cross-run audit: compare the spec names of two Stage 1 runs."""

import logging
from collections.abc import Sequence
from pathlib import Path

import orjson

from models import ComparisonResult, Stage1Output
from normalize import NAME_RULES, spec_match_key

logger = logging.getLogger(__name__)


def _spec_names(run: Stage1Output) -> list[str]:
    """All spec names across tiers, exact-name deduplicated in first-seen order."""
    names: list[str] = []
    for _mcat, _tier, spec in run.iter_specs():
        if spec.spec_name and spec.spec_name not in names:
            names.append(spec.spec_name)
    return names


def compare_runs(
    run_a: Stage1Output,
    run_b: Stage1Output,
    rules: Sequence[tuple[str, str]] = NAME_RULES,
) -> ComparisonResult:
    """Set comparison of spec names by normalized-name equality."""
    names_a = _spec_names(run_a)
    names_b = _spec_names(run_b)
    keys_a = {spec_match_key(n, rules) for n in names_a}
    keys_b = {spec_match_key(n, rules) for n in names_b}

    result = ComparisonResult(
        common_specs=[n for n in names_a if spec_match_key(n, rules) in keys_b],
        unique_to_a=[n for n in names_a if spec_match_key(n, rules) not in keys_b],
        unique_to_b=[n for n in names_b if spec_match_key(n, rules) not in keys_a],
    )
    logger.info(
        f"Compared runs: {len(result.common_specs)} common, "
        f"{len(result.unique_to_a)} only in A, {len(result.unique_to_b)} only in B"
    )
    return result


def load_stage1(path: str | Path) -> Stage1Output:
    """Read a saved Stage 1 run: either a bare Stage1Output or a full export with a "stage1" key."""
    data = orjson.loads(Path(path).read_bytes())
    if isinstance(data, dict) and "stage1" in data and "seller_specs" not in data:
        data = data["stage1"]
    return Stage1Output.model_validate(data)
