"""
ISQ pipeline runner.

Reads an input JSON file ({pmcat_name, pmcat_id, mcats, urls}), runs
Stage 1 -> Stage 2 -> Stage 3 and writes:
  stage1.json, the combined ISQ_<slug>_<date>.json and the .xlsx workbook.
"""

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

import orjson
from pydantic import ValidationError

from compare import compare_runs, load_stage1
from config import get_settings
from errors import ConfigurationError, QuotaExhaustedError
from export import build_json_export, excel_filename, json_bytes, json_filename, workbook_bytes
from models import InputData
from pipeline import PipelineResult, run_pipeline
from reconciler import STRATEGIES

logger = logging.getLogger(__name__)

DEFAULT_OUT_DIR = Path(__file__).parent / "output"


def print_report(result: PipelineResult, wall_clock: float) -> None:
    """Print a run report: stage sources, attempt outcomes, common specs, buyers, timings."""
    m = result.metrics

    print(f"\n{'='*70}")
    print("ISQ PIPELINE REPORT")
    print(f"{'='*70}")

    # ── Stage 1 ─────────────────────────────────────────────────────
    print("\n── Stage 1: Spec Schema ──")
    if result.stage1.is_empty:
        print("  No specs generated (empty fallback)")
    for seller in result.stage1.seller_specs:
        for mcat in seller.mcats:
            print(f"  {mcat.category_name or mcat.mcat_id}")
            for tier, specs in mcat.finalized_specs.by_tier():
                names = ", ".join(s.spec_name for s in specs) or "-"
                print(f"    {tier.value:<10} {names}")

    # ── Stage 2 ─────────────────────────────────────────────────────
    print("\n── Stage 2: Website Evidence ──")
    print(f"  Pages fetched:    {m.urls_fetched}/{m.urls_requested} ({m.page_chars} chars)")
    print(f"  Source:           {m.source}")
    print(f"  {'Attempt':<12} {'Outcome':<10} {'Time':>7}")
    print(f"  {'-'*31}")
    for a in m.attempts:
        print(f"  {a.name:<12} {a.status:<10} {a.duration:>6.2f}s")
    stage2 = result.stage2
    print(f"\n  Config: {stage2.config.name} {stage2.config.options}")
    for key in stage2.keys:
        print(f"  Key:    {key.name} {key.options}")

    # ── Stage 3 ─────────────────────────────────────────────────────
    print(f"\n── Stage 3: Buyer ISQs ({result.strategy}) ──")
    if result.common_specs:
        print(f"  {'Common spec':<25} {'Tier':<10} {'Config':>7}")
        print(f"  {'-'*44}")
        for c in result.common_specs:
            print(f"  {c.spec_name:<25} {c.tier.value:<10} {'yes' if c.is_config else '-':>7}")
    else:
        print("  No specs common to both stages")
    print()
    for b in result.buyers:
        print(f"  Buyer:  {b.name} {b.options}")

    # ── Timing ──────────────────────────────────────────────────────
    print("\n── Timing ──")
    print(f"  Wall clock (total):  {wall_clock:.2f}s")
    for stage, seconds in result.stage_times.items():
        print(f"  {stage:<20} {seconds:>7.2f}s")
    print(f"  {'stage2 fetch':<20} {m.fetch_time:>7.2f}s")
    print(f"  {'stage2 model':<20} {m.llm_time:>7.2f}s")
    print(f"  Model calls in Stage 2: {m.llm_calls}")

    print(f"\n{'='*70}")


def print_comparison(path_a: Path, path_b: Path) -> None:
    result = compare_runs(load_stage1(path_a), load_stage1(path_b))
    print(f"\n── Comparison: {path_a.name} vs {path_b.name} ──")
    print(f"  Common ({len(result.common_specs)}):      {', '.join(result.common_specs) or '-'}")
    print(f"  Only in A ({len(result.unique_to_a)}):   {', '.join(result.unique_to_a) or '-'}")
    print(f"  Only in B ({len(result.unique_to_b)}):   {', '.join(result.unique_to_b) or '-'}")


def write_outputs(data: InputData, result: PipelineResult, out_dir: Path) -> list[Path]:
    out_dir.mkdir(parents=True, exist_ok=True)

    stage1_path = out_dir / "stage1.json"
    stage1_path.write_bytes(json_bytes(result.stage1.model_dump(mode="json")))

    json_path = out_dir / json_filename(data)
    payload = build_json_export(result.stage1, result.stage2, result.buyers, result.common_specs)
    json_path.write_bytes(json_bytes(payload))

    xlsx_path = out_dir / excel_filename(data)
    xlsx_path.write_bytes(workbook_bytes(result.stage1, result.stage2, result.buyers))

    return [stage1_path, json_path, xlsx_path]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate ISQs for a product category: spec schema, website evidence, buyer ISQs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py input.json
  python main.py input.json --strategy llm --out-dir runs/steel
  python main.py input.json --compare runs/previous/stage1.json
        """,
    )
    parser.add_argument("input", type=Path, help="Input JSON: {pmcat_name, pmcat_id, mcats, urls}")
    parser.add_argument("--out-dir", "-o", type=Path, default=DEFAULT_OUT_DIR, help="Output directory")
    parser.add_argument(
        "--strategy",
        "-s",
        choices=STRATEGIES,
        default="intersection",
        help="How buyer ISQs are chosen (default: intersection)",
    )
    parser.add_argument("--compare", "-c", type=Path, help="Compare this run's Stage 1 against a saved stage1.json")
    return parser


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        data = InputData.model_validate(orjson.loads(args.input.read_bytes()))
    except (OSError, orjson.JSONDecodeError, ValidationError) as e:
        logger.error(f"Could not read input {args.input}: {e}")
        return 1

    settings = get_settings()
    t_wall_start = time.monotonic()
    try:
        result = await run_pipeline(data, settings, strategy=args.strategy)
    except (ConfigurationError, QuotaExhaustedError) as e:
        logger.error(str(e))
        return 1
    wall_clock = time.monotonic() - t_wall_start

    for path in write_outputs(data, result, args.out_dir):
        logger.info(f"Wrote {path}")

    print_report(result, wall_clock)

    if args.compare:
        print_comparison(args.out_dir / "stage1.json", args.compare)

    return 0


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(main()))
