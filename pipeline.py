"""
Sequential Stage 1 -> Stage 2 -> Stage 3 orchestration.

Stages never overlap: each needs the previous stage's output. A fixed
STAGE_DELAY is awaited before each model-backed stage to stay under the
API's informal rate limit.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from config import Settings, Stage
from extractor import ExtractionMetrics, extract_isqs_with_metrics
from llm import GeminiClient, TextGenerator
from models import ISQ, CommonSpec, InputData, Stage1Output, Stage2Result
from reconciler import BuyerStrategy, build_buyer_isqs, find_common_specs
from stage1 import generate_stage1

logger = logging.getLogger(__name__)

LLMFactory = Callable[[Stage], TextGenerator]


@dataclass
class PipelineResult:
    stage1: Stage1Output
    stage2: Stage2Result
    common_specs: list[CommonSpec]
    buyers: list[ISQ]
    metrics: ExtractionMetrics
    strategy: str = "intersection"
    # Stage timing (seconds)
    stage_times: dict[str, float] = field(default_factory=dict)


async def _throttle(settings: Settings) -> None:
    if settings.stage_delay > 0:
        await asyncio.sleep(settings.stage_delay)


async def run_pipeline(
    data: InputData,
    settings: Settings,
    strategy: BuyerStrategy = "intersection",
    llm_factory: LLMFactory | None = None,
) -> PipelineResult:
    """Run all three stages. Configuration and quota errors propagate."""
    # Fail on a missing key before spending any call
    settings.api_key_for("stage1")
    settings.api_key_for("stage2")
    if strategy == "llm":
        settings.api_key_for("stage3")

    def make_llm(stage: Stage) -> TextGenerator:
        if llm_factory is not None:
            return llm_factory(stage)
        return GeminiClient.for_stage(settings, stage)

    stage_times: dict[str, float] = {}

    await _throttle(settings)
    t0 = time.monotonic()
    stage1 = await generate_stage1(data, settings, make_llm("stage1"))
    stage_times["stage1"] = time.monotonic() - t0
    if stage1.is_empty:
        logger.warning("Stage 1 produced no specs; buyer ISQs can only come from defaults")

    await _throttle(settings)
    t0 = time.monotonic()
    stage2, metrics = await extract_isqs_with_metrics(data, settings, llm=make_llm("stage2"))
    stage_times["stage2"] = time.monotonic() - t0

    if strategy == "llm":
        await _throttle(settings)
    t0 = time.monotonic()
    buyers = await build_buyer_isqs(
        strategy,
        stage1,
        stage2,
        settings,
        llm=make_llm("stage3") if strategy == "llm" else None,
    )
    stage_times["stage3"] = time.monotonic() - t0

    return PipelineResult(
        stage1=stage1,
        stage2=stage2,
        common_specs=find_common_specs(stage1, stage2, settings.name_rules()),
        buyers=buyers,
        metrics=metrics,
        strategy=strategy,
        stage_times=stage_times,
    )
