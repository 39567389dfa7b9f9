"""
FastAPI server for the ISQ browser UI.

Every endpoint is stateless: the UI posts the previous stage's output back
with each request.
- POST /api/stage1        → tiered spec schema
- POST /api/stage2        → config + key ISQs from seller pages
- POST /api/stage3        → buyer ISQs
- POST /api/run           → all three stages in order
- POST /api/compare       → cross-run spec name audit
- POST /api/export/excel  → three-sheet .xlsx download
- POST /api/export/json   → combined .json download

Configuration errors map to 500 and quota errors to 429, both as
{"detail": message} so the UI can show a banner.
"""

import logging

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import ORJSONResponse, Response
from pydantic import BaseModel, Field

from compare import compare_runs
from config import Settings, Stage, get_settings
from errors import ConfigurationError, QuotaExhaustedError
from export import build_json_export, excel_filename, json_bytes, json_filename, workbook_bytes
from extractor import extract_isqs_with_metrics
from llm import TextGenerator
from models import ISQ, CommonSpec, ComparisonResult, InputData, Stage1Output, Stage2Result
from pipeline import LLMFactory, run_pipeline
from reconciler import BuyerStrategy, build_buyer_isqs, find_common_specs
from stage1 import generate_stage1

logger = logging.getLogger("server")

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class AttemptSummary(BaseModel):
    name: str
    status: str
    duration: float
    error: str | None = None


class Stage2Response(BaseModel):
    """Stage 2 result plus how it was reached."""

    stage2: Stage2Result
    urls_requested: int
    urls_fetched: int
    attempts: list[AttemptSummary]


class Stage3Request(BaseModel):
    stage1: Stage1Output
    stage2: Stage2Result
    strategy: BuyerStrategy = "intersection"


class Stage3Response(BaseModel):
    common_specs: list[CommonSpec]
    buyers: list[ISQ]


class RunRequest(InputData):
    strategy: BuyerStrategy = "intersection"


class RunResponse(BaseModel):
    stage1: Stage1Output
    stage2: Stage2Result
    common_specs: list[CommonSpec]
    buyers: list[ISQ]
    urls_fetched: int
    attempts: list[AttemptSummary]


class CompareRequest(BaseModel):
    run_a: Stage1Output
    run_b: Stage1Output


class ExportRequest(BaseModel):
    input: InputData
    stage1: Stage1Output
    stage2: Stage2Result
    buyers: list[ISQ] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_llm_factory() -> LLMFactory | None:
    """Model client factory; None means real Gemini clients. Tests override this."""
    return None


def _llm(factory: LLMFactory | None, stage: Stage) -> TextGenerator | None:
    return factory(stage) if factory is not None else None


def _download(content: bytes, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

app = FastAPI(
    title="ISQ Pipeline API",
    default_response_class=ORJSONResponse,
)

app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    max_age=86400,
)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> ORJSONResponse:
    logger.error(f"{request.url.path}: {exc.message}")
    return ORJSONResponse(status_code=500, content={"detail": exc.message})


@app.exception_handler(QuotaExhaustedError)
async def quota_error_handler(request: Request, exc: QuotaExhaustedError) -> ORJSONResponse:
    logger.error(f"{request.url.path}: {exc.message}")
    return ORJSONResponse(status_code=429, content={"detail": exc.message})


@app.on_event("startup")
async def startup() -> None:
    settings = get_settings()
    stages = ("stage1", "stage2", "stage3")
    configured = [s for s in stages if getattr(settings, f"{s}_api_key") or settings.gemini_api_key]
    logger.info(f"Model {settings.gemini_model}; API keys configured for: {configured or 'none'}")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.post("/api/stage1", response_model=Stage1Output)
async def stage1(
    data: InputData,
    settings: Settings = Depends(get_settings),
    llm_factory: LLMFactory | None = Depends(get_llm_factory),
):
    """Generate the tiered spec schema for every MCAT."""
    return await generate_stage1(data, settings, _llm(llm_factory, "stage1"))


@app.post("/api/stage2", response_model=Stage2Response)
async def stage2(
    data: InputData,
    settings: Settings = Depends(get_settings),
    llm_factory: LLMFactory | None = Depends(get_llm_factory),
):
    """Extract config and key ISQs from the seller pages in data.urls."""
    result, metrics = await extract_isqs_with_metrics(data, settings, llm=_llm(llm_factory, "stage2"))
    return Stage2Response(
        stage2=result,
        urls_requested=metrics.urls_requested,
        urls_fetched=metrics.urls_fetched,
        attempts=[AttemptSummary(**vars(a)) for a in metrics.attempts],
    )


@app.post("/api/stage3", response_model=Stage3Response)
async def stage3(
    body: Stage3Request,
    settings: Settings = Depends(get_settings),
    llm_factory: LLMFactory | None = Depends(get_llm_factory),
):
    """Choose up to two buyer ISQs from the specs common to both stages."""
    buyers = await build_buyer_isqs(
        body.strategy,
        body.stage1,
        body.stage2,
        settings,
        llm=_llm(llm_factory, "stage3") if body.strategy == "llm" else None,
    )
    return Stage3Response(
        common_specs=find_common_specs(body.stage1, body.stage2, settings.name_rules()),
        buyers=buyers,
    )


@app.post("/api/run", response_model=RunResponse)
async def run(
    body: RunRequest,
    settings: Settings = Depends(get_settings),
    llm_factory: LLMFactory | None = Depends(get_llm_factory),
):
    """Run all three stages in order."""
    data = InputData.model_validate(body.model_dump(exclude={"strategy"}))
    result = await run_pipeline(data, settings, strategy=body.strategy, llm_factory=llm_factory)
    return RunResponse(
        stage1=result.stage1,
        stage2=result.stage2,
        common_specs=result.common_specs,
        buyers=result.buyers,
        urls_fetched=result.metrics.urls_fetched,
        attempts=[AttemptSummary(**vars(a)) for a in result.metrics.attempts],
    )


@app.post("/api/compare", response_model=ComparisonResult)
async def compare(body: CompareRequest, settings: Settings = Depends(get_settings)):
    """Compare the spec names of two Stage 1 runs."""
    return compare_runs(body.run_a, body.run_b, settings.name_rules())


@app.post("/api/export/excel")
async def export_excel(body: ExportRequest):
    """Download the three-sheet workbook."""
    content = workbook_bytes(body.stage1, body.stage2, body.buyers)
    return _download(content, XLSX_MEDIA_TYPE, excel_filename(body.input))


@app.post("/api/export/json")
async def export_json(body: ExportRequest, settings: Settings = Depends(get_settings)):
    """Download the combined JSON export."""
    common = find_common_specs(body.stage1, body.stage2, settings.name_rules())
    payload = build_json_export(body.stage1, body.stage2, body.buyers, common)
    return _download(json_bytes(payload), "application/json", json_filename(body.input))
