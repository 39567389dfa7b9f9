"""
Spreadsheet and JSON export of a finished run.

The workbook always has three sheets in this order:
  1. Master Spec Extraction  every Stage 1 spec, one row each
  2. Website Evidence        Stage 2 config and keys as found on seller pages
  3. Final ISQs              config, keys and buyer ISQs side by side
"""

import io
import logging
import re
from collections.abc import Sequence
from datetime import date
from typing import Any

import orjson
from openpyxl import Workbook
from openpyxl.styles import Font

from models import ISQ, CommonSpec, InputData, Stage1Output, Stage2Result

logger = logging.getLogger(__name__)

MASTER_SHEET = "Master Spec Extraction"
EVIDENCE_SHEET = "Website Evidence"
FINAL_SHEET = "Final ISQs"

MASTER_HEADERS = [
    "MCAT",
    "Spec Name",
    "Tier",
    "Input Type",
    "Affix Flag",
    "Affix Presence",
    "Options (Comma Separated)",
]
EVIDENCE_HEADERS = ["ISQ Type", "ISQ Name", "Options Found", "Popularity Rank"]
FINAL_OPTION_COLUMNS = 5
FINAL_HEADERS = ["Type", "Name"] + [f"Option {i}" for i in range(1, FINAL_OPTION_COLUMNS + 1)] + ["Total Options"]

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def _slugify(text: str) -> str:
    """Filename-safe slug: lowercase words joined by underscores."""
    return _SLUG_RE.sub("_", text.lower()).strip("_")


def _run_slug(data: InputData) -> str:
    name = data.pmcat_name or (data.mcat_names[0] if data.mcat_names else "")
    return _slugify(name) or "export"


def _add_sheet(wb: Workbook, title: str, headers: list[str], rows: list[list[Any]], first: bool = False) -> None:
    if first:
        ws = wb.active
        ws.title = title
    else:
        ws = wb.create_sheet(title)
    ws.append(headers)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for row in rows:
        ws.append(row)
    ws.freeze_panes = "A2"


# ---------------------------------------------------------------------------
# Excel
# ---------------------------------------------------------------------------


def master_rows(stage1: Stage1Output) -> list[list[Any]]:
    return [
        [
            mcat.category_name or str(mcat.mcat_id),
            spec.spec_name,
            tier.value,
            spec.input_type,
            spec.affix_flag,
            spec.affix_presence_flag,
            ", ".join(spec.options),
        ]
        for mcat, tier, spec in stage1.iter_specs()
    ]


def evidence_rows(stage2: Stage2Result) -> list[list[Any]]:
    isqs = [stage2.config] + list(stage2.keys)
    return [[isq.type.title(), isq.name, ", ".join(isq.options), rank] for rank, isq in enumerate(isqs, start=1)]


def final_rows(stage2: Stage2Result, buyers: Sequence[ISQ]) -> list[list[Any]]:
    rows = []
    for isq in [stage2.config, *stage2.keys, *buyers]:
        options = isq.options[:FINAL_OPTION_COLUMNS]
        padded = options + [""] * (FINAL_OPTION_COLUMNS - len(options))
        rows.append([isq.type.title(), isq.name, *padded, len(isq.options)])
    return rows


def build_workbook(stage1: Stage1Output, stage2: Stage2Result, buyers: Sequence[ISQ]) -> Workbook:
    wb = Workbook()
    _add_sheet(wb, MASTER_SHEET, MASTER_HEADERS, master_rows(stage1), first=True)
    _add_sheet(wb, EVIDENCE_SHEET, EVIDENCE_HEADERS, evidence_rows(stage2))
    _add_sheet(wb, FINAL_SHEET, FINAL_HEADERS, final_rows(stage2, buyers))
    return wb


def workbook_bytes(stage1: Stage1Output, stage2: Stage2Result, buyers: Sequence[ISQ]) -> bytes:
    """Serialize the three-sheet workbook to .xlsx bytes."""
    buf = io.BytesIO()
    build_workbook(stage1, stage2, buyers).save(buf)
    return buf.getvalue()


def excel_filename(data: InputData, day: date | None = None) -> str:
    day = day or date.today()
    return f"ISQ_Specifications_{_run_slug(data)}_{day.isoformat()}.xlsx"


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------


def build_json_export(
    stage1: Stage1Output,
    stage2: Stage2Result,
    buyers: Sequence[ISQ],
    common_specs: Sequence[CommonSpec] = (),
) -> dict[str, Any]:
    return {
        "stage1": stage1.model_dump(mode="json"),
        "stage2": stage2.model_dump(mode="json"),
        "stage3": {
            "common_specs": [c.model_dump(mode="json") for c in common_specs],
            "buyers": [b.model_dump(mode="json") for b in buyers],
        },
    }


def json_bytes(payload: Any) -> bytes:
    return orjson.dumps(payload, option=orjson.OPT_INDENT_2)


def json_filename(data: InputData, day: date | None = None) -> str:
    day = day or date.today()
    return f"ISQ_{_run_slug(data)}_{day.isoformat()}.json"
