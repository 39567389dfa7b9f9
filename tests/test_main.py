import pytest
from openpyxl import load_workbook

from extractor import AttemptOutcome, ExtractionMetrics
from main import main, print_report, write_outputs
from models import ISQ, Stage2Result
from pipeline import PipelineResult


@pytest.fixture
def pipeline_result(stage1_output):
    stage2 = Stage2Result(
        config=ISQ(name="Grade", options=["304", "316"]),
        keys=[ISQ(name="Thickness", options=["1 mm", "2 mm"])],
    )
    metrics = ExtractionMetrics(
        urls_requested=2,
        urls_fetched=1,
        source="first",
        attempts=[AttemptOutcome(name="first", status="accepted", duration=1.5)],
    )
    return PipelineResult(
        stage1=stage1_output,
        stage2=stage2,
        common_specs=[],
        buyers=[ISQ(name="Grade", options=["304", "316"], type="buyer")],
        metrics=metrics,
        stage_times={"stage1": 2.0, "stage2": 3.0, "stage3": 0.0},
    )


class TestWriteOutputs:
    def test_writes_three_files(self, tmp_path, input_data, pipeline_result):
        paths = write_outputs(input_data, pipeline_result, tmp_path / "out")

        assert paths[0].name == "stage1.json"
        assert paths[1].name.startswith("ISQ_stainless_steel_sheets_")
        assert paths[2].suffix == ".xlsx"
        assert all(p.exists() for p in paths)
        assert load_workbook(paths[2]).sheetnames[-1] == "Final ISQs"


class TestPrintReport:
    def test_report_sections(self, capsys, pipeline_result):
        print_report(pipeline_result, wall_clock=5.0)
        out = capsys.readouterr().out
        assert "── Stage 1: Spec Schema ──" in out
        assert "Pages fetched:    1/2" in out
        assert "No specs common to both stages" in out
        assert "Buyer:  Grade" in out


class TestMain:
    @pytest.mark.asyncio
    async def test_unreadable_input(self, tmp_path):
        assert await main([str(tmp_path / "missing.json")]) == 1

    @pytest.mark.asyncio
    async def test_invalid_input(self, tmp_path):
        path = tmp_path / "input.json"
        path.write_text('{"mcats": [], "urls": []}')
        assert await main([str(path)]) == 1
