"""End-to-end pipeline runs against scripted models."""

import pytest

from errors import ConfigurationError, QuotaExhaustedError
from helpers import FakeLLM, gemini_response, make_settings
from pipeline import run_pipeline


def factory_for(models):
    """LLM factory that hands out one scripted model per stage."""
    requested = []

    def factory(stage):
        requested.append(stage)
        return models[stage]

    factory.requested = requested
    return factory


class TestRunPipeline:
    @pytest.mark.asyncio
    async def test_intersection_strategy(self, input_data, settings, stage1_payload, valid_stage2_payload):
        models = {
            "stage1": FakeLLM(gemini_response(stage1_payload)),
            "stage2": FakeLLM(gemini_response(valid_stage2_payload)),
        }
        factory = factory_for(models)

        result = await run_pipeline(input_data, settings, llm_factory=factory)

        assert factory.requested == ["stage1", "stage2"]
        assert [m.mcat_id for m in result.stage1.seller_specs[0].mcats] == ["101", "102"]
        assert result.stage2.source == "first"
        assert [c.spec_name for c in result.common_specs] == ["Grade", "Thickness"]
        assert [b.name for b in result.buyers] == ["Grade", "Thickness"]
        assert result.buyers[0].options == ["304", "316", "316L"]
        assert result.buyers[1].options == ["1 mm", "2 mm", "3 mm"]
        assert set(result.stage_times) == {"stage1", "stage2", "stage3"}

    @pytest.mark.asyncio
    async def test_llm_strategy_uses_third_model(self, input_data, settings, stage1_payload, valid_stage2_payload):
        stage3 = FakeLLM(gemini_response({"buyers": [{"name": "Thickness", "options": ["3 mm"]}]}))
        models = {
            "stage1": FakeLLM(gemini_response(stage1_payload)),
            "stage2": FakeLLM(gemini_response(valid_stage2_payload)),
            "stage3": stage3,
        }

        result = await run_pipeline(input_data, settings, strategy="llm", llm_factory=factory_for(models))

        assert len(stage3.calls) == 1
        assert [b.name for b in result.buyers] == ["Thickness", "Grade"]
        assert result.buyers[0].options == ["3 mm", "1 mm", "2 mm"]
        assert result.strategy == "llm"

    @pytest.mark.asyncio
    async def test_empty_stage1_still_runs_stage2(self, input_data, valid_stage2_payload):
        models = {
            "stage1": FakeLLM(gemini_response("no")),
            "stage2": FakeLLM(gemini_response(valid_stage2_payload)),
        }
        settings = make_settings(pad_buyer_defaults=False)

        result = await run_pipeline(input_data, settings, llm_factory=factory_for(models))

        assert result.stage1.seller_specs == []
        assert result.stage2.config.name == "Material Grade"
        assert result.buyers == []

    @pytest.mark.asyncio
    async def test_missing_stage3_key_fails_before_any_call(self, input_data):
        settings = make_settings(gemini_api_key="", stage1_api_key="k1", stage2_api_key="k2")
        factory = factory_for({})

        with pytest.raises(ConfigurationError):
            await run_pipeline(input_data, settings, strategy="llm", llm_factory=factory)
        assert factory.requested == []

    @pytest.mark.asyncio
    async def test_quota_error_stops_the_run(self, input_data, settings):
        stage2 = FakeLLM()
        models = {
            "stage1": FakeLLM(QuotaExhaustedError("Gemini quota exhausted (429)", status=429)),
            "stage2": stage2,
        }

        with pytest.raises(QuotaExhaustedError):
            await run_pipeline(input_data, settings, llm_factory=factory_for(models))
        assert stage2.calls == []
