"""Tests for Stage 3 buyer ISQ selection."""

import pytest

from errors import QuotaExhaustedError, UpstreamError
from helpers import FakeLLM, gemini_response, make_settings
from models import ISQ, Stage1Output, Stage2Result, Tier
from reconciler import (
    build_buyer_isqs,
    find_common_specs,
    merge_options,
    reconcile,
    reconcile_direct,
    reconcile_with_llm,
)


def stage1_with(primary=(), secondary=(), tertiary=()):
    """Stage 1 output for one MCAT; each spec given as (name, options)."""

    def specs(pairs):
        return {"specs": [{"spec_name": n, "options": list(o)} for n, o in pairs]}

    return Stage1Output.model_validate(
        {
            "seller_specs": [
                {
                    "mcats": [
                        {
                            "category_name": "SS Sheet",
                            "mcat_id": "101",
                            "finalized_specs": {
                                "finalized_primary_specs": specs(primary),
                                "finalized_secondary_specs": specs(secondary),
                                "finalized_tertiary_specs": specs(tertiary),
                            },
                        }
                    ]
                }
            ]
        }
    )


def stage2_with(config, *keys):
    return Stage2Result(
        config=ISQ(name=config[0], options=list(config[1])),
        keys=[ISQ(name=n, options=list(o)) for n, o in keys],
    )


class TestMergeOptions:
    def test_priority_order(self):
        assert merge_options(["A", "B", "C"], ["C", "D", "B"]) == ["B", "C", "D", "A"]

    def test_case_insensitive_and_capped(self):
        stage1 = [f"{i} mm" for i in range(10)]
        stage2 = [f"{i} MM" for i in range(5, 15)]
        merged = merge_options(stage1, stage2)
        assert len(merged) == 8
        assert len({m.lower() for m in merged}) == 8
        assert merged[:5] == ["5 mm", "6 mm", "7 mm", "8 mm", "9 mm"]


class TestFindCommonSpecs:
    def test_intersection_by_normalized_name(self):
        stage1 = stage1_with(primary=[("Sheet Thickness", ["1 mm"])], secondary=[("Width", ["1 m"])])
        stage2 = stage2_with(("Grade", ["304", "316"]), ("Thk", ["2 mm"]))
        common = find_common_specs(stage1, stage2)
        assert [c.spec_name for c in common] == ["Sheet Thickness"]
        assert common[0].stage2_options == ["2 mm"]
        assert not common[0].is_config

    def test_merges_across_mcats(self):
        stage1 = Stage1Output.model_validate(
            {
                "seller_specs": [
                    {
                        "mcats": [
                            {
                                "mcat_id": "1",
                                "finalized_specs": {
                                    "finalized_tertiary_specs": [{"spec_name": "Grade", "options": ["304"]}]
                                },
                            },
                            {
                                "mcat_id": "2",
                                "finalized_specs": {
                                    "finalized_primary_specs": [{"spec_name": "grade", "options": ["316"]}]
                                },
                            },
                        ]
                    }
                ]
            }
        )
        common = find_common_specs(stage1, stage2_with(("Grade", ["304", "316"])))
        assert len(common) == 1
        assert common[0].tier is Tier.PRIMARY
        assert common[0].stage1_options == ["304", "316"]
        assert common[0].is_config


class TestReconcile:
    def test_primary_before_secondary_with_merged_options(self, stage1_output, stage2_result):
        buyers = reconcile(stage1_output, stage2_result)
        assert [b.name for b in buyers] == ["Grade", "Thickness"]
        assert buyers[0].options == ["304", "316", "304L"]
        assert all(b.type == "buyer" for b in buyers)

    def test_never_more_than_two(self):
        stage1 = stage1_with(primary=[("Grade", ["304"]), ("Thickness", ["1 mm"]), ("Finish", ["2B"])])
        stage2 = stage2_with(("Grade", ["304"]), ("Thickness", ["1 mm"]), ("Finish", ["2B"]))
        assert len(reconcile(stage1, stage2)) == 2

    def test_prefers_primary_over_lower_tiers(self):
        stage1 = stage1_with(
            secondary=[("Finish", ["2B"])],
            tertiary=[("Size", ["4x8"])],
            primary=[("Thickness", ["1 mm"])],
        )
        stage2 = stage2_with(("Size", ["4x8"]), ("Finish", ["2B"]), ("Thickness", ["1 mm"]))
        assert [b.name for b in reconcile(stage1, stage2)] == ["Thickness", "Finish"]

    def test_config_first_within_a_tier(self):
        stage1 = stage1_with(primary=[("Thickness", ["1 mm"]), ("Width", ["1 m"]), ("Grade", ["304"])])
        stage2 = stage2_with(("Grade", ["304"]), ("Width", ["1 m"]), ("Thickness", ["1 mm"]))
        assert [b.name for b in reconcile(stage1, stage2)] == ["Grade", "Thickness"]

    def test_single_common_spec(self):
        stage1 = stage1_with(primary=[("Grade", ["304"])])
        stage2 = stage2_with(("Grade", ["304", "316"]), ("Size", ["4x8"]))
        assert [b.name for b in reconcile(stage1, stage2)] == ["Grade"]
        padded = reconcile(stage1, stage2, pad_with_defaults=True)
        assert [b.name for b in padded] == ["Grade", "Thickness"]

    def test_no_common_specs(self):
        stage1 = stage1_with(primary=[("Width", ["1 m"])])
        stage2 = stage2_with(("Grade", ["304", "316"]))
        assert reconcile(stage1, stage2) == []
        assert [b.name for b in reconcile(stage1, stage2, pad_with_defaults=True)] == ["Material Grade", "Thickness"]

    def test_empty_stage1(self, stage2_result):
        assert reconcile(Stage1Output(), stage2_result) == []


class TestReconcileWithLlm:
    @pytest.mark.asyncio
    async def test_model_choice_is_used(self, stage1_output, stage2_result, settings):
        llm = FakeLLM(gemini_response({"buyers": [{"name": "thickness", "options": ["2mm", "Bogus"]}]}))
        buyers = await reconcile_with_llm(stage1_output, stage2_result, settings, llm)

        assert llm.temperatures == [0.3]
        assert [b.name for b in buyers] == ["Thickness", "Grade"]
        assert buyers[0].options[0] == "2mm"
        assert "Bogus" not in buyers[0].options

    @pytest.mark.asyncio
    async def test_prompt_lists_common_specs(self, stage1_output, stage2_result, settings):
        llm = FakeLLM(gemini_response({"buyers": []}))
        await reconcile_with_llm(stage1_output, stage2_result, settings, llm)
        prompt = llm.calls[0]["prompt"]
        assert '"spec_name": "Grade"' in prompt
        assert '"spec_name": "Thickness"' in prompt

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            gemini_response("no idea"),
            gemini_response({"buyers": [{"name": "Invented Spec", "options": ["x"]}]}),
            gemini_response({"buyers": []}),
            UpstreamError("Gemini API error 500: internal", status=500),
        ],
    )
    async def test_falls_back_to_intersection(self, stage1_output, stage2_result, settings, response):
        buyers = await reconcile_with_llm(stage1_output, stage2_result, settings, FakeLLM(response))
        assert [b.name for b in buyers] == ["Grade", "Thickness"]

    @pytest.mark.asyncio
    async def test_quota_error_propagates(self, stage1_output, stage2_result, settings):
        llm = FakeLLM(QuotaExhaustedError("Gemini quota exhausted (429)", status=429))
        with pytest.raises(QuotaExhaustedError):
            await reconcile_with_llm(stage1_output, stage2_result, settings, llm)

    @pytest.mark.asyncio
    async def test_no_call_without_common_specs(self, stage2_result, settings):
        llm = FakeLLM()
        assert await reconcile_with_llm(Stage1Output(), stage2_result, settings, llm) == []
        assert llm.calls == []


class TestReconcileDirect:
    def test_uses_stage2_buyers(self, stage1_output):
        stage2 = Stage2Result(
            config=ISQ(name="Grade", options=["304", "316"]),
            keys=[ISQ(name="Thickness", options=["1 mm", "2 mm"])],
            buyers=[
                ISQ(name="Finish", options=[f"F{i}" for i in range(10)]),
                ISQ(name="Grade", options=["304", "316"]),
            ],
        )
        buyers = reconcile_direct(stage1_output, stage2)
        assert [b.name for b in buyers] == ["Finish", "Grade"]
        assert len(buyers[0].options) == 8

    def test_falls_back_without_buyers(self, stage1_output, stage2_result):
        assert [b.name for b in reconcile_direct(stage1_output, stage2_result)] == ["Grade", "Thickness"]


class TestBuildBuyerIsqs:
    @pytest.mark.asyncio
    async def test_intersection_uses_padding_setting(self, stage2_result):
        settings = make_settings(pad_buyer_defaults=True)
        buyers = await build_buyer_isqs("intersection", Stage1Output(), stage2_result, settings)
        assert [b.name for b in buyers] == ["Material Grade", "Thickness"]

    @pytest.mark.asyncio
    async def test_unknown_strategy(self, stage1_output, stage2_result, settings):
        with pytest.raises(ValueError):
            await build_buyer_isqs("random", stage1_output, stage2_result, settings)
