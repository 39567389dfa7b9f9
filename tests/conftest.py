import pytest

from helpers import make_settings
from models import ISQ, InputData, Stage1Output, Stage2Result


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def input_data():
    return InputData(
        pmcat_name="Stainless Steel Sheets",
        pmcat_id="5001",
        mcats=[
            {"mcat_name": "SS Sheet", "mcat_id": "101"},
            {"mcat_name": "SS Perforated Sheet", "mcat_id": "102"},
        ],
        urls=[],
    )


@pytest.fixture
def stage1_payload():
    """A Stage 1 answer as the model returns it (before sanitation)."""
    return {
        "seller_specs": [
            {
                "pmcat_id": "5001",
                "pmcat_name": "Stainless Steel Sheets",
                "mcats": [
                    {
                        "category_name": "SS Sheet",
                        "mcat_id": "101",
                        "finalized_specs": {
                            "finalized_primary_specs": {
                                "specs": [
                                    {
                                        "spec_name": "Grade",
                                        "options": ["304", "316"],
                                        "input_type": "radio_button",
                                        "affix_flag": "Prefix",
                                        "affix_presence_flag": "0",
                                    },
                                ]
                            },
                            "finalized_secondary_specs": {
                                "specs": [
                                    {
                                        "spec_name": "Thickness",
                                        "options": ["1 mm", "2 mm"],
                                        "input_type": "radio_button",
                                        "affix_flag": "None",
                                        "affix_presence_flag": "0",
                                    },
                                ]
                            },
                            "finalized_tertiary_specs": {"specs": []},
                        },
                    }
                ],
            }
        ]
    }


@pytest.fixture
def stage1_output(stage1_payload):
    return Stage1Output.model_validate(stage1_payload)


@pytest.fixture
def stage2_result():
    return Stage2Result(
        config=ISQ(name="Grade", options=["304", "316", "304L"]),
        keys=[ISQ(name="Thickness", options=["2mm"])],
    )


@pytest.fixture
def valid_stage2_payload():
    return {
        "config": {"name": "Material Grade", "options": ["304", "316", "316L"]},
        "keys": [
            {"name": "Thickness", "options": ["1 mm", "2 mm", "3 mm"]},
            {"name": "Size", "options": ["4 ft x 8 ft", "5 ft x 10 ft"]},
            {"name": "Finish", "options": ["2B", "Mirror", "Matte"]},
        ],
    }
