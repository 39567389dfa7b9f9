import json

import pytest

from errors import ConfigurationError
from helpers import make_settings
from normalize import NAME_RULES


class TestApiKeys:
    def test_stage_key_wins(self):
        settings = make_settings(stage2_api_key="stage2-key")
        assert settings.api_key_for("stage2") == "stage2-key"

    def test_falls_back_to_shared_key(self):
        assert make_settings().api_key_for("stage1") == "test-key"

    def test_missing_key_names_the_variables(self):
        settings = make_settings(gemini_api_key="")
        with pytest.raises(ConfigurationError) as exc_info:
            settings.api_key_for("stage2")
        assert "STAGE2_API_KEY" in str(exc_info.value)
        assert "GEMINI_API_KEY" in str(exc_info.value)

    def test_blank_key_counts_as_missing(self):
        with pytest.raises(ConfigurationError):
            make_settings(gemini_api_key="   ").api_key_for("stage3")


class TestNameRules:
    def test_default_table(self):
        assert make_settings().name_rules() == NAME_RULES

    def test_override_file(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([["dia", "diameter"]]))
        assert make_settings(name_rules_file=path).name_rules() == (("dia", "diameter"),)
