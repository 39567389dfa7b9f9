"""Tests for spec-name normalization and option cleaning."""

import json
import logging
import re

import pytest

from normalize import dedupe_options, load_name_rules, normalize_spec_name, spec_match_key


class TestNormalizeSpecName:
    """normalize_spec_name is the single equality oracle for spec names."""

    def test_thickness_spellings_are_equal(self):
        assert normalize_spec_name("Thk") == normalize_spec_name("Thickness") == normalize_spec_name(" THK ")

    def test_strips_material_vocabulary(self):
        assert normalize_spec_name("Sheet Thickness") == "thickness"
        assert normalize_spec_name("Material Grade") == "grade"

    def test_rewrites_synonyms(self):
        assert normalize_spec_name("Perforation Size") == "hole size"
        assert normalize_spec_name("Type") == "shape"

    @pytest.mark.parametrize(
        "name",
        ["Thk", "Sheet Thickness", "Perforation Type", "Plate Material", "  Hole   Size ", "Material Type", "Width"],
    )
    def test_idempotent(self, name):
        once = normalize_spec_name(name)
        assert normalize_spec_name(once) == once

    @pytest.mark.parametrize("value", [None, 12, "", "   ", ["Thickness"]])
    def test_non_string_or_empty_gives_empty(self, value):
        assert normalize_spec_name(value) == ""

    def test_custom_rules(self):
        rules = ((r"colou?r", "shade"),)
        assert normalize_spec_name("Colour", rules) == "shade"
        assert normalize_spec_name("Sheet Color", rules) == "sheet shade"

    def test_warns_when_rules_never_settle(self, caplog):
        caplog.set_level(logging.WARNING, logger="normalize")
        normalize_spec_name("Grade", ((r"$", "z"),))
        assert any("did not converge" in r.getMessage() for r in caplog.records)

    def test_default_rules_settle_silently(self, caplog):
        caplog.set_level(logging.WARNING, logger="normalize")
        normalize_spec_name("Sheet Thk")
        assert caplog.records == []


class TestSpecMatchKey:
    def test_stripped_names_still_compare(self):
        # "Material" normalizes to "" but must still match "material "
        assert spec_match_key("Material") == spec_match_key("material ") == "material"

    def test_regular_names_use_normalized_form(self):
        assert spec_match_key("Thk") == spec_match_key("Sheet Thickness")

    def test_empty_name_never_matches(self):
        assert spec_match_key("") == ""
        assert spec_match_key(None) == ""


class TestLoadNameRules:
    def test_loads_pairs(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([["dia", "diameter"], ["mtr", "meter"]]))
        assert load_name_rules(path) == (("dia", "diameter"), ("mtr", "meter"))

    def test_rejects_malformed_entry(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([["only-one"]]))
        with pytest.raises(ValueError):
            load_name_rules(path)

    def test_rejects_bad_regex(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([["(unclosed", ""]]))
        with pytest.raises(re.error):
            load_name_rules(path)


class TestDedupeOptions:
    def test_strips_and_dedupes_case_insensitively(self):
        raw = [" 304", "304", "316 ", "", None, 5, "Mirror", "mirror", True]
        assert dedupe_options(raw) == ["304", "316", "5", "Mirror"]

    def test_limit(self):
        assert dedupe_options(["a", "b", "c", "d"], limit=2) == ["a", "b"]

    def test_non_list_gives_empty(self):
        assert dedupe_options(None) == []
        assert dedupe_options("304, 316") == []
