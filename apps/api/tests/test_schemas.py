"""
Tests for backend response normalization (constitution, audit, trends) and
the JSON extraction helpers.
"""

import pytest
from pydantic import ValidationError

from studio.agents.parsing import parse_json_response, strip_code_fences
from studio.schemas import (
    DEFAULT_BRAND_ESSENCE,
    AuditResult,
    BrandConstitution,
    FaceProminence,
    HeatmapPoint,
    TrendResearch,
    VisualDensity,
    VocabularyLevel,
)

from fakes import CONSTITUTION_JSON


class TestBrandConstitution:
    """Constitution defaults and normalization."""

    def test_empty_input_gets_defaults(self):
        """Test every field falls back to its documented default."""
        constitution = BrandConstitution.from_backend({})

        assert constitution.visual_identity.color_palette_hex == ["#000000"]
        assert constitution.visual_identity.photography_style == "Professional and clean"
        assert constitution.visual_identity.fonts == ["Inter", "System Sans"]
        assert constitution.visual_identity.composition_rules == ["Balanced", "Rule of thirds"]
        assert constitution.visual_identity.visual_density == VisualDensity.BALANCED
        assert constitution.voice.tone == "Professional"
        assert constitution.voice.vocabulary_level == VocabularyLevel.DIRECT
        assert constitution.content_patterns.face_prominence == FaceProminence.MEDIUM
        assert constitution.brand_essence == DEFAULT_BRAND_ESSENCE

    def test_non_object_input_gets_defaults(self):
        """Test a list or None is treated as an empty object."""
        assert BrandConstitution.from_backend(None) == BrandConstitution.from_backend({})
        assert BrandConstitution.from_backend(["x"]) == BrandConstitution.from_backend({})

    def test_values_are_kept_and_enums_are_case_insensitive(self):
        """Test provided values survive and enum strings are upper-cased."""
        constitution = BrandConstitution.from_backend(CONSTITUTION_JSON)

        assert constitution.visual_identity.color_palette_hex == ["#FF5500", "#111111"]
        assert constitution.visual_identity.visual_density == VisualDensity.DENSE
        assert constitution.voice.vocabulary_level == VocabularyLevel.SIMPLE
        assert constitution.brand_essence == "Loud, fast, unapologetic."

    def test_invalid_colors_are_dropped(self):
        """Test non-hex palette entries are filtered out."""
        constitution = BrandConstitution.from_backend({
            "visual_identity": {"color_palette_hex": ["#abc", "orange", 12, "#00FF00"]}
        })

        assert constitution.visual_identity.color_palette_hex == ["#ABC", "#00FF00"]

    def test_unknown_enum_falls_back(self):
        """Test an unrecognized enum value uses the default."""
        constitution = BrandConstitution.from_backend({"visual_identity": {"visual_density": "chaotic"}})

        assert constitution.visual_identity.visual_density == VisualDensity.BALANCED

    def test_constitution_is_immutable(self):
        """Test constitutions are values: fields cannot be reassigned."""
        constitution = BrandConstitution.from_backend({})

        with pytest.raises(ValidationError):
            constitution.brand_essence = "changed"


class TestAuditResult:
    """Audit normalization."""

    def test_pass_is_derived_from_threshold(self):
        """Test pass always equals score >= threshold, whatever the backend claims."""
        result = AuditResult.from_backend({"compliance_score": 75, "pass": False}, threshold=70)
        assert result.passed is True

        result = AuditResult.from_backend({"compliance_score": 75, "pass": True}, threshold=90)
        assert result.passed is False

    def test_alternate_shapes(self):
        """Test score/issues/instructions aliases are normalized."""
        result = AuditResult.from_backend(
            {
                "score": "64.6",
                "issues": [{"description": "Wrong font", "x": 150, "y": -3}],
                "fix_instructions": {"instructions": "Use Archivo Black"},
            },
            threshold=70,
        )

        assert result.compliance_score == 65
        assert result.passed is False
        assert result.heatmap_coordinates[0].issue == "Wrong font"
        assert result.heatmap_coordinates[0].x == 100.0
        assert result.heatmap_coordinates[0].y == 0.0
        assert result.fix_instructions == "Use Archivo Black"

    def test_fix_instructions_list_is_joined(self):
        """Test a list of instructions becomes one string."""
        result = AuditResult.from_backend(
            {"compliance_score": 50, "fix_instructions": ["Warmer light", "Bigger logo"]},
            threshold=70,
        )

        assert result.fix_instructions == "Warmer light. Bigger logo"

    def test_missing_score_uses_default(self):
        """Test a response without a score is treated as 50."""
        result = AuditResult.from_backend({"strengths": ["ok"]}, threshold=70)

        assert result.compliance_score == 50
        assert result.passed is False

    def test_unparsable_recommends_manual_review(self):
        """Test non-object input yields the manual review verdict."""
        result = AuditResult.from_backend("not json", threshold=70)

        assert result.compliance_score == 50
        assert result.passed is False
        assert "Manual review recommended" in result.heatmap_coordinates[0].issue

    def test_serializes_pass_alias(self):
        """Test the wire format uses the key 'pass'."""
        result = AuditResult.from_backend({"compliance_score": 95}, threshold=70)
        dumped = result.model_dump(by_alias=True)

        assert dumped["pass"] is True
        assert "passed" not in dumped

    def test_heatmap_point_from_string(self):
        """Test a bare string issue becomes a centred point."""
        point = HeatmapPoint.model_validate("Logo too small")

        assert point.issue == "Logo too small"
        assert (point.x, point.y) == (50.0, 50.0)
        assert point.severity == "warning"


class TestTrendResearch:
    """Trend research normalization."""

    def test_empty_result_is_valid(self):
        """Test the fallback result is explicit and empty."""
        research = TrendResearch.empty()

        assert research.platform_trends == []
        assert research.recommendation == "Unable to parse trend research results"

    def test_malformed_entries_are_dropped(self):
        """Test non-object trend entries are ignored."""
        research = TrendResearch.model_validate({
            "platform_trends": ["junk", {"platform": "TikTok", "trending_styles": "lo-fi"}],
            "seasonal_relevance": "summer",
        })

        assert len(research.platform_trends) == 1
        assert research.platform_trends[0].trending_styles == ["lo-fi"]
        assert research.seasonal_relevance == ["summer"]


class TestParsing:
    """JSON extraction from loosely formatted backend text."""

    def test_strip_code_fences(self):
        """Test a fenced block is unwrapped."""
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_parse_plain_object(self):
        """Test plain JSON parses."""
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_parse_embedded_object(self):
        """Test an object inside prose is found."""
        text = 'Here is the result: {"score": 80, "note": "uses } in a string"} hope it helps'
        assert parse_json_response(text) == {"score": 80, "note": "uses } in a string"}

    def test_parse_array(self):
        """Test arrays are returned when a list is expected."""
        assert parse_json_response('```\n[{"role": "trend_scout"}]\n```', expect=list) == [{"role": "trend_scout"}]

    def test_wrong_type_is_unparsable(self):
        """Test an array is rejected where an object is expected."""
        assert parse_json_response("[1, 2]") is None

    def test_garbage_is_unparsable(self):
        """Test empty or non-JSON text returns None."""
        assert parse_json_response("") is None
        assert parse_json_response(None) is None
        assert parse_json_response("no json here") is None
