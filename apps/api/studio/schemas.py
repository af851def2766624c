"""Domain schemas shared by the agents and the orchestration core.

Backend output is untrusted: every schema here is the single parse step for
its value. Each field declares one default-substitution policy, applied when
the backend omits the field, returns the wrong type or returns an empty value:

- Lists of strings keep only non-empty string items; an empty result falls back
  to the field default.
- Free-text fields fall back to the field default when blank.
- Enumerations fall back to the field default when the value is unknown.
- Numbers are clamped into their valid range instead of being rejected.
"""

import logging
import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


logger = logging.getLogger(__name__)

HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")

DEFAULT_PALETTE = ["#000000"]
DEFAULT_PHOTOGRAPHY_STYLE = "Professional and clean"
DEFAULT_FONTS = ["Inter", "System Sans"]
DEFAULT_COMPOSITION_RULES = ["Balanced", "Rule of thirds"]
DEFAULT_TONE = "Professional"
DEFAULT_BRAND_ESSENCE = "A modern, professional brand."
DEFAULT_AUDIT_SCORE = 50


def _string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item).strip() for item in value if isinstance(item, (str, int, float)) and str(item).strip()]


def _text(value: Any) -> str:
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value).strip()
    return ""


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ============ BRAND CONSTITUTION ============

class VisualDensity(str, Enum):
    MINIMAL = "MINIMAL"
    BALANCED = "BALANCED"
    DENSE = "DENSE"


class VocabularyLevel(str, Enum):
    SIMPLE = "SIMPLE"
    DIRECT = "DIRECT"
    SOPHISTICATED = "SOPHISTICATED"
    TECHNICAL = "TECHNICAL"


class FaceProminence(str, Enum):
    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class NudityThreshold(str, Enum):
    STRICT_ZERO_TOLERANCE = "STRICT_ZERO_TOLERANCE"
    ALLOW_ARTISTIC = "ALLOW_ARTISTIC"


class PoliticalThreshold(str, Enum):
    STRICT_ZERO_TOLERANCE = "STRICT_ZERO_TOLERANCE"
    ALLOW_SATIRE = "ALLOW_SATIRE"


class _Section(BaseModel):
    """Base for constitution sections: frozen, tolerant of unknown keys."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _require_mapping(cls, data: Any) -> Any:
        return data if isinstance(data, dict) else {}


def _enum_or_default(enum_cls, value: Any, default):
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError:
        return default


class VisualIdentity(_Section):
    color_palette_hex: List[str] = Field(default_factory=lambda: list(DEFAULT_PALETTE))
    photography_style: str = DEFAULT_PHOTOGRAPHY_STYLE
    forbidden_elements: List[str] = Field(default_factory=list)
    fonts: List[str] = Field(default_factory=lambda: list(DEFAULT_FONTS))
    composition_rules: List[str] = Field(default_factory=lambda: list(DEFAULT_COMPOSITION_RULES))
    signature_elements: List[str] = Field(default_factory=list)
    visual_density: VisualDensity = VisualDensity.BALANCED

    @field_validator("color_palette_hex", mode="before")
    @classmethod
    def _palette(cls, value: Any) -> List[str]:
        colors = [c.upper() for c in _string_list(value) if HEX_COLOR_RE.match(c)]
        return colors or list(DEFAULT_PALETTE)

    @field_validator("photography_style", mode="before")
    @classmethod
    def _style(cls, value: Any) -> str:
        return _text(value) or DEFAULT_PHOTOGRAPHY_STYLE

    @field_validator("forbidden_elements", "signature_elements", mode="before")
    @classmethod
    def _optional_list(cls, value: Any) -> List[str]:
        return _string_list(value)

    @field_validator("fonts", mode="before")
    @classmethod
    def _fonts(cls, value: Any) -> List[str]:
        return _string_list(value) or list(DEFAULT_FONTS)

    @field_validator("composition_rules", mode="before")
    @classmethod
    def _composition(cls, value: Any) -> List[str]:
        return _string_list(value) or list(DEFAULT_COMPOSITION_RULES)

    @field_validator("visual_density", mode="before")
    @classmethod
    def _density(cls, value: Any) -> VisualDensity:
        return _enum_or_default(VisualDensity, value, VisualDensity.BALANCED)


class Voice(_Section):
    tone: str = DEFAULT_TONE
    keywords: List[str] = Field(default_factory=list)
    catchphrases: List[str] = Field(default_factory=list)
    vocabulary_level: VocabularyLevel = VocabularyLevel.DIRECT

    @field_validator("tone", mode="before")
    @classmethod
    def _tone(cls, value: Any) -> str:
        return _text(value) or DEFAULT_TONE

    @field_validator("keywords", "catchphrases", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> List[str]:
        return _string_list(value)

    @field_validator("vocabulary_level", mode="before")
    @classmethod
    def _vocabulary(cls, value: Any) -> VocabularyLevel:
        return _enum_or_default(VocabularyLevel, value, VocabularyLevel.DIRECT)


class ContentPatterns(_Section):
    thumbnail_structure: str = ""
    text_overlay_rules: str = ""
    face_prominence: FaceProminence = FaceProminence.MEDIUM

    @field_validator("thumbnail_structure", "text_overlay_rules", mode="before")
    @classmethod
    def _texts(cls, value: Any) -> str:
        return _text(value)

    @field_validator("face_prominence", mode="before")
    @classmethod
    def _faces(cls, value: Any) -> FaceProminence:
        return _enum_or_default(FaceProminence, value, FaceProminence.MEDIUM)


class RiskThresholds(_Section):
    nudity: NudityThreshold = NudityThreshold.STRICT_ZERO_TOLERANCE
    political: PoliticalThreshold = PoliticalThreshold.STRICT_ZERO_TOLERANCE

    @field_validator("nudity", mode="before")
    @classmethod
    def _nudity(cls, value: Any) -> NudityThreshold:
        return _enum_or_default(NudityThreshold, value, NudityThreshold.STRICT_ZERO_TOLERANCE)

    @field_validator("political", mode="before")
    @classmethod
    def _political(cls, value: Any) -> PoliticalThreshold:
        return _enum_or_default(PoliticalThreshold, value, PoliticalThreshold.STRICT_ZERO_TOLERANCE)


class BrandConstitution(_Section):
    """The reusable style profile extracted from a moodboard.

    Treated as a value: agents replace it wholesale, never patch fields.
    """

    visual_identity: VisualIdentity = Field(default_factory=VisualIdentity)
    voice: Voice = Field(default_factory=Voice)
    content_patterns: ContentPatterns = Field(default_factory=ContentPatterns)
    risk_thresholds: RiskThresholds = Field(default_factory=RiskThresholds)
    brand_essence: str = DEFAULT_BRAND_ESSENCE

    @field_validator("brand_essence", mode="before")
    @classmethod
    def _essence(cls, value: Any) -> str:
        return _text(value) or DEFAULT_BRAND_ESSENCE

    @classmethod
    def from_backend(cls, data: Any) -> "BrandConstitution":
        """Build a constitution from arbitrary decoded JSON, applying defaults."""
        return cls.model_validate(data)


# ============ COMPLIANCE AUDIT ============

class HeatmapPoint(BaseModel):
    """One brand violation, located by percentage coordinates on the image."""

    x: float = 50.0
    y: float = 50.0
    issue: str = "Unspecified issue"
    severity: str = "warning"
    category: Optional[str] = None
    suggestion: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return {"issue": _text(data) or "Unspecified issue"}
        normalized = dict(data)
        if "issue" not in normalized:
            normalized["issue"] = normalized.get("description") or normalized.get("message")
        return normalized

    @field_validator("x", "y", mode="before")
    @classmethod
    def _percent(cls, value: Any) -> float:
        try:
            return _clamp(float(value), 0.0, 100.0)
        except (TypeError, ValueError):
            return 50.0

    @field_validator("issue", mode="before")
    @classmethod
    def _issue(cls, value: Any) -> str:
        return _text(value) or "Unspecified issue"

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, value: Any) -> str:
        severity = _text(value).lower()
        return severity if severity in ("critical", "warning", "minor") else "warning"

    @field_validator("category", "suggestion", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        return _text(value) or None


class _RawAudit(BaseModel):
    """Typed view over the alternate audit shapes the backend is known to emit."""

    model_config = ConfigDict(extra="ignore")

    compliance_score: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("compliance_score", "score")
    )
    heatmap_coordinates: List[HeatmapPoint] = Field(
        default_factory=list,
        validation_alias=AliasChoices("heatmap_coordinates", "coordinates", "issues", "violations"),
    )
    fix_instructions: str = Field(default="", validation_alias=AliasChoices("fix_instructions", "instructions"))
    strengths: List[str] = Field(default_factory=list)

    @field_validator("compliance_score", mode="before")
    @classmethod
    def _score(cls, value: Any) -> Optional[float]:
        if isinstance(value, bool):
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @field_validator("heatmap_coordinates", mode="before")
    @classmethod
    def _points(cls, value: Any) -> List[Any]:
        return value if isinstance(value, list) else []

    @field_validator("fix_instructions", mode="before")
    @classmethod
    def _fixes(cls, value: Any) -> str:
        if isinstance(value, dict):
            value = value.get("instructions", "")
        if isinstance(value, list):
            return ". ".join(_string_list(value))
        return _text(value)

    @field_validator("strengths", mode="before")
    @classmethod
    def _strengths(cls, value: Any) -> List[str]:
        return _string_list(value)


class AuditResult(BaseModel):
    """Compliance verdict for one image against one constitution."""

    compliance_score: int = Field(ge=0, le=100)
    passed: bool = Field(serialization_alias="pass")
    heatmap_coordinates: List[HeatmapPoint] = Field(default_factory=list)
    fix_instructions: str = ""
    strengths: List[str] = Field(default_factory=list)

    @classmethod
    def from_backend(cls, data: Any, threshold: int) -> "AuditResult":
        """Normalize a decoded backend response.

        Args:
            data: Decoded JSON (anything; non-objects count as unparsable)
            threshold: Score needed to pass

        Returns:
            AuditResult whose ``passed`` always equals ``score >= threshold``
        """
        if not isinstance(data, dict):
            return cls.unparsable(threshold)

        raw = _RawAudit.model_validate(data)
        score = raw.compliance_score
        if score is None:
            score = DEFAULT_AUDIT_SCORE
        score = int(round(_clamp(score, 0, 100)))

        passed = score >= threshold
        reported = data.get("pass")
        if isinstance(reported, bool) and reported != passed:
            logger.debug(f"Backend pass={reported} disagrees with score {score} at threshold {threshold}")

        return cls(
            compliance_score=score,
            passed=passed,
            heatmap_coordinates=raw.heatmap_coordinates,
            fix_instructions=(
                raw.fix_instructions
                or ". ".join(p.suggestion for p in raw.heatmap_coordinates if p.suggestion)
                or "No specific fix instructions provided."
            ),
            strengths=raw.strengths,
        )

    @classmethod
    def unparsable(cls, threshold: int) -> "AuditResult":
        return cls(
            compliance_score=DEFAULT_AUDIT_SCORE,
            passed=False,
            heatmap_coordinates=[
                HeatmapPoint(x=50, y=50, issue="Unable to parse audit results. Manual review recommended.")
            ],
            fix_instructions="Please review the image manually against brand guidelines.",
        )


# ============ TREND RESEARCH ============

class PlatformTrend(_Section):
    platform: str = "Unknown"
    trending_styles: List[str] = Field(default_factory=list)
    trending_colors: List[str] = Field(default_factory=list)
    trending_formats: List[str] = Field(default_factory=list)

    @field_validator("platform", mode="before")
    @classmethod
    def _platform(cls, value: Any) -> str:
        return _text(value) or "Unknown"

    @field_validator("trending_styles", "trending_colors", "trending_formats", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> List[str]:
        return _string_list(value)


class CompetitorInsight(_Section):
    observation: str = ""
    opportunity: str = ""

    @field_validator("observation", "opportunity", mode="before")
    @classmethod
    def _texts(cls, value: Any) -> str:
        return _text(value)


class TrendResearch(_Section):
    platform_trends: List[PlatformTrend] = Field(default_factory=list)
    competitor_insights: List[CompetitorInsight] = Field(default_factory=list)
    seasonal_relevance: List[str] = Field(default_factory=list)
    recommendation: str = "No specific recommendation"
    sources: List[str] = Field(default_factory=list)

    @field_validator("platform_trends", "competitor_insights", mode="before")
    @classmethod
    def _objects(cls, value: Any) -> List[Any]:
        return [item for item in value if isinstance(item, dict)] if isinstance(value, list) else []

    @field_validator("seasonal_relevance", "sources", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> List[str]:
        return _string_list(value)

    @field_validator("recommendation", mode="before")
    @classmethod
    def _recommendation(cls, value: Any) -> str:
        return _text(value) or "No specific recommendation"

    @classmethod
    def empty(cls) -> "TrendResearch":
        return cls(recommendation="Unable to parse trend research results")


# ============ CANVAS ============

class CanvasElementType(str, Enum):
    image = "image"
    text = "text"
    note = "note"
    color = "color"


class CanvasElement(BaseModel):
    """One item on the user's moodboard."""

    id: str
    type: CanvasElementType
    url: Optional[str] = Field(default=None, description="data: URL or external link for images")
    text: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("text", "content"),
        description="Body of notes and text blocks",
    )
    color: Optional[str] = Field(default=None, description="Hex value for colour swatches")
    name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
