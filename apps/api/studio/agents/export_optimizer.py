"""
Platform templates and the Export Optimizer agent.

Pure lookups over a static table: no backend call, no I/O, same answer for the
same key every time. Pixel work (resizing, cropping) belongs to the client.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .types import AgentOutcome


@dataclass(frozen=True)
class PlatformTemplate:
    id: str
    name: str
    platform: str
    asset_type: str
    width: int
    height: int
    aspect_ratio: str
    guidelines: str
    max_file_size_kb: Optional[int] = None
    recommended_format: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


PLATFORM_TEMPLATES: Dict[str, PlatformTemplate] = {
    t.id: t for t in (
        PlatformTemplate(
            "youtube_thumbnail", "YouTube Thumbnail", "youtube", "thumbnail", 1280, 720, "16:9",
            "Bold text, high contrast, expressive faces, clear focal point", 2048, "jpg",
        ),
        PlatformTemplate(
            "youtube_banner", "YouTube Channel Banner", "youtube", "banner", 2560, 1440, "16:9",
            "Safe area for text: center 1546x423px, brand-consistent colors", 6144, "png",
        ),
        PlatformTemplate(
            "instagram_post", "Instagram Post", "instagram", "post", 1080, 1080, "1:1",
            "Clean aesthetic, brand colors, minimal text, eye-catching visuals", 30720, "jpg",
        ),
        PlatformTemplate(
            "instagram_story", "Instagram Story", "instagram", "story", 1080, 1920, "9:16",
            "Vertical format, dynamic, swipe-up CTA space at bottom", 30720, "jpg",
        ),
        PlatformTemplate(
            "instagram_reel_cover", "Instagram Reel Cover", "instagram", "reel_cover", 1080, 1920, "9:16",
            "Vertical, thumbnail-style, attention-grabbing", 30720, "jpg",
        ),
        PlatformTemplate(
            "tiktok_cover", "TikTok Video Cover", "tiktok", "cover", 1080, 1920, "9:16",
            "Vertical format, dynamic, trend-aware, bold text",
        ),
        PlatformTemplate(
            "twitter_header", "Twitter/X Header", "twitter", "header", 1500, 500, "3:1",
            "Wide format, account for profile picture overlap on left",
        ),
        PlatformTemplate(
            "twitter_post", "Twitter/X Post Image", "twitter", "post", 1200, 675, "16:9",
            "Landscape preferred, clear message, minimal text",
        ),
        PlatformTemplate(
            "facebook_cover", "Facebook Page Cover", "facebook", "cover", 820, 312, "16:9",
            "Account for mobile cropping, centered important elements",
        ),
    )
}

PLATFORM_STYLES = {
    "youtube": "High contrast, bold typography, attention-grabbing",
    "instagram": "Aesthetic, cohesive with feed, visually pleasing",
    "tiktok": "Dynamic, trend-aware, youthful energy",
    "twitter": "Clean, professional, message-focused",
    "facebook": "Community-focused, warm, approachable",
}


def get_template(id_or_platform: str, asset_type: Optional[str] = None) -> Optional[PlatformTemplate]:
    """
    Find a template by id, by platform + asset type, or by loose match.

    Args:
        id_or_platform: Template id ("youtube_thumbnail") or platform ("youtube")
        asset_type: Optional asset type ("thumbnail")

    Returns:
        The first matching template in table order, or None
    """
    key = (id_or_platform or "").strip().lower()
    if not key:
        return None
    if key in PLATFORM_TEMPLATES:
        return PLATFORM_TEMPLATES[key]
    if asset_type:
        combined = f"{key}_{asset_type.strip().lower()}"
        if combined in PLATFORM_TEMPLATES:
            return PLATFORM_TEMPLATES[combined]
    for template in PLATFORM_TEMPLATES.values():
        if template.platform == key or template.asset_type == key or key in template.id:
            return template
    return None


def get_templates_for_platform(platform: str) -> List[PlatformTemplate]:
    return [t for t in PLATFORM_TEMPLATES.values() if t.platform == platform.lower()]


def get_aspect_ratio(template_id: str) -> Optional[str]:
    template = get_template(template_id)
    return template.aspect_ratio if template else None


def get_platform_prompt_additions(template: PlatformTemplate) -> str:
    additions = [
        f"ASPECT RATIO: {template.aspect_ratio} ({template.width}x{template.height})",
        f"PLATFORM GUIDELINES: {template.guidelines}",
    ]
    style = PLATFORM_STYLES.get(template.platform)
    if style:
        additions.append(f"STYLE: {style}")
    return "\n".join(additions)


def apply_template(
    prompt: str,
    aspect_ratio: Optional[str],
    template_key: Optional[str],
    asset_type: Optional[str] = None,
) -> Tuple[str, Optional[str]]:
    """Fold a template's ratio and guidelines into a generation request. Unknown keys change nothing."""
    template = get_template(template_key, asset_type) if template_key else None
    if template is None:
        return prompt, aspect_ratio
    return f"{prompt}\n\n{get_platform_prompt_additions(template)}", aspect_ratio or template.aspect_ratio


def prepare_batch_export(template_ids: Sequence[str], export_format: Optional[str] = None) -> Dict[str, Any]:
    """
    Describe the exports needed for several templates.

    Returns:
        ``{"success", "exports": [...], "errors": [{"template_id", "error"}]}``;
        success is False when any template id is unknown.
    """
    exports = []
    errors = []
    for template_id in template_ids:
        template = get_template(template_id)
        if template is None:
            errors.append({"template_id": template_id, "error": f"Unknown template: {template_id}"})
            continue
        exports.append({
            "template_id": template.id,
            "platform": template.platform,
            "asset_type": template.asset_type,
            "dimensions": {"width": template.width, "height": template.height},
            "aspect_ratio": template.aspect_ratio,
            "format": export_format or template.recommended_format or "jpg",
            "max_file_size_kb": template.max_file_size_kb,
        })
    return {"success": not errors, "exports": exports, "errors": errors}


class ExportOptimizerAgent:
    """Task-facing wrapper over the template table."""

    def handle(self, action: str, params: Dict[str, Any]) -> AgentOutcome:
        if action in ("batch_export", "prepare_batch"):
            templates = params.get("templates") or []
            if isinstance(templates, str):
                templates = [templates]
            if not templates:
                return AgentOutcome.fail("batch_export requires at least one template id")
            result = prepare_batch_export(templates, params.get("format"))
            if not result["success"]:
                return AgentOutcome.fail("; ".join(e["error"] for e in result["errors"]), data=result)
            return AgentOutcome.ok(result)

        key = params.get("template") or params.get("template_id") or params.get("platform") or ""
        template = get_template(key, params.get("asset_type"))
        if template is None:
            return AgentOutcome.fail(f"Unknown template: {key or '(none given)'}")
        return AgentOutcome.ok({
            "template": template.to_dict(),
            "prompt_additions": get_platform_prompt_additions(template),
        })
