"""
Creative Director agent.

Expands a user request into a brand-anchored image prompt and asks the
backend to render it. One call in, one result out: retries belong to the
backend wrapper, regeneration decisions belong to the caller.
"""

import logging
from typing import List, Optional, Sequence

from ..llm_backend import (
    SUPPORTED_ASPECT_RATIOS,
    BackendError,
    CompletionOptions,
    GenerationBackend,
    ImagePart,
    LatencyClass,
    PromptPart,
    TextPart,
)
from ..llm_retry import describe_backend_failure
from ..schemas import BrandConstitution
from .types import AgentOutcome

logger = logging.getLogger(__name__)

DEFAULT_ASPECT_RATIO = "16:9"


def build_brand_prompt(user_prompt: str, constitution: Optional[BrandConstitution]) -> str:
    """
    Expand a request with the brand constitution.

    Brand facts are always emitted in the same priority order: essence,
    colours, photography style, forbidden elements (as a negative
    constraint), voice tone. Secondary guidance follows.

    Args:
        user_prompt: What the user asked for
        constitution: Active constitution, or None to send the prompt as-is

    Returns:
        The prompt actually sent to the backend
    """
    if constitution is None:
        return user_prompt.strip()

    visual = constitution.visual_identity
    voice = constitution.voice

    lines = [
        f"USER INTENT: {user_prompt.strip()}",
        "",
        "BRAND DNA (ADHERE STRICTLY):",
        f"- Essence: {constitution.brand_essence}",
        f"- Colors: {', '.join(visual.color_palette_hex)}",
        f"- Photography Style: {visual.photography_style}",
    ]
    if visual.forbidden_elements:
        lines.append(f"- DO NOT INCLUDE: {', '.join(visual.forbidden_elements)}")
    lines.append(f"- Voice Tone: {voice.tone}")

    lines.extend([
        f"- Typography: {', '.join(visual.fonts)}",
        f"- Composition Rules: {', '.join(visual.composition_rules)}",
        f"- Visual Density: {visual.visual_density.value}",
    ])
    if visual.signature_elements:
        lines.append(f"- Signature Elements: {', '.join(visual.signature_elements)}")

    lines.extend([
        "",
        "SCENE REQUIREMENTS:",
        f'Construct a polished, professional scene that embodies the "{voice.tone}" brand voice.',
        f'Follow "{visual.composition_rules[0]}" composition principles.',
    ])
    return "\n".join(lines)


def build_refinement_prompt(
    original_prompt: str,
    feedback: str,
    constitution: Optional[BrandConstitution],
    issues: Optional[Sequence[str]] = None,
) -> str:
    visual = constitution.visual_identity if constitution else None
    colors = ", ".join(visual.color_palette_hex) if visual else "Not specified"
    style = visual.photography_style if visual else "Modern"
    forbidden = ", ".join(visual.forbidden_elements) if visual and visual.forbidden_elements else "None"
    issue_line = f"\nSpecific issues: {', '.join(issues)}" if issues else ""

    return f"""Refine this image generation prompt based on compliance feedback.

Original prompt:
{original_prompt}

Feedback:
{feedback}{issue_line}

Brand constraints:
Colors: {colors}
Style: {style}
Forbidden: {forbidden}

Return ONLY the refined prompt, no explanation."""


MASK_LEAD_IN = "Here is the mask indicating which areas to edit (white = edit, black = preserve):"


def build_edit_prompt(edit_prompt: str, masked: bool) -> str:
    """Instructions for a whole-image edit, or for inpainting the masked region only."""
    if masked:
        return f"""You are an image editor specialising in precise inpainting.

The user has selected a region of the image, shown in the mask: white areas are to be edited,
black areas must be preserved.

USER REQUEST: "{edit_prompt.strip()}"

Rules:
1. Only modify the white regions of the mask.
2. Blend the changes seamlessly into the surrounding areas.
3. Keep the style, lighting and colour palette of the original image.
4. Leave everything in the black regions untouched.

Return the edited image."""
    return f"""You are an image editor. Edit the provided image according to the user's instructions.

USER REQUEST: "{edit_prompt.strip()}"

Apply the edit precisely and keep the overall composition and quality of the original image.
Return the edited image."""


def build_edit_parts(
    image: bytes,
    edit_prompt: str,
    mask: Optional[bytes] = None,
    mime_type: str = "image/png",
) -> List[PromptPart]:
    """Base image first, then the mask (if any), then the instructions."""
    parts: List[PromptPart] = [ImagePart(data=image, mime_type=mime_type)]
    if mask:
        parts.append(TextPart(MASK_LEAD_IN))
        parts.append(ImagePart(data=mask, mime_type="image/png"))
    parts.append(TextPart(build_edit_prompt(edit_prompt, masked=bool(mask))))
    return parts


def resolve_aspect_ratio(aspect_ratio: Optional[str]) -> str:
    """Map a requested ratio onto one the backend can render."""
    if aspect_ratio in SUPPORTED_ASPECT_RATIOS:
        return aspect_ratio
    if aspect_ratio:
        logger.debug(f"Aspect ratio {aspect_ratio} not supported for generation, using {DEFAULT_ASPECT_RATIO}")
    return DEFAULT_ASPECT_RATIO


class CreativeDirectorAgent:
    """Generates on-brand images."""

    def __init__(self, backend: GenerationBackend):
        self.backend = backend

    async def generate_asset(
        self,
        prompt: str,
        constitution: Optional[BrandConstitution] = None,
        aspect_ratio: Optional[str] = None,
    ) -> AgentOutcome:
        """
        Render one image.

        Returns:
            AgentOutcome with data ``{"image", "mime_type", "prompt",
            "description", "aspect_ratio", "thought_signature"}``
        """
        if not prompt or not prompt.strip():
            return AgentOutcome.fail("A prompt is required to generate an image")

        brand_prompt = build_brand_prompt(prompt, constitution)
        ratio = resolve_aspect_ratio(aspect_ratio)

        try:
            completion = await self.backend.complete(
                [TextPart(brand_prompt)],
                CompletionOptions(latency=LatencyClass.IMAGE, want_image=True, aspect_ratio=ratio),
            )
        except BackendError as e:
            logger.error(f"Image generation failed: {e}", exc_info=True)
            return AgentOutcome.fail(describe_backend_failure(e, "Image generation"))
        except Exception as e:
            logger.error(f"Unexpected error in image generation: {e}", exc_info=True)
            return AgentOutcome.fail(f"Image generation failed: {e}")

        if not completion.image_bytes:
            logger.warning(f"Image generation returned no image (text: {(completion.text or '')[:120]!r})")
            return AgentOutcome.fail("No image generated in response")

        return AgentOutcome.ok({
            "image": completion.image_bytes,
            "mime_type": completion.image_mime_type or "image/png",
            "prompt": brand_prompt,
            "description": completion.text,
            "aspect_ratio": ratio,
            "thought_signature": completion.thought_signature,
        })

    async def generate_variations(
        self,
        prompt: str,
        constitution: Optional[BrandConstitution] = None,
        count: int = 2,
        aspect_ratio: Optional[str] = None,
    ) -> List[AgentOutcome]:
        """Generate ``count`` variations of the same request, one after another."""
        results = []
        for index in range(count):
            label = "Standard" if index == 0 else "Alternative composition"
            results.append(await self.generate_asset(
                f"{prompt} (Variation {index + 1}: {label})", constitution, aspect_ratio
            ))
        return results

    async def edit_image(
        self,
        image: bytes,
        edit_prompt: str,
        mask: Optional[bytes] = None,
        thought_signature: Optional[str] = None,
        mime_type: str = "image/png",
    ) -> AgentOutcome:
        """
        Edit an existing image from a natural-language instruction.

        With a mask only the white regions are repainted (inpainting). The
        thought signature of the previous turn is handed back when the backend
        does not return a new one, so a client can keep one editing
        conversation going across calls.

        Args:
            image: Base image bytes
            edit_prompt: What to change
            mask: Optional PNG mask, white = edit, black = preserve
            thought_signature: Signature returned by the previous edit, if any
            mime_type: MIME type of the base image

        Returns:
            AgentOutcome with data ``{"image", "mime_type", "text",
            "thought_signature", "mode"}`` where mode is "inpaint" or "full"
        """
        if not image:
            return AgentOutcome.fail("An image is required to edit")
        if not edit_prompt or not edit_prompt.strip():
            return AgentOutcome.fail("An edit prompt is required")

        mode = "inpaint" if mask else "full"
        try:
            completion = await self.backend.complete(
                build_edit_parts(image, edit_prompt, mask, mime_type),
                CompletionOptions(latency=LatencyClass.IMAGE, want_image=True, temperature=1.0),
            )
        except BackendError as e:
            logger.error(f"Image edit failed: {e}", exc_info=True)
            return AgentOutcome.fail(describe_backend_failure(e, "Image edit"))
        except Exception as e:
            logger.error(f"Unexpected error in image edit: {e}", exc_info=True)
            return AgentOutcome.fail(f"Image edit failed: {e}")

        if not completion.image_bytes:
            logger.warning(f"Image edit returned no image (text: {(completion.text or '')[:120]!r})")
            return AgentOutcome.fail("No image generated in response")

        logger.info(f"Image edited ({mode})")
        return AgentOutcome.ok({
            "image": completion.image_bytes,
            "mime_type": completion.image_mime_type or "image/png",
            "text": completion.text,
            "thought_signature": completion.thought_signature or thought_signature,
            "mode": mode,
        })

    async def refine_prompt(
        self,
        original_prompt: str,
        feedback: str,
        constitution: Optional[BrandConstitution] = None,
        issues: Optional[Sequence[str]] = None,
    ) -> AgentOutcome:
        """Rewrite a prompt so the next generation addresses audit feedback.

        Returns:
            AgentOutcome with data ``{"prompt": refined}``
        """
        try:
            completion = await self.backend.complete(
                [TextPart(build_refinement_prompt(original_prompt, feedback, constitution, issues))],
                CompletionOptions(latency=LatencyClass.FAST, temperature=1.0),
            )
        except BackendError as e:
            logger.error(f"Prompt refinement failed: {e}", exc_info=True)
            return AgentOutcome.fail(describe_backend_failure(e, "Prompt refinement"))
        except Exception as e:
            logger.error(f"Unexpected error in prompt refinement: {e}", exc_info=True)
            return AgentOutcome.fail(f"Prompt refinement failed: {e}")

        refined = (completion.text or "").strip()
        if not refined:
            # Nothing usable came back: carry the feedback forward verbatim
            refined = f"{original_prompt.strip()}\n\nFix: {feedback.strip()}"
        return AgentOutcome.ok({"prompt": refined})
