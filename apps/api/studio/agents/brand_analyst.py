"""
Brand Analyst agent.

Reads the moodboard (images, notes, colour swatches) with a multimodal call
and distils it into a BrandConstitution.
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..core.config import settings
from ..llm_backend import BackendError, CompletionOptions, GenerationBackend, ImagePart, LatencyClass, PromptPart, TextPart
from ..llm_retry import describe_backend_failure
from ..schemas import BrandConstitution, CanvasElement, CanvasElementType
from .parsing import parse_json_response
from .types import AgentOutcome

logger = logging.getLogger(__name__)

DATA_URL_RE = re.compile(r"^data:(image/[^;]+);base64,(.+)$", re.DOTALL)

NO_VALID_IMAGES_ERROR = (
    "No valid image elements found on the canvas. "
    "Add at least one uploaded image to the moodboard and try again."
)

ANALYSIS_PROMPT = """You are a Brand Constitution architect analysing a moodboard.

Analyse the {image_count} image(s) provided and extract the brand's visual DNA.
{context}
Requirements:
1. color_palette_hex: the exact dominant colours you see, as hex codes.
2. photography_style: a specific description of lighting, composition and texture.
3. voice.tone: the brand voice implied by the visual messaging.
4. voice.keywords: themes present in the imagery.
5. forbidden_elements: what would break this visual identity.

Respond with JSON only, using this structure:
{{
  "visual_identity": {{
    "color_palette_hex": ["#XXXXXX"],
    "photography_style": "...",
    "forbidden_elements": ["..."],
    "fonts": ["..."],
    "composition_rules": ["..."],
    "signature_elements": ["..."],
    "visual_density": "MINIMAL" | "BALANCED" | "DENSE"
  }},
  "voice": {{
    "tone": "...",
    "keywords": ["..."],
    "catchphrases": ["..."],
    "vocabulary_level": "SIMPLE" | "DIRECT" | "SOPHISTICATED" | "TECHNICAL"
  }},
  "content_patterns": {{
    "thumbnail_structure": "...",
    "text_overlay_rules": "...",
    "face_prominence": "NONE" | "LOW" | "MEDIUM" | "HIGH"
  }},
  "risk_thresholds": {{
    "nudity": "STRICT_ZERO_TOLERANCE" | "ALLOW_ARTISTIC",
    "political": "STRICT_ZERO_TOLERANCE" | "ALLOW_SATIRE"
  }},
  "brand_essence": "one sentence"
}}"""


@dataclass
class CanvasImage:
    name: str
    data: bytes
    mime_type: str


def decode_data_url(url: str) -> Optional[Tuple[str, bytes]]:
    """Split a ``data:image/<type>;base64,<payload>`` URL into (mime type, bytes). Other data URLs give None."""
    match = DATA_URL_RE.match(url or "")
    if not match:
        return None
    try:
        return match.group(1), base64.b64decode(match.group(2), validate=False)
    except (binascii.Error, ValueError):
        return None


def collect_canvas_inputs(elements: Sequence[CanvasElement]) -> Tuple[List[CanvasImage], List[str]]:
    """
    Separate canvas elements into inline images and textual context lines.

    Args:
        elements: Canvas elements in board order

    Returns:
        Tuple of (images, context_lines)
    """
    images: List[CanvasImage] = []
    context: List[str] = []

    for element in elements:
        if element.type == CanvasElementType.image and element.url:
            decoded = decode_data_url(element.url)
            if decoded:
                mime_type, data = decoded
                images.append(CanvasImage(
                    name=element.name or f"Image {len(images) + 1}",
                    data=data,
                    mime_type=mime_type,
                ))
            elif element.url.startswith("http"):
                context.append(f"[EXTERNAL IMAGE: {element.name or 'Unnamed'} - {element.url}]")
        elif element.type in (CanvasElementType.note, CanvasElementType.text) and element.text:
            context.append(f'[NOTE: "{element.text}"]')
        elif element.type == CanvasElementType.color and element.color:
            context.append(f"[COLOR SWATCH: {element.color}]")

    return images, context


def build_analysis_parts(images: Sequence[CanvasImage], context: Sequence[str], max_images: int) -> List[PromptPart]:
    context_block = "\nAdditional context:\n" + "\n".join(context) + "\n" if context else ""
    parts: List[PromptPart] = [
        TextPart(ANALYSIS_PROMPT.format(image_count=min(len(images), max_images), context=context_block))
    ]
    for index, image in enumerate(images[:max_images]):
        parts.append(ImagePart(data=image.data, mime_type=image.mime_type))
        parts.append(TextPart(f"[Image {index + 1}: {image.name}]"))
    return parts


class BrandAnalystAgent:
    """Extracts a BrandConstitution from canvas elements."""

    def __init__(self, backend: GenerationBackend, max_images: Optional[int] = None):
        self.backend = backend
        self.max_images = max_images or settings.MAX_CANVAS_IMAGES

    async def extract_constitution(self, elements: Sequence[CanvasElement]) -> AgentOutcome:
        """
        Analyse the moodboard.

        Args:
            elements: Canvas elements (images, notes, colours)

        Returns:
            AgentOutcome whose data is a BrandConstitution. Fails without
            calling the backend when no usable image is present.
        """
        images, context = collect_canvas_inputs(elements)
        if not images:
            logger.info(f"Brand analysis skipped: no usable images among {len(elements)} elements")
            return AgentOutcome.fail(NO_VALID_IMAGES_ERROR)

        logger.info(f"Analysing canvas: {len(images)} images, {len(context)} context elements")
        parts = build_analysis_parts(images, context, self.max_images)

        try:
            completion = await self.backend.complete(
                parts,
                CompletionOptions(latency=LatencyClass.ANALYSIS, json_output=True, temperature=1.0),
            )
        except BackendError as e:
            logger.error(f"Brand analysis failed: {e}", exc_info=True)
            return AgentOutcome.fail(describe_backend_failure(e, "Brand analysis"))
        except Exception as e:
            logger.error(f"Unexpected error in brand analysis: {e}", exc_info=True)
            return AgentOutcome.fail(f"Brand analysis failed: {e}")

        data = parse_json_response(completion.text)
        if data is None:
            logger.warning("Brand analysis returned unparsable JSON, using default constitution")
        return AgentOutcome.ok(BrandConstitution.from_backend(data))
