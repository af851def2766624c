"""Direct access to single specialist agents, outside of an orchestration run."""

import base64
import binascii
import logging
from typing import Tuple

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import ORJSONResponse

from ..agents.brand_analyst import NO_VALID_IMAGES_ERROR, BrandAnalystAgent
from ..agents.compliance_auditor import ComplianceAuditorAgent
from ..agents.creative_director import CreativeDirectorAgent
from ..agents.export_optimizer import apply_template
from ..agents.trend_scout import TrendScoutAgent
from ..agents.types import AgentOutcome
from ..dependencies import get_backend, get_image_store
from ..llm_backend import GenerationBackend
from ..models import AnalyzeRequest, AuditRequest, EditRequest, GenerateRequest, TrendRequest, VariationsRequest
from ..storage import ImageStore


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agents", tags=["agents"])


def _raise_failure(outcome: AgentOutcome, error: str) -> None:
    """Agent failures surface as 502: the backend, not the request, was at fault."""
    raise HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={"error": error, "message": outcome.error},
    )


def _decode_image(payload: str, mime_type: str, field: str) -> Tuple[bytes, str]:
    """Decode raw base64 or a data URL. Returns (bytes, mime type); 400 on bad input."""
    if payload.startswith("data:") and "," in payload:
        header, payload = payload.split(",", 1)
        mime_type = header[5:].split(";")[0] or mime_type

    try:
        return base64.b64decode(payload, validate=True), mime_type
    except (binascii.Error, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Invalid image", "message": f"{field} is not valid base64"},
        )


@router.post("/analyze", response_class=ORJSONResponse)
async def analyze_canvas(req: AnalyzeRequest, backend: GenerationBackend = Depends(get_backend)):
    """Extract a Brand Constitution from moodboard elements."""
    outcome = await BrandAnalystAgent(backend).extract_constitution(req.canvas_elements)
    if not outcome.success:
        if outcome.error == NO_VALID_IMAGES_ERROR:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"error": "No images", "message": outcome.error},
            )
        _raise_failure(outcome, "Brand analysis failed")
    return {"constitution": outcome.data.model_dump(mode="json")}


@router.post("/generate", response_class=ORJSONResponse)
async def generate_asset(
    req: GenerateRequest,
    backend: GenerationBackend = Depends(get_backend),
    image_store: ImageStore = Depends(get_image_store),
):
    """
    Generate one image.

    ``template`` may name an export template or a platform; its aspect ratio is
    used unless ``aspect_ratio`` is given explicitly.
    """
    prompt, aspect_ratio = apply_template(req.prompt, req.aspect_ratio, req.template)
    outcome = await CreativeDirectorAgent(backend).generate_asset(prompt, req.constitution, aspect_ratio)
    if not outcome.success:
        _raise_failure(outcome, "Image generation failed")

    data = outcome.data
    image_id = await image_store.put(data["image"], data["mime_type"])
    return {
        "image_id": image_id,
        "mime_type": data["mime_type"],
        "prompt": data["prompt"],
        "aspect_ratio": data["aspect_ratio"],
        "description": data.get("description"),
    }


@router.post("/variations", response_class=ORJSONResponse)
async def generate_variations(
    req: VariationsRequest,
    backend: GenerationBackend = Depends(get_backend),
    image_store: ImageStore = Depends(get_image_store),
):
    """Generate several takes on one request. Failed variations are reported, not raised."""
    outcomes = await CreativeDirectorAgent(backend).generate_variations(
        req.prompt, req.constitution, req.count, req.aspect_ratio
    )
    variations = []
    for outcome in outcomes:
        if not outcome.success:
            variations.append({"error": outcome.error})
            continue
        data = outcome.data
        variations.append({
            "image_id": await image_store.put(data["image"], data["mime_type"]),
            "mime_type": data["mime_type"],
            "prompt": data["prompt"],
            "aspect_ratio": data["aspect_ratio"],
        })
    if not any("image_id" in v for v in variations):
        _raise_failure(outcomes[-1], "Image generation failed")
    return {"variations": variations}


@router.post("/edit", response_class=ORJSONResponse)
async def edit_image(
    req: EditRequest,
    backend: GenerationBackend = Depends(get_backend),
    image_store: ImageStore = Depends(get_image_store),
):
    """
    Conversational image edit.

    Send ``mask_base64`` to repaint only the white regions. Pass the returned
    ``thought_signature`` with the next edit to continue the same conversation.
    """
    image, mime_type = _decode_image(req.image_base64, req.mime_type, "image_base64")
    mask = None
    if req.mask_base64:
        mask, _ = _decode_image(req.mask_base64, "image/png", "mask_base64")

    outcome = await CreativeDirectorAgent(backend).edit_image(
        image, req.edit_prompt, mask, req.thought_signature, mime_type
    )
    if not outcome.success:
        _raise_failure(outcome, "Image edit failed")

    data = outcome.data
    image_id = await image_store.put(data["image"], data["mime_type"])
    return {
        "image_id": image_id,
        "mime_type": data["mime_type"],
        "text": data["text"],
        "thought_signature": data["thought_signature"],
        "mode": data["mode"],
    }


@router.post("/audit", response_class=ORJSONResponse)
async def audit_asset(req: AuditRequest, backend: GenerationBackend = Depends(get_backend)):
    """Score an image against a constitution. Accepts raw base64 or a data URL."""
    image, mime_type = _decode_image(req.image_base64, req.mime_type, "image_base64")
    outcome = await ComplianceAuditorAgent(backend).audit_asset(image, req.constitution, mime_type)
    if not outcome.success:
        _raise_failure(outcome, "Compliance audit failed")
    return outcome.data.model_dump(mode="json", by_alias=True)


@router.post("/trends", response_class=ORJSONResponse)
async def research_trends(req: TrendRequest, backend: GenerationBackend = Depends(get_backend)):
    """Search-grounded trend research. Returns an empty result rather than failing."""
    outcome = await TrendScoutAgent(backend).research_trends(req.query, req.platforms, req.niche)
    return outcome.data.model_dump(mode="json")


@router.get("/trends/{platform}", response_class=ORJSONResponse)
async def platform_trends(platform: str, backend: GenerationBackend = Depends(get_backend)):
    """Current trends for one platform."""
    trend = await TrendScoutAgent(backend).get_platform_trends(platform)
    if trend is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "No trends", "message": f"No trends found for {platform}"},
        )
    return trend.model_dump(mode="json")
