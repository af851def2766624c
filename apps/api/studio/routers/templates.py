"""Platform export templates."""

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import ORJSONResponse

from ..agents.export_optimizer import (
    PLATFORM_TEMPLATES,
    get_platform_prompt_additions,
    get_template,
    get_templates_for_platform,
    prepare_batch_export,
)
from ..models import BatchExportRequest


router = APIRouter(prefix="/templates", tags=["templates"])


@router.get("", response_class=ORJSONResponse)
async def list_templates():
    return {"templates": [t.to_dict() for t in PLATFORM_TEMPLATES.values()]}


@router.get("/platform/{platform}", response_class=ORJSONResponse)
async def list_platform_templates(platform: str):
    templates = get_templates_for_platform(platform)
    if not templates:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No templates for platform '{platform}'")
    return {"platform": platform.lower(), "templates": [t.to_dict() for t in templates]}


@router.post("/batch", response_class=ORJSONResponse)
async def batch_export(req: BatchExportRequest):
    """Export metadata for several templates. Unknown ids are reported per item."""
    return prepare_batch_export(req.templates, req.format)


@router.get("/{template_id}", response_class=ORJSONResponse)
async def get_template_by_id(template_id: str, asset_type: str | None = None):
    """Look a template up by id, or loosely by platform (optionally with ``asset_type``)."""
    template = get_template(template_id, asset_type)
    if template is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown template '{template_id}'")
    return {**template.to_dict(), "prompt_additions": get_platform_prompt_additions(template)}
