"""Pydantic models for the orchestration stream and the HTTP API."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .schemas import AuditResult, BrandConstitution, CanvasElement


class ProgressPhase(str, Enum):
    """Externally visible run phases. complete and error are terminal."""
    parsing = "parsing"
    planning = "planning"
    executing = "executing"
    complete = "complete"
    error = "error"


TERMINAL_PHASES = frozenset({ProgressPhase.complete, ProgressPhase.error})


class OrchestrationStrategyName(str, Enum):
    planner = "planner"
    agent_loop = "agent_loop"


class OrchestrationResult(BaseModel):
    """Final synthesized outcome of one run."""
    success: bool
    message: str
    image: Optional[bytes] = Field(default=None, exclude=True, description="Raw image bytes, never serialized")
    image_mime_type: Optional[str] = None
    image_id: Optional[str] = Field(default=None, description="Transient blob store id for the image")
    prompt: Optional[str] = Field(default=None, description="Expanded prompt behind the image")
    constitution: Optional[BrandConstitution] = None
    audit: Optional[AuditResult] = None
    task_results: List[Dict[str, Any]] = Field(default_factory=list)
    duration_ms: int = 0


class ProgressEvent(BaseModel):
    """One progress update on the run stream."""
    phase: ProgressPhase
    progress: int = Field(ge=0, le=100)
    message: str
    thinking: Optional[str] = None
    current_task: Optional[Dict[str, Any]] = None
    agent_role: Optional[str] = None
    result: Optional[OrchestrationResult] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES


# ============ HTTP REQUESTS ============

class RunCreate(BaseModel):
    prompt: str = Field(..., min_length=1, description="What the user wants")
    canvas_elements: List[CanvasElement] = Field(default_factory=list)
    saved_constitution: Optional[BrandConstitution] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    brand_id: Optional[str] = None
    strategy: Optional[OrchestrationStrategyName] = Field(
        default=None, description="Overrides ORCHESTRATION_STRATEGY for this run"
    )


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class AnalyzeRequest(BaseModel):
    canvas_elements: List[CanvasElement] = Field(default_factory=list)


class GenerateRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    constitution: Optional[BrandConstitution] = None
    aspect_ratio: Optional[str] = None
    template: Optional[str] = Field(default=None, description="Export template id or platform name")


class AuditRequest(BaseModel):
    image_base64: str = Field(..., min_length=1, description="Base64 image, with or without a data: prefix")
    constitution: BrandConstitution
    mime_type: str = "image/png"


class EditRequest(BaseModel):
    image_base64: str = Field(..., min_length=1, description="Base image, raw base64 or a data: URL")
    edit_prompt: str = Field(..., min_length=1)
    mask_base64: Optional[str] = Field(default=None, description="PNG mask, white = edit, black = preserve")
    thought_signature: Optional[str] = Field(default=None, description="Signature from the previous edit turn")
    mime_type: str = "image/png"


class VariationsRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    constitution: Optional[BrandConstitution] = None
    aspect_ratio: Optional[str] = None
    count: int = Field(default=2, ge=1, le=4)


class TrendRequest(BaseModel):
    query: str = Field(..., min_length=1)
    platforms: Optional[List[str]] = None
    niche: Optional[str] = None


class BatchExportRequest(BaseModel):
    templates: List[str] = Field(..., min_length=1)
    format: Optional[str] = None


class UndoPush(BaseModel):
    action: str
    previous_state: Dict[str, Any] = Field(default_factory=dict)


class CorrectionCreate(BaseModel):
    category: str = Field(..., description="color | typography | style | composition")
    original_value: str
    corrected_value: str


class ApprovedAssetCreate(BaseModel):
    asset_type: str = "image"
    platform: str = "generic"
    compliance_score: int = Field(..., ge=0, le=100)
    image_url: Optional[str] = None


class DocumentCreate(BaseModel):
    data: Dict[str, Any] = Field(default_factory=dict)


class DocumentPatch(BaseModel):
    data: Dict[str, Any] = Field(..., description="Top-level keys to merge into the document")


class DocumentResponse(BaseModel):
    id: str
    collection: str
    data: Dict[str, Any]
    created_at: str
    updated_at: str
