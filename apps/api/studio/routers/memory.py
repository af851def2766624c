"""API endpoints for session and brand memory."""

from dataclasses import asdict
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import ORJSONResponse

from ..dependencies import get_memory_store
from ..memory.context_memory import (
    LEARNED_CORRECTION_FREQUENCY,
    BrandMemory,
    ContextMemoryStore,
    SessionContext,
    SnapshotTrigger,
)
from ..models import ApprovedAssetCreate, CorrectionCreate, UndoPush
from ..schemas import BrandConstitution


router = APIRouter(prefix="/memory", tags=["memory"])


def _session_to_dict(session: SessionContext) -> Dict[str, Any]:
    return {
        "session_id": session.session_id,
        "start_time": session.start_time,
        "current_task": session.current_task,
        "conversation_history": [asdict(t) for t in session.conversation_history],
        "undo_stack": [asdict(u) for u in session.undo_stack],
        "thought_signatures": dict(session.thought_signatures),
    }


def _brand_to_dict(memory: BrandMemory) -> Dict[str, Any]:
    return {
        "user_id": memory.user_id,
        "brand_id": memory.brand_id,
        "constitution": memory.constitution.model_dump(mode="json") if memory.constitution else None,
        "created_at": memory.created_at,
        "updated_at": memory.updated_at,
        "approved_assets": [asdict(a) for a in memory.approved_assets],
        "style_evolution": [
            {"trigger": s.trigger.value, "timestamp": s.timestamp} for s in memory.style_evolution
        ],
        "correction_patterns": [asdict(p) for p in memory.correction_patterns],
    }


# ============ SESSIONS ============

@router.get("/sessions/{session_id}", response_class=ORJSONResponse)
async def get_session(session_id: str, store: ContextMemoryStore = Depends(get_memory_store)):
    if not store.has_session(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return _session_to_dict(store.get_session(session_id))


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def clear_session(session_id: str, store: ContextMemoryStore = Depends(get_memory_store)):
    if not store.clear_session(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")


@router.post("/sessions/{session_id}/undo", status_code=status.HTTP_201_CREATED, response_class=ORJSONResponse)
async def push_undo(session_id: str, body: UndoPush, store: ContextMemoryStore = Depends(get_memory_store)):
    """Record an undoable canvas action. The stack keeps the most recent entries only."""
    return asdict(store.push_undo_action(session_id, body.action, body.previous_state))


@router.post("/sessions/{session_id}/undo/pop", response_class=ORJSONResponse)
async def pop_undo(session_id: str, store: ContextMemoryStore = Depends(get_memory_store)):
    undo = store.pop_undo_action(session_id)
    if undo is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Nothing to undo")
    return asdict(undo)


# ============ BRANDS ============

@router.get("/brands/{user_id}/{brand_id}", response_class=ORJSONResponse)
async def get_brand(user_id: str, brand_id: str, store: ContextMemoryStore = Depends(get_memory_store)):
    if not store.has_brand_memory(user_id, brand_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Brand memory not found")
    return _brand_to_dict(store.get_brand_memory(user_id, brand_id))


@router.put("/brands/{user_id}/{brand_id}/constitution", response_class=ORJSONResponse)
async def update_constitution(
    user_id: str,
    brand_id: str,
    constitution: BrandConstitution,
    trigger: SnapshotTrigger = SnapshotTrigger.refresh,
    store: ContextMemoryStore = Depends(get_memory_store),
):
    """Replace the brand's constitution; the previous one becomes a style snapshot."""
    return _brand_to_dict(store.update_constitution(user_id, brand_id, constitution, trigger))


@router.post(
    "/brands/{user_id}/{brand_id}/corrections",
    status_code=status.HTTP_201_CREATED,
    response_class=ORJSONResponse,
)
async def record_correction(
    user_id: str,
    brand_id: str,
    body: CorrectionCreate,
    store: ContextMemoryStore = Depends(get_memory_store),
):
    pattern = store.record_correction(
        user_id, brand_id, body.category, body.original_value, body.corrected_value
    )
    return {**asdict(pattern), "learned": pattern.frequency >= LEARNED_CORRECTION_FREQUENCY}


@router.post(
    "/brands/{user_id}/{brand_id}/approved-assets",
    status_code=status.HTTP_201_CREATED,
    response_class=ORJSONResponse,
)
async def log_approved_asset(
    user_id: str,
    brand_id: str,
    body: ApprovedAssetCreate,
    store: ContextMemoryStore = Depends(get_memory_store),
):
    asset = store.log_approved_asset(
        user_id, brand_id, body.asset_type, body.platform, body.compliance_score, body.image_url
    )
    return asdict(asset)


@router.get("/brands/{user_id}/{brand_id}/context", response_class=ORJSONResponse)
async def get_brand_context(user_id: str, brand_id: str, store: ContextMemoryStore = Depends(get_memory_store)):
    """Plain-text summary suitable for prompt injection."""
    return {"context": store.get_brand_context(user_id, brand_id)}
