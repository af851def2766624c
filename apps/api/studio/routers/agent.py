"""Orchestration runs streamed over Server-Sent Events."""

import logging
from typing import Any, AsyncIterator
from uuid import uuid4

import orjson
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import ORJSONResponse, StreamingResponse

from ..dependencies import get_backend, get_image_store, get_memory_store, get_run_registry
from ..llm_backend import GenerationBackend
from ..memory.context_memory import ContextMemoryStore
from ..middleware.correlation import get_correlation_id
from ..models import CancelRequest, RunCreate
from ..storage import ImageStore
from ..workflows.orchestration import RunRegistry, build_strategy, run_orchestration


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agent", tags=["orchestration"])

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


def sse_frame(payload: Any, event: str = "message") -> bytes:
    """Encode one SSE frame. ``payload`` is a pydantic model or anything orjson accepts."""
    if hasattr(payload, "model_dump"):
        payload = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
    return f"event: {event}\n".encode() + b"data: " + orjson.dumps(payload) + b"\n\n"


@router.post("/runs")
async def create_run(
    req: RunCreate,
    request: Request,
    backend: GenerationBackend = Depends(get_backend),
    memory_store: ContextMemoryStore = Depends(get_memory_store),
    image_store: ImageStore = Depends(get_image_store),
    registry: RunRegistry = Depends(get_run_registry),
):
    """
    Start a run and stream its progress.

    Every event is an ``event: message`` frame; the last one is ``complete``
    or ``error`` and carries the result. The image, if any, is referenced by
    ``result.image_id`` and fetched from ``GET /images/{image_id}``.
    """
    run_id = str(uuid4())
    strategy = build_strategy(req.strategy.value if req.strategy else None, backend, memory_store)
    cancel_event = registry.register(run_id)
    logger.info(
        f"Run {run_id} started via {strategy.name} "
        f"({len(req.canvas_elements)} canvas elements) [{get_correlation_id(request)}]"
    )

    async def stream() -> AsyncIterator[bytes]:
        try:
            async for event in run_orchestration(
                req.prompt,
                req.canvas_elements,
                req.saved_constitution,
                strategy=strategy,
                image_store=image_store,
                cancel_event=cancel_event,
                session_id=req.session_id,
                user_id=req.user_id,
                brand_id=req.brand_id,
            ):
                yield sse_frame(event)
        finally:
            registry.unregister(run_id)

    headers = {**SSE_HEADERS, "X-Run-ID": run_id}
    return StreamingResponse(stream(), media_type="text/event-stream", headers=headers)


@router.post("/runs/{run_id}/cancel", response_class=ORJSONResponse)
async def cancel_run(
    run_id: str,
    body: CancelRequest | None = None,
    registry: RunRegistry = Depends(get_run_registry),
):
    """Ask an in-flight run to stop. Tasks already running finish; nothing new starts."""
    if not registry.cancel(run_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Run not found")
    return {"status": "accepted", "run_id": run_id, "reason": getattr(body, "reason", None)}
