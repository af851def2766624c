"""CRUD and change streams for the brands and campaigns collections."""

import logging
from typing import AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import ORJSONResponse, StreamingResponse

from ..db.models import COLLECTIONS
from ..dependencies import get_document_store
from ..memory.documents import DocumentStore
from ..models import DocumentCreate, DocumentPatch, DocumentResponse
from .agent import SSE_HEADERS, sse_frame


logger = logging.getLogger(__name__)


def _filters_from_query(request: Request) -> Optional[Dict[str, str]]:
    """Every query parameter is an equality filter on a top-level key."""
    return dict(request.query_params) or None


def build_collection_router(collection: str) -> APIRouter:
    """One router per collection, so paths stay literal (``/brands``, ``/campaigns``)."""
    router = APIRouter(prefix=f"/{collection}", tags=["documents"])

    @router.post("", status_code=status.HTTP_201_CREATED, response_class=ORJSONResponse)
    async def create_document(body: DocumentCreate, store: DocumentStore = Depends(get_document_store)):
        document_id = await store.create(collection, body.data)
        return {"id": document_id}

    @router.get("", response_model=list[DocumentResponse], response_class=ORJSONResponse)
    async def list_documents(request: Request, store: DocumentStore = Depends(get_document_store)):
        """List documents, newest first. Query parameters filter on top-level keys."""
        return await store.list(collection, _filters_from_query(request))

    @router.get("/{document_id}", response_model=DocumentResponse, response_class=ORJSONResponse)
    async def get_document(document_id: str, store: DocumentStore = Depends(get_document_store)):
        document = await store.get(collection, document_id)
        if document is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
        return document

    @router.patch("/{document_id}", response_model=DocumentResponse, response_class=ORJSONResponse)
    async def update_document(
        document_id: str,
        body: DocumentPatch,
        store: DocumentStore = Depends(get_document_store),
    ):
        """Merge top-level keys into the document. Concurrent writers: last write wins."""
        document = await store.update(collection, document_id, body.data)
        if document is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
        return document

    @router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_document(document_id: str, store: DocumentStore = Depends(get_document_store)):
        if not await store.delete(collection, document_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")

    @router.get("/{document_id}/events")
    async def document_events(document_id: str, store: DocumentStore = Depends(get_document_store)):
        """
        Follow a document over SSE.

        The first ``message`` frame is the current document, then one frame per
        change. Deletion sends a final ``deleted`` frame and closes the stream.
        """
        if await store.get(collection, document_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")

        async def stream() -> AsyncIterator[bytes]:
            async for snapshot in store.subscribe(collection, document_id):
                if snapshot is None:
                    yield sse_frame({"id": document_id}, event="deleted")
                    return
                yield sse_frame(snapshot)

        return StreamingResponse(stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    return router


routers = [build_collection_router(collection) for collection in COLLECTIONS]
