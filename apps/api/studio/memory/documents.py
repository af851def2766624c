"""Document store for brands and campaigns."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import delete, select

from ..db.models import COLLECTIONS, Document
from ..db.session import AsyncSessionLocal


logger = logging.getLogger(__name__)


class UnknownCollectionError(ValueError):
    """Raised for a collection name outside COLLECTIONS."""


def _document_to_dict(document: Document) -> Dict[str, Any]:
    return {
        "id": document.id,
        "collection": document.collection,
        "data": dict(document.data or {}),
        "created_at": document.created_at.isoformat() if document.created_at else None,
        "updated_at": document.updated_at.isoformat() if document.updated_at else None,
    }


class DocumentStore:
    """
    CRUD plus change subscription over JSON documents.

    Updates are shallow merges of top-level keys; concurrent writers to the
    same document follow last write wins. Subscribers receive the full
    document after every change.
    """

    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory
        self._subscribers: Dict[Tuple[str, str], List[asyncio.Queue]] = {}

    @staticmethod
    def _check_collection(collection: str) -> None:
        if collection not in COLLECTIONS:
            raise UnknownCollectionError(f"Unknown collection '{collection}'")

    async def create(self, collection: str, data: Dict[str, Any]) -> str:
        """
        Insert a new document.

        Args:
            collection: "brands" or "campaigns"
            data: Document body

        Returns:
            The generated document id
        """
        self._check_collection(collection)
        now = datetime.now(timezone.utc)
        document_id = uuid4().hex
        async with self.session_factory() as session:
            session.add(Document(
                id=document_id,
                collection=collection,
                data=dict(data),
                created_at=now,
                updated_at=now,
            ))
            await session.commit()
        logger.info(f"Created {collection} document {document_id}")
        return document_id

    async def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        self._check_collection(collection)
        async with self.session_factory() as session:
            document = await self._load(session, collection, document_id)
            return _document_to_dict(document) if document else None

    async def list(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        List documents, newest first.

        Args:
            collection: Collection name
            filters: Optional top-level key/value pairs every returned document must match
        """
        self._check_collection(collection)
        async with self.session_factory() as session:
            result = await session.execute(
                select(Document)
                .where(Document.collection == collection)
                .order_by(Document.created_at.desc())
            )
            documents = [_document_to_dict(d) for d in result.scalars().all()]

        if filters:
            documents = [
                d for d in documents
                if all(d["data"].get(key) == value for key, value in filters.items())
            ]
        return documents

    async def update(self, collection: str, document_id: str, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Merge ``patch`` into the document's top-level keys.

        Returns:
            The updated document, or None if it does not exist
        """
        self._check_collection(collection)
        async with self.session_factory() as session:
            document = await self._load(session, collection, document_id)
            if document is None:
                return None
            document.data = {**(document.data or {}), **patch}
            document.updated_at = datetime.now(timezone.utc)
            await session.commit()
            snapshot = _document_to_dict(document)

        self._publish(collection, document_id, snapshot)
        return snapshot

    async def delete(self, collection: str, document_id: str) -> bool:
        """Delete a document. Returns True if it existed."""
        self._check_collection(collection)
        async with self.session_factory() as session:
            result = await session.execute(
                delete(Document).where(
                    Document.collection == collection,
                    Document.id == document_id,
                )
            )
            await session.commit()
            deleted = result.rowcount > 0

        if deleted:
            self._publish(collection, document_id, None)
        return deleted

    async def subscribe(self, collection: str, document_id: str) -> AsyncIterator[Optional[Dict[str, Any]]]:
        """
        Follow one document.

        Yields the current document first, then the full document after every
        change. Yields None and stops once the document is deleted (or if it
        never existed).
        """
        self._check_collection(collection)
        key = (collection, document_id)
        queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        self._subscribers.setdefault(key, []).append(queue)

        try:
            current = await self.get(collection, document_id)
            yield current
            if current is None:
                return

            while True:
                snapshot = await queue.get()
                yield snapshot
                if snapshot is None:
                    return
        finally:
            queues = self._subscribers.get(key, [])
            if queue in queues:
                queues.remove(queue)
            if not queues:
                self._subscribers.pop(key, None)

    def subscriber_count(self, collection: str, document_id: str) -> int:
        return len(self._subscribers.get((collection, document_id), []))

    async def _load(self, session, collection: str, document_id: str) -> Optional[Document]:
        result = await session.execute(
            select(Document).where(
                Document.collection == collection,
                Document.id == document_id,
            )
        )
        return result.scalars().first()

    def _publish(self, collection: str, document_id: str, snapshot: Optional[Dict[str, Any]]) -> None:
        for queue in self._subscribers.get((collection, document_id), []):
            try:
                queue.put_nowait(snapshot)
            except asyncio.QueueFull:
                logger.warning(f"Subscriber queue full for {collection}/{document_id}, dropping update")
