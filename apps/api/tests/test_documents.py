"""
Tests for the brand/campaign document store.
"""

import asyncio

import pytest

from studio.memory.documents import UnknownCollectionError


class TestDocumentStore:
    """CRUD over JSON documents."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, document_store):
        """Test a created document can be read back."""
        document_id = await document_store.create("brands", {"name": "Acme", "owner": "u1"})

        document = await document_store.get("brands", document_id)

        assert document["id"] == document_id
        assert document["collection"] == "brands"
        assert document["data"] == {"name": "Acme", "owner": "u1"}
        assert document["created_at"] is not None

    @pytest.mark.asyncio
    async def test_collections_are_separate(self, document_store):
        """Test a brand id is not visible as a campaign."""
        document_id = await document_store.create("brands", {"name": "Acme"})

        assert await document_store.get("campaigns", document_id) is None

    @pytest.mark.asyncio
    async def test_unknown_collection(self, document_store):
        """Test collections outside the known set are rejected."""
        with pytest.raises(UnknownCollectionError):
            await document_store.create("users", {})

    @pytest.mark.asyncio
    async def test_list_with_filters(self, document_store):
        """Test filters match top-level keys exactly."""
        await document_store.create("campaigns", {"brand_id": "b1", "status": "draft"})
        await document_store.create("campaigns", {"brand_id": "b1", "status": "live"})
        await document_store.create("campaigns", {"brand_id": "b2", "status": "live"})

        everything = await document_store.list("campaigns")
        live_b1 = await document_store.list("campaigns", {"brand_id": "b1", "status": "live"})

        assert len(everything) == 3
        assert len(live_b1) == 1
        assert live_b1[0]["data"]["status"] == "live"

    @pytest.mark.asyncio
    async def test_update_merges_top_level_keys(self, document_store):
        """Test a patch replaces only the keys it names."""
        document_id = await document_store.create("brands", {"name": "Acme", "palette": ["#000000"]})

        updated = await document_store.update("brands", document_id, {"palette": ["#FF5500"], "tagline": "Go"})

        assert updated["data"] == {"name": "Acme", "palette": ["#FF5500"], "tagline": "Go"}
        assert (await document_store.get("brands", document_id))["data"] == updated["data"]

    @pytest.mark.asyncio
    async def test_update_missing(self, document_store):
        """Test updating a missing document returns None."""
        assert await document_store.update("brands", "nope", {"name": "x"}) is None

    @pytest.mark.asyncio
    async def test_delete(self, document_store):
        """Test delete reports whether the document existed."""
        document_id = await document_store.create("brands", {"name": "Acme"})

        assert await document_store.delete("brands", document_id) is True
        assert await document_store.delete("brands", document_id) is False
        assert await document_store.get("brands", document_id) is None


class TestSubscriptions:
    """Change feeds for one document."""

    @pytest.mark.asyncio
    async def test_subscriber_sees_updates_then_delete(self, document_store):
        """Test the feed yields the current document, each change and a final None."""
        document_id = await document_store.create("brands", {"name": "Acme"})
        feed = document_store.subscribe("brands", document_id)

        first = await feed.__anext__()
        await document_store.update("brands", document_id, {"name": "Acme 2"})
        second = await asyncio.wait_for(feed.__anext__(), timeout=1)
        await document_store.delete("brands", document_id)
        third = await asyncio.wait_for(feed.__anext__(), timeout=1)

        assert first["data"]["name"] == "Acme"
        assert second["data"]["name"] == "Acme 2"
        assert third is None
        with pytest.raises(StopAsyncIteration):
            await feed.__anext__()
        assert document_store.subscriber_count("brands", document_id) == 0

    @pytest.mark.asyncio
    async def test_missing_document_feed(self, document_store):
        """Test following a missing document yields None and ends."""
        feed = document_store.subscribe("brands", "nope")

        assert await feed.__anext__() is None
        with pytest.raises(StopAsyncIteration):
            await feed.__anext__()

    @pytest.mark.asyncio
    async def test_closing_feed_unsubscribes(self, document_store):
        """Test closing a feed removes its queue."""
        document_id = await document_store.create("campaigns", {"name": "Launch"})
        feed = document_store.subscribe("campaigns", document_id)
        await feed.__anext__()

        assert document_store.subscriber_count("campaigns", document_id) == 1
        await feed.aclose()
        assert document_store.subscriber_count("campaigns", document_id) == 0
