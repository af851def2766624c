"""
HTTP API tests: run streaming, image retrieval, single-agent endpoints,
templates, memory and document collections.
"""

import base64
import json

import pytest

from fakes import FAILING_AUDIT, PNG_BYTES, image_element, note_element, parse_sse, sample_constitution


def run_body(prompt, **kwargs):
    body = {"prompt": prompt}
    body.update(kwargs)
    return body


class TestHealth:
    """Service endpoints."""

    @pytest.mark.asyncio
    async def test_health(self, api_client):
        """Test health reports the database and feature flags."""
        response = await api_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["database"]["ok"] is True
        assert data["strategy"] == "planner"
        assert "backend_configured" in data["features"]

    @pytest.mark.asyncio
    async def test_correlation_id_is_echoed(self, api_client):
        """Test an incoming correlation id comes back on the response."""
        response = await api_client.get("/health", headers={"X-Correlation-ID": "abc-123"})

        assert response.headers["X-Correlation-ID"] == "abc-123"

    @pytest.mark.asyncio
    async def test_correlation_id_is_generated(self, api_client):
        """Test requests without the header, or with an empty one, get a fresh id each."""
        first = await api_client.get("/health")
        second = await api_client.get("/health", headers={"X-Correlation-ID": ""})

        assert len(first.headers["X-Correlation-ID"]) == 36
        assert len(second.headers["X-Correlation-ID"]) == 36
        assert first.headers["X-Correlation-ID"] != second.headers["X-Correlation-ID"]

    @pytest.mark.asyncio
    async def test_metrics(self, api_client):
        """Test Prometheus metrics are exposed."""
        await api_client.get("/health")
        response = await api_client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text


class TestRuns:
    """Streaming orchestration runs."""

    @pytest.mark.asyncio
    async def test_run_streams_to_one_complete_event(self, api_client):
        """Test a run streams progress frames ending in a single complete frame."""
        canvas = [image_element().model_dump(mode="json"), note_element("bold").model_dump(mode="json")]

        response = await api_client.post(
            "/agent/runs", json=run_body("Create a YouTube thumbnail", canvas_elements=canvas)
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["X-Run-ID"]

        frames = parse_sse(response.text)
        assert all(event == "message" for event, _ in frames)
        phases = [data["phase"] for _, data in frames]
        assert phases[0] == "parsing"
        assert phases[-1] == "complete"
        assert phases.count("complete") + phases.count("error") == 1
        progress = [data["progress"] for _, data in frames]
        assert progress == sorted(progress)

        result = frames[-1][1]["result"]
        assert result["success"] is True
        assert result["image_id"]
        assert "image" not in result
        assert result["audit"]["pass"] is True
        assert [t["role"] for t in result["task_results"]] == [
            "brand_analyst", "creative_director", "compliance_auditor",
        ]

        image = await api_client.get(f"/images/{result['image_id']}")
        assert image.status_code == 200
        assert image.content == PNG_BYTES
        assert image.headers["content-type"] == "image/png"
        assert image.headers["cache-control"] == "no-store"

        again = await api_client.get(f"/images/{result['image_id']}")
        assert again.status_code == 404
        assert again.json()["message"] == "Image not found or expired"

    @pytest.mark.asyncio
    async def test_run_failure_is_an_error_frame(self, api_client, backend):
        """Test a critical failure ends with one error frame."""
        backend.script("image", "no picture")
        body = run_body(
            "generate a sale banner",
            saved_constitution=sample_constitution().model_dump(mode="json"),
        )

        response = await api_client.post("/agent/runs", json=body)

        frames = parse_sse(response.text)
        final = frames[-1][1]
        assert final["phase"] == "error"
        assert final["agent_role"] == "creative_director"
        assert final["result"]["success"] is False
        assert sum(1 for _, data in frames if data["phase"] in ("complete", "error")) == 1

    @pytest.mark.asyncio
    async def test_agent_loop_strategy(self, api_client, backend):
        """Test the strategy can be chosen per run."""
        response = await api_client.post("/agent/runs", json=run_body("A cat", strategy="agent_loop"))

        frames = parse_sse(response.text)
        assert frames[0][1]["message"] == "Agent starting..."
        assert backend.count("decide") == 1

    @pytest.mark.asyncio
    async def test_empty_prompt_is_rejected(self, api_client):
        """Test validation errors use the common error body."""
        response = await api_client.post("/agent/runs", json={"prompt": ""})

        assert response.status_code == 422
        assert response.json()["error"] == "Validation Error"

    @pytest.mark.asyncio
    async def test_cancel_unknown_run(self, api_client):
        """Test cancelling a run that is not in flight is a 404."""
        response = await api_client.post("/agent/runs/nope/cancel", json={"reason": "changed my mind"})

        assert response.status_code == 404
        assert response.json()["message"] == "Run not found"

    @pytest.mark.asyncio
    async def test_cancel_registered_run(self, api_client):
        """Test a registered run accepts cancellation."""
        from studio.main import app

        event = app.state.run_registry.register("run-1")

        response = await api_client.post("/agent/runs/run-1/cancel", json={"reason": "stop"})

        assert response.status_code == 200
        assert response.json() == {"status": "accepted", "run_id": "run-1", "reason": "stop"}
        assert event.is_set()


class TestAgentEndpoints:
    """Single-agent endpoints."""

    @pytest.mark.asyncio
    async def test_analyze(self, api_client):
        """Test a moodboard yields a constitution."""
        response = await api_client.post(
            "/agents/analyze", json={"canvas_elements": [image_element().model_dump(mode="json")]}
        )

        assert response.status_code == 200
        assert response.json()["constitution"]["brand_essence"] == "Loud, fast, unapologetic."

    @pytest.mark.asyncio
    async def test_analyze_without_images(self, api_client):
        """Test a canvas without images is a client error."""
        response = await api_client.post(
            "/agents/analyze", json={"canvas_elements": [note_element("hi").model_dump(mode="json")]}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "No images"

    @pytest.mark.asyncio
    async def test_generate_with_template(self, api_client, backend):
        """Test generation stores the image and applies the template ratio."""
        response = await api_client.post(
            "/agents/generate", json={"prompt": "A cat", "template": "instagram_story"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["aspect_ratio"] == "9:16"
        assert data["mime_type"] == "image/png"

        image = await api_client.get(f"/images/{data['image_id']}")
        assert image.content == PNG_BYTES

    @pytest.mark.asyncio
    async def test_generate_failure_is_502(self, api_client, backend):
        """Test a backend that returns no image maps to a bad gateway."""
        backend.script("image", "sorry")

        response = await api_client.post("/agents/generate", json={"prompt": "A cat"})

        assert response.status_code == 502
        assert response.json()["message"] == "No image generated in response"

    @pytest.mark.asyncio
    async def test_audit_accepts_data_url(self, api_client, backend):
        """Test a data URL is decoded and the verdict uses the pass alias."""
        backend.script("audit", json.dumps(FAILING_AUDIT))
        image = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()

        response = await api_client.post("/agents/audit", json={
            "image_base64": image,
            "constitution": sample_constitution().model_dump(mode="json"),
        })

        assert response.status_code == 200
        data = response.json()
        assert data["compliance_score"] == 40
        assert data["pass"] is False
        _, parts, _ = backend.calls[-1]
        assert parts[0].data == PNG_BYTES

    @pytest.mark.asyncio
    async def test_audit_rejects_bad_base64(self, api_client):
        """Test undecodable images are a client error."""
        response = await api_client.post("/agents/audit", json={
            "image_base64": "***",
            "constitution": sample_constitution().model_dump(mode="json"),
        })

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_edit_with_mask(self, api_client, backend):
        """Test a masked edit stores the result and sends the mask after the base image."""
        mask = b"\x89PNG-mask"
        response = await api_client.post("/agents/edit", json={
            "image_base64": "data:image/jpeg;base64," + base64.b64encode(b"base-photo").decode(),
            "edit_prompt": "Make the sky orange",
            "mask_base64": base64.b64encode(mask).decode(),
            "thought_signature": "sig-1",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["mode"] == "inpaint"
        assert data["thought_signature"] == "sig-1"
        _, parts, _ = backend.calls[-1]
        assert (parts[0].data, parts[0].mime_type) == (b"base-photo", "image/jpeg")
        assert parts[2].data == mask

        image = await api_client.get(f"/images/{data['image_id']}")
        assert image.content == PNG_BYTES

    @pytest.mark.asyncio
    async def test_edit_requires_prompt(self, api_client):
        """Test an edit without instructions is rejected before any backend call."""
        response = await api_client.post("/agents/edit", json={
            "image_base64": base64.b64encode(PNG_BYTES).decode(),
            "edit_prompt": "",
        })

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_edit_rejects_bad_mask(self, api_client):
        """Test an undecodable mask is a client error naming the field."""
        response = await api_client.post("/agents/edit", json={
            "image_base64": base64.b64encode(PNG_BYTES).decode(),
            "edit_prompt": "Add a hat",
            "mask_base64": "***",
        })

        assert response.status_code == 400
        assert "mask_base64" in response.json()["message"]

    @pytest.mark.asyncio
    async def test_variations(self, api_client, backend):
        """Test each variation is stored separately, failures reported inline."""
        backend.script("image", "no picture")

        response = await api_client.post("/agents/variations", json={"prompt": "A cat", "count": 2})

        assert response.status_code == 200
        first, second = response.json()["variations"]
        assert first == {"error": "No image generated in response"}
        assert "Variation 2" in second["prompt"]
        assert (await api_client.get(f"/images/{second['image_id']}")).content == PNG_BYTES

    @pytest.mark.asyncio
    async def test_platform_trends(self, api_client, backend):
        """Test one platform's trends are returned, or 404 when none were found."""
        found = await api_client.get("/agents/trends/youtube")
        backend.script("trends", "nothing to report")
        missing = await api_client.get("/agents/trends/youtube")

        assert found.status_code == 200
        assert found.json()["trending_formats"] == ["split screen"]
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_trends(self, api_client):
        """Test trend research returns the parsed result."""
        response = await api_client.post("/agents/trends", json={"query": "gaming"})

        assert response.status_code == 200
        assert response.json()["platform_trends"][0]["platform"] == "YouTube"


class TestTemplateEndpoints:
    """Export template lookups."""

    @pytest.mark.asyncio
    async def test_list_templates(self, api_client):
        """Test every template is listed."""
        response = await api_client.get("/templates")

        assert len(response.json()["templates"]) == 9

    @pytest.mark.asyncio
    async def test_platform_templates(self, api_client):
        """Test platform listing and its 404."""
        found = await api_client.get("/templates/platform/twitter")
        missing = await api_client.get("/templates/platform/myspace")

        assert [t["id"] for t in found.json()["templates"]] == ["twitter_header", "twitter_post"]
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_get_template(self, api_client):
        """Test lookup by platform and asset type includes prompt additions."""
        response = await api_client.get("/templates/youtube", params={"asset_type": "banner"})

        data = response.json()
        assert data["id"] == "youtube_banner"
        assert data["prompt_additions"].startswith("ASPECT RATIO: 16:9")

    @pytest.mark.asyncio
    async def test_unknown_template(self, api_client):
        """Test unknown templates are a 404."""
        response = await api_client.get("/templates/myspace")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_batch(self, api_client):
        """Test batch export reports unknown ids inline."""
        response = await api_client.post("/templates/batch", json={"templates": ["instagram_post", "nope"]})

        data = response.json()
        assert data["success"] is False
        assert len(data["exports"]) == 1
        assert data["errors"][0]["template_id"] == "nope"


class TestMemoryEndpoints:
    """Session and brand memory over HTTP."""

    @pytest.mark.asyncio
    async def test_unknown_session(self, api_client):
        """Test unknown sessions are a 404 and are not created by reading."""
        response = await api_client.get("/memory/sessions/s1")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_undo_stack(self, api_client):
        """Test undo actions push and pop in LIFO order."""
        await api_client.post("/memory/sessions/s1/undo", json={"action": "move", "previous_state": {"x": 1}})
        pushed = await api_client.post("/memory/sessions/s1/undo", json={"action": "delete"})

        assert pushed.status_code == 201
        session = (await api_client.get("/memory/sessions/s1")).json()
        assert [u["action"] for u in session["undo_stack"]] == ["move", "delete"]

        popped = await api_client.post("/memory/sessions/s1/undo/pop")
        assert popped.json()["action"] == "delete"
        await api_client.post("/memory/sessions/s1/undo/pop")
        empty = await api_client.post("/memory/sessions/s1/undo/pop")
        assert empty.status_code == 404

    @pytest.mark.asyncio
    async def test_clear_session(self, api_client, memory_store):
        """Test deleting a session."""
        memory_store.add_conversation_turn("s1", "user", "hi")

        assert (await api_client.delete("/memory/sessions/s1")).status_code == 204
        assert (await api_client.delete("/memory/sessions/s1")).status_code == 404

    @pytest.mark.asyncio
    async def test_brand_memory(self, api_client):
        """Test constitution updates, corrections and assets round out the brand record."""
        constitution = sample_constitution().model_dump(mode="json")

        await api_client.put("/memory/brands/u1/b1/constitution", json=constitution)
        await api_client.put("/memory/brands/u1/b1/constitution", json=constitution, params={"trigger": "upload"})
        first = await api_client.post("/memory/brands/u1/b1/corrections", json={
            "category": "color", "original_value": "blue", "corrected_value": "orange",
        })
        second = await api_client.post("/memory/brands/u1/b1/corrections", json={
            "category": "color", "original_value": "blue", "corrected_value": "orange",
        })
        asset = await api_client.post("/memory/brands/u1/b1/approved-assets", json={
            "asset_type": "thumbnail", "platform": "youtube", "compliance_score": 94,
        })

        assert first.status_code == 201
        assert first.json()["learned"] is False
        assert second.json()["learned"] is True
        assert asset.status_code == 201

        brand = (await api_client.get("/memory/brands/u1/b1")).json()
        assert brand["constitution"]["brand_essence"] == "Loud, fast, unapologetic."
        assert brand["style_evolution"][0]["trigger"] == "upload"
        assert brand["approved_assets"][0]["compliance_score"] == 94

        context = (await api_client.get("/memory/brands/u1/b1/context")).json()["context"]
        assert '- color: prefer "orange" over "blue"' in context

    @pytest.mark.asyncio
    async def test_invalid_asset_score(self, api_client):
        """Test scores outside 0..100 are rejected."""
        response = await api_client.post("/memory/brands/u1/b1/approved-assets", json={"compliance_score": 140})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_brand(self, api_client):
        """Test unknown brands are a 404."""
        response = await api_client.get("/memory/brands/u1/nope")

        assert response.status_code == 404


class TestDocumentEndpoints:
    """Brand and campaign collections."""

    @pytest.mark.asyncio
    async def test_crud(self, api_client):
        """Test create, read, patch, list and delete."""
        created = await api_client.post("/brands", json={"data": {"name": "Acme", "owner": "u1"}})
        assert created.status_code == 201
        document_id = created.json()["id"]

        fetched = await api_client.get(f"/brands/{document_id}")
        assert fetched.json()["data"] == {"name": "Acme", "owner": "u1"}

        patched = await api_client.patch(f"/brands/{document_id}", json={"data": {"name": "Acme Co"}})
        assert patched.json()["data"] == {"name": "Acme Co", "owner": "u1"}

        listed = await api_client.get("/brands", params={"owner": "u1"})
        assert [d["id"] for d in listed.json()] == [document_id]
        assert (await api_client.get("/brands", params={"owner": "u2"})).json() == []

        assert (await api_client.delete(f"/brands/{document_id}")).status_code == 204
        assert (await api_client.get(f"/brands/{document_id}")).status_code == 404

    @pytest.mark.asyncio
    async def test_missing_documents(self, api_client):
        """Test missing ids are 404 for every operation."""
        assert (await api_client.get("/campaigns/nope")).status_code == 404
        assert (await api_client.patch("/campaigns/nope", json={"data": {}})).status_code == 404
        assert (await api_client.delete("/campaigns/nope")).status_code == 404
        assert (await api_client.get("/campaigns/nope/events")).status_code == 404
