"""Integration tests for imgtoprompt.api.main: FastAPI REST API endpoints.

All tests use the FastAPI TestClient with a PromptService whose Inference
API client is mocked and whose local pipelines are fakes, so no network
access or model weights are needed.  Tests cover every endpoint:

- ``GET /api/health``: Version and local capability.
- ``POST /api/generate-prompt``: Captioning, styling, and error mapping.
- ``GET /api/generate-prompt``: Model catalogue.
- ``GET /api/local-models``: Cache listing.
- ``DELETE /api/local-models``: Cache deletion.
- ``GET /api/model-progress``: Server-Sent Events progress stream.
- ``POST /api/preload-model``: Preloading.
- ``GET /api/preload-model``: Preload status.
"""

from __future__ import annotations

import asyncio
import json

import pytest

from imgtoprompt import __version__
from imgtoprompt.core.progress import DEFAULT_MESSAGE
from imgtoprompt.core.registry import get_model

LOCAL_CAPTION = "a dog running in a field"
REMOTE_CAPTION = "a cat sleeping on a sofa"
VIT_LOCAL = get_model("vit").local_model_id


def _events(body: str) -> list[dict]:
    """Parse ``data: {...}`` Server-Sent Events from a response body."""
    return [
        json.loads(line[len("data: ") :])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


# ---------------------------------------------------------------------------
# Health endpoint tests.
# ---------------------------------------------------------------------------


class TestHealth:
    """Test GET /api/health."""

    def test_health(self, test_client):
        resp = test_client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {
            "status": "ok",
            "version": __version__,
            "local_available": True,
        }


# ---------------------------------------------------------------------------
# Prompt generation endpoint tests.
# ---------------------------------------------------------------------------


class TestGeneratePrompt:
    """Test POST /api/generate-prompt."""

    def _post(self, client, png_bytes, **fields):
        return client.post(
            "/api/generate-prompt",
            files={"image": ("photo.png", png_bytes, "image/png")},
            data=fields,
        )

    def test_generate_with_local_model(self, test_client, png_bytes):
        resp = self._post(test_client, png_bytes, model="vit")

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["model"] == "vit"
        assert data["prompt"] == {"prompt": LOCAL_CAPTION, "confidence": None, "is_mock": False}
        assert data["metadata"] == {
            "original_name": "photo.png",
            "size": len(png_bytes),
            "type": "image/png",
            "model_used": VIT_LOCAL,
            "execution_mode": "local",
            "model_description": get_model("vit").description,
        }

    def test_model_defaults_to_configured_default(self, test_client, png_bytes):
        resp = self._post(test_client, png_bytes)

        assert resp.status_code == 200
        assert resp.json()["model"] == "vit"

    def test_generate_with_api_model(self, test_client, png_bytes):
        resp = self._post(test_client, png_bytes, model="glm-4.5")

        assert resp.status_code == 200
        data = resp.json()
        assert data["prompt"]["prompt"] == REMOTE_CAPTION
        assert data["metadata"]["execution_mode"] == "api"

    def test_style_fields_are_applied(self, test_client, png_bytes):
        resp = self._post(
            test_client,
            png_bytes,
            model="flux1",
            prompt_length="short",
            detail_level="comprehensive",
        )

        prompt = resp.json()["prompt"]["prompt"]
        assert prompt.startswith(f"{LOCAL_CAPTION}, shot with professional camera equipment")
        assert prompt.endswith("highly detailed, cinematic lighting, ultra realistic")

    def test_force_local_field(self, test_client, png_bytes):
        resp = self._post(test_client, png_bytes, model="vit", force_local="true")
        assert resp.json()["metadata"]["execution_mode"] == "local"

    def test_missing_image_returns_400(self, test_client):
        resp = test_client.post("/api/generate-prompt", data={"model": "vit"})

        assert resp.status_code == 400
        assert resp.json()["detail"] == "No image provided"

    def test_unknown_model_returns_400(self, test_client, png_bytes):
        resp = self._post(test_client, png_bytes, model="nope")

        assert resp.status_code == 400
        assert resp.json()["detail"].startswith("Invalid model: nope. Available models: vit")

    def test_invalid_length_target_returns_422(self, test_client, png_bytes):
        resp = self._post(test_client, png_bytes, prompt_length="huge")
        assert resp.status_code == 422

    @pytest.mark.parametrize(
        "message,status",
        [
            ("401 Client Error: Unauthorized", 401),
            ("Rate limit reached", 429),
            ("Model glm is currently loading", 404),
            ("connection reset by peer", 500),
        ],
    )
    def test_backend_errors_are_classified(
        self, test_client, png_bytes, inference_client, message, status
    ):
        inference_client.image_to_text.side_effect = RuntimeError(message)

        resp = self._post(test_client, png_bytes, model="glm-4.5")

        assert resp.status_code == status

    def test_unclassified_error_has_generic_message(
        self, test_client, png_bytes, inference_client
    ):
        inference_client.image_to_text.side_effect = RuntimeError("connection reset")

        resp = self._post(test_client, png_bytes, model="glm-4.5")

        assert resp.json()["detail"] == "Failed to generate prompt"

    def test_local_failure_falls_back_to_api(self, test_client, png_bytes, pipeline_factory):
        pipeline_factory.error = OSError("bad weights")

        resp = self._post(test_client, png_bytes, model="vit")

        assert resp.status_code == 200
        assert resp.json()["metadata"]["execution_mode"] == "api"
        assert resp.json()["metadata"]["model_used"] == get_model("vit").remote_model_id

    def test_both_sides_failing_classifies_primary(
        self, test_client, png_bytes, pipeline_factory, inference_client
    ):
        pipeline_factory.error = OSError("bad weights")
        inference_client.image_to_text.side_effect = RuntimeError("429 Too Many Requests")

        resp = self._post(test_client, png_bytes, model="vit")

        # The local load error mentions the model, so it maps to 404.
        assert resp.status_code == 404


class TestModelCatalogue:
    """Test GET /api/generate-prompt."""

    def test_catalogue(self, test_client):
        resp = test_client.get("/api/generate-prompt")

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert len(data["models"]) == 10
        assert data["local_available"] is True
        assert data["local_cache_info"]["cache_size"] == 0


# ---------------------------------------------------------------------------
# Local model cache endpoint tests.
# ---------------------------------------------------------------------------


class TestLocalModels:
    """Test GET and DELETE /api/local-models."""

    def _cache_model(self, test_config, folder: str, size: int = 2048):
        path = test_config.models_dir / folder
        path.mkdir(parents=True)
        (path / "model.safetensors").write_bytes(b"\0" * size)
        return path

    def test_empty_listing(self, test_client, test_config):
        resp = test_client.get("/api/local-models")

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["models"] == []
        assert data["total_size"] == 0
        assert data["total_size_formatted"] == "0 Bytes"
        assert data["message"] == "Found 0 local models"

    def test_listing(self, test_client, test_config):
        self._cache_model(test_config, "owner_model")

        data = test_client.get("/api/local-models").json()

        assert data["message"] == "Found 1 local models"
        assert data["models"][0]["name"] == "owner/model"
        assert data["models"][0]["size_formatted"] == "2 KB"
        assert data["total_size"] == 2048

    def test_delete(self, test_client, test_config):
        path = self._cache_model(test_config, "owner_model")

        resp = test_client.delete("/api/local-models", params={"model": "owner/model"})

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert resp.json()["deleted_path"] == str(path)
        assert not path.exists()

    def test_delete_missing_name_returns_400(self, test_client):
        assert test_client.delete("/api/local-models").status_code == 400

    def test_delete_unknown_returns_404(self, test_client):
        resp = test_client.delete("/api/local-models", params={"model": "owner/none"})
        assert resp.status_code == 404

    def test_downloaded_model_appears_in_listing(self, test_client):
        test_client.post("/api/preload-model", json={"model": "vit"})

        names = [m["name"] for m in test_client.get("/api/local-models").json()["models"]]
        assert names == [VIT_LOCAL]


# ---------------------------------------------------------------------------
# Progress stream and preload endpoint tests.
# ---------------------------------------------------------------------------


class TestModelProgress:
    """Test GET /api/model-progress."""

    def test_missing_model_returns_400(self, test_client):
        assert test_client.get("/api/model-progress").status_code == 400

    def test_stream_closes_after_ready(self, test_client, service):
        service.tracker.update(VIT_LOCAL, status="ready", progress=100, message="done")

        resp = test_client.get("/api/model-progress", params={"model": "vit"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache"
        events = _events(resp.text)
        assert [e["status"] for e in events] == ["ready", "ready"]
        assert events[-1]["progress"] == 100

    def test_stream_after_preload_reports_ready(self, test_client):
        test_client.post("/api/preload-model", json={"model": "vit"})

        resp = test_client.get("/api/model-progress", params={"model": VIT_LOCAL})

        events = _events(resp.text)
        assert events[-1]["status"] == "ready"

    def test_stream_reports_error(self, test_client, service):
        service.tracker.update(VIT_LOCAL, status="error", message="boom")

        events = _events(test_client.get("/api/model-progress?model=vit").text)

        assert events[-1]["status"] == "error"
        assert events[-1]["message"] == "boom"

    def test_default_record_shape(self, service):
        """The synthesized first record carries the preparing message."""
        async def first():
            agen = service.tracker.subscribe("unknown/model")
            record = await agen.__anext__()
            await agen.aclose()
            return record

        record = asyncio.run(first())
        assert record.to_dict()["message"] == DEFAULT_MESSAGE


class TestPreloadModel:
    """Test POST and GET /api/preload-model."""

    def test_preload(self, test_client):
        resp = test_client.post("/api/preload-model", json={"model": "vit"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["message"] == "Model preloaded successfully"
        assert data["local_model"] == VIT_LOCAL
        assert data["already_loaded"] is False

    def test_preload_twice(self, test_client):
        test_client.post("/api/preload-model", json={"model": "vit"})
        resp = test_client.post("/api/preload-model", json={"model": "vit"})

        assert resp.json()["message"] == "Model was already loaded"
        assert resp.json()["already_loaded"] is True

    @pytest.mark.parametrize("payload", [{}, {"model": ""}])
    def test_missing_model_returns_400(self, test_client, payload):
        assert test_client.post("/api/preload-model", json=payload).status_code == 400

    @pytest.mark.parametrize("model", ["glm-4.5", "nope"])
    def test_unsupported_model_returns_400(self, test_client, model):
        resp = test_client.post("/api/preload-model", json={"model": model})

        assert resp.status_code == 400
        assert "does not support local preloading" in resp.json()["detail"]

    def test_load_failure_returns_500(self, test_client, pipeline_factory):
        pipeline_factory.error = OSError("bad weights")

        resp = test_client.post("/api/preload-model", json={"model": "vit"})

        assert resp.status_code == 500
        assert resp.json()["detail"].startswith("Failed to preload model")

    def test_status_without_model(self, test_client):
        test_client.post("/api/preload-model", json={"model": "vit"})

        data = test_client.get("/api/preload-model").json()

        assert data == {"success": True, "loaded_models": [VIT_LOCAL], "cache_size": 1}

    def test_status_for_model(self, test_client):
        data = test_client.get("/api/preload-model", params={"model": "vit"}).json()

        assert data["is_loaded"] is False
        assert data["local_model"] == VIT_LOCAL

    def test_status_for_api_only_model_returns_400(self, test_client):
        resp = test_client.get("/api/preload-model", params={"model": "glm-4.5"})
        assert resp.status_code == 400
