"""Shared pytest fixtures for imgtoprompt tests."""

from __future__ import annotations

import io
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from PIL import Image

from imgtoprompt.core.captioners import LocalCaptioner, RemoteCaptioner
from imgtoprompt.core.config import ImgToPromptConfig
from imgtoprompt.core.local_cache import LocalCacheIndex
from imgtoprompt.core.progress import ProgressTracker
from imgtoprompt.core.service import PromptService

LOCAL_CAPTION = "a dog running in a field"
REMOTE_CAPTION = "a cat sleeping on a sofa"


def first_k(pool, k):
    """Deterministic chooser: always the first *k* phrases of the pool."""
    return list(pool)[:k]


class FakePipelineFactory:
    """Builds fake ``image-to-text`` pipelines and records every build.

    Args:
        text: Caption every built pipeline returns.
        error: Exception raised instead of building, if set.
    """

    def __init__(self, text: str = LOCAL_CAPTION, error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.built: list[Path] = []

    def __call__(self, model_dir: Path):
        self.built.append(model_dir)
        if self.error is not None:
            raise self.error
        return lambda image: [{"generated_text": self.text}]


def fake_downloader(model_id: str, target_dir: Path, report) -> None:
    """Write a two-file model folder, reporting per-file progress."""
    target_dir.mkdir(parents=True, exist_ok=True)
    (target_dir / "config.json").write_text("{}")
    report({"status": "downloading", "loaded": 1, "total": 2, "file": "config.json"})
    (target_dir / "model.safetensors").write_bytes(b"\0" * 64)
    report({"status": "downloading", "loaded": 2, "total": 2, "file": "model.safetensors"})


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> ImgToPromptConfig:
    """Create a test configuration with a temporary models directory.

    Progress timings are shrunk so stream tests finish quickly.
    """
    return ImgToPromptConfig(
        hf_api_key="hf_test_token",
        models_dir=temp_dir / "models",
        device="cpu",
        enable_local_models=True,
        progress_poll_interval=0.01,
        progress_close_delay=0.0,
        _env_file=None,
    )


@pytest.fixture
def png_bytes() -> bytes:
    """A small valid PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (16, 16), color=(0, 128, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def tracker(test_config: ImgToPromptConfig) -> ProgressTracker:
    return ProgressTracker(
        ready_reap_delay=test_config.ready_reap_delay,
        error_reap_delay=test_config.error_reap_delay,
        poll_interval=test_config.progress_poll_interval,
        close_delay=test_config.progress_close_delay,
    )


@pytest.fixture
def cache_index(test_config: ImgToPromptConfig) -> LocalCacheIndex:
    return LocalCacheIndex(test_config.models_dir)


@pytest.fixture
def pipeline_factory() -> FakePipelineFactory:
    return FakePipelineFactory()


@pytest.fixture
def inference_client() -> MagicMock:
    """Mock ``huggingface_hub.InferenceClient`` returning a fixed caption."""
    client = MagicMock()
    client.image_to_text.return_value = SimpleNamespace(generated_text=REMOTE_CAPTION)
    return client


@pytest.fixture
def remote_captioner(inference_client: MagicMock) -> RemoteCaptioner:
    return RemoteCaptioner(api_key="hf_test_token", client=inference_client)


@pytest.fixture
def make_local(
    test_config: ImgToPromptConfig,
    tracker: ProgressTracker,
    cache_index: LocalCacheIndex,
    pipeline_factory: FakePipelineFactory,
):
    """Factory building initialised LocalCaptioners with fake I/O.

    Keyword arguments override the tracker or any LocalCaptioner hook.
    """

    def _make(**kwargs) -> LocalCaptioner:
        progress = kwargs.pop("tracker", tracker)
        kwargs.setdefault("pipeline_factory", pipeline_factory)
        kwargs.setdefault("downloader", fake_downloader)
        kwargs.setdefault("capability_check", lambda: True)
        local = LocalCaptioner(test_config, progress, cache_index, **kwargs)
        local.init()
        return local

    return _make


@pytest.fixture
def local_captioner(make_local) -> LocalCaptioner:
    """Local captioner with fake download and pipeline construction."""
    return make_local()


@pytest.fixture
def service(
    test_config: ImgToPromptConfig,
    tracker: ProgressTracker,
    cache_index: LocalCacheIndex,
    remote_captioner: RemoteCaptioner,
    local_captioner: LocalCaptioner,
) -> Generator[PromptService, None, None]:
    """A fully wired PromptService that never touches the network."""
    svc = PromptService(
        test_config,
        tracker=tracker,
        cache_index=cache_index,
        remote=remote_captioner,
        local=local_captioner,
        chooser=first_k,
    )
    svc.init()
    try:
        yield svc
    finally:
        svc.shutdown()


@pytest.fixture
def test_client(service: PromptService):
    """FastAPI TestClient bound to the test service.

    The client is used without its context manager so the lifespan handler
    (which would build a service from the global config) never runs.
    """
    from fastapi.testclient import TestClient

    from imgtoprompt.api.main import app

    app.state.service = service
    yield TestClient(app)
    del app.state.service
