"""Captioning backends: hosted Hugging Face Inference API and local pipelines.

Two capabilities sit behind the :class:`Captioner` protocol:

- :class:`RemoteCaptioner` calls ``InferenceClient.image_to_text`` from
  ``huggingface_hub``.
- :class:`LocalCaptioner` runs a ``transformers`` ``image-to-text`` pipeline
  in-process.  Model files are downloaded with ``snapshot_download`` into
  ``models_dir/<owner>_<name>`` so the local cache manager can list and
  delete them, and every step is reported to the :class:`ProgressTracker`.

Local Capability
----------------
Whether local captioning can run at all is decided once, in
:meth:`LocalCaptioner.init`: local models must be enabled in the
configuration and ``transformers`` must be importable.  The heavy imports
themselves (``transformers``, ``torch``) happen lazily inside the methods
that need them, so the service starts quickly without them.

Pipeline Cache
--------------
Loaded pipelines are cached by model id for the lifetime of the process
with no eviction.  The cache check and the load are not serialised: two
concurrent requests that both miss the cache both build a pipeline and the
last one stored wins.  Both callers still get a working pipeline.

Known limitation: no timeout is applied to backend calls; a hung download
or inference call hangs its request.
"""

from __future__ import annotations

import gc
import importlib.util
import io
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from imgtoprompt.core.config import ImgToPromptConfig
from imgtoprompt.core.errors import BackendFailure, BackendUnavailable
from imgtoprompt.core.local_cache import LocalCacheIndex
from imgtoprompt.core.progress import ProgressTracker

logger = logging.getLogger(__name__)

FALLBACK_CAPTION = "Unable to describe the image"

# Weight formats the PyTorch pipeline never reads.
_IGNORE_PATTERNS = ["*.h5", "*.msgpack", "*.ot", "*.onnx", "onnx/*", "flax_model*", "tf_model*"]


@runtime_checkable
class Captioner(Protocol):
    """Interface shared by the remote and local captioning backends."""

    mode: str

    def caption(self, image_bytes: bytes, model_id: str) -> str: ...


# ---------------------------------------------------------------------------
# Remote captioning (Hugging Face Inference API)
# ---------------------------------------------------------------------------


class RemoteCaptioner:
    """Caption images with the hosted Hugging Face Inference API.

    Args:
        api_key: Hugging Face token.  ``None`` sends anonymous requests,
            which the API usually rejects with 401.
        client: Pre-built ``InferenceClient`` (tests inject a mock).
    """

    mode = "api"

    def __init__(self, api_key: str | None = None, client: Any = None) -> None:
        self._api_key = api_key
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            from huggingface_hub import InferenceClient

            self._client = InferenceClient(token=self._api_key)
        return self._client

    def caption(self, image_bytes: bytes, model_id: str) -> str:
        """Return the API's caption for *image_bytes*.

        Raises:
            BackendFailure: On any API error (auth, rate limit, unknown
                model, network).  The message keeps the API's wording so
                it can be classified later.
        """
        logger.info("Using Hugging Face API model: %s", model_id)
        try:
            output = self._get_client().image_to_text(image_bytes, model=model_id)
        except Exception as exc:
            raise BackendFailure(str(exc), mode=self.mode, model_id=model_id) from exc

        return _extract_text(output) or ""


# ---------------------------------------------------------------------------
# Local captioning (transformers pipeline)
# ---------------------------------------------------------------------------


class LocalCaptioner:
    """Caption images with an in-process ``transformers`` pipeline.

    Args:
        config: Application configuration (``device``,
            ``enable_local_models``).
        tracker: Progress tracker receiving download/load updates.
        cache_index: Cache index deciding where model folders live.
        pipeline_factory: Callable building a pipeline from a model
            directory.  Defaults to ``transformers.pipeline``.
        downloader: Callable ``(model_id, target_dir, report)`` fetching
            model files.  Defaults to ``huggingface_hub.snapshot_download``.
        capability_check: Callable returning whether ``transformers`` is
            importable.
    """

    mode = "local"

    def __init__(
        self,
        config: ImgToPromptConfig,
        tracker: ProgressTracker,
        cache_index: LocalCacheIndex,
        *,
        pipeline_factory: Callable[[Path], Any] | None = None,
        downloader: Callable[[str, Path, Callable[[dict], None]], None] | None = None,
        capability_check: Callable[[], bool] | None = None,
    ) -> None:
        self._config = config
        self._tracker = tracker
        self._cache_index = cache_index
        self._pipeline_factory = pipeline_factory or self._build_pipeline
        self._downloader = downloader or _snapshot_download
        self._capability_check = capability_check or _transformers_importable

        self._pipelines: dict[str, Any] = {}
        self._available = False

    # -- Lifecycle ----------------------------------------------------------

    def init(self) -> None:
        """Decide once whether local captioning can run."""
        if not self._config.enable_local_models:
            self._available = False
            logger.info("Local models disabled by configuration; API only mode.")
            return

        self._available = bool(self._capability_check())
        if self._available:
            logger.info("Local captioning available (models dir: %s).", self._config.models_dir)
        else:
            logger.warning("transformers not available, falling back to API only mode.")

    def shutdown(self) -> None:
        """Drop every cached pipeline and free accelerator memory."""
        if not self._pipelines:
            return

        logger.info("Unloading %d local pipeline(s).", len(self._pipelines))
        self._pipelines.clear()
        gc.collect()

        try:
            import torch

            if torch.cuda.is_available():
                torch.cuda.empty_cache()
                logger.info("CUDA cache cleared after unloading local pipelines.")
        except ImportError:
            # No torch, no accelerator memory to release.
            pass

    # -- Properties ---------------------------------------------------------

    @property
    def available(self) -> bool:
        """Whether local captioning can run in this process."""
        return self._available

    def is_loaded(self, model_id: str) -> bool:
        return model_id in self._pipelines

    def loaded_models(self) -> list[str]:
        return list(self._pipelines)

    # -- Loading ------------------------------------------------------------

    def load_pipeline(self, model_id: str) -> tuple[Any, bool]:
        """Return ``(pipeline, was_cached)`` for *model_id*, loading on a miss.

        Raises:
            BackendUnavailable: If local captioning cannot run at all.
            BackendFailure: If downloading or building the pipeline fails.
                The failure is also recorded as an ``error`` progress record.
        """
        if not self._available:
            self._tracker.update(
                model_id,
                status="error",
                progress=0,
                message="transformers is not available - local models are not supported",
            )
            raise BackendUnavailable("Local captioning is not available in this process")

        cached = self._pipelines.get(model_id)
        if cached is not None:
            self._tracker.update(
                model_id, status="ready", progress=100, message="Model is ready from cache"
            )
            return cached, True

        logger.info("Loading local model: %s", model_id)
        model_dir = self._cache_index.path_for(model_id)
        local_exists = self._cache_index.exists(model_id)

        if local_exists:
            self._tracker.update(
                model_id,
                status="loading",
                progress=50,
                message="Loading local model from the models folder...",
            )
        else:
            self._tracker.update(
                model_id,
                status="downloading",
                progress=0,
                message="Starting model download into the models folder...",
            )

        def report(event: dict) -> None:
            self._record_event(model_id, event, local_exists=local_exists)

        try:
            # Always fetch: the downloader skips files already on disk, so an
            # interrupted download resumes instead of leaving a broken folder.
            try:
                self._downloader(model_id, model_dir, report)
            except Exception as exc:
                if not local_exists:
                    raise
                logger.warning(
                    "Could not refresh '%s' (%s); loading the files already present.",
                    model_id,
                    exc,
                )
            report({"status": "loading"})
            pipe = self._pipeline_factory(model_dir)
        except Exception as exc:
            logger.exception("Failed to load local model '%s'.", model_id)
            self._tracker.update(
                model_id,
                status="error",
                progress=0,
                message=f"Error while loading model: {exc}",
            )
            raise BackendFailure(
                f"Failed to load local model: {model_id}",
                mode=self.mode,
                model_id=model_id,
            ) from exc

        self._pipelines[model_id] = pipe
        self._tracker.update(
            model_id,
            status="ready",
            progress=100,
            message=(
                "Local model loaded successfully"
                if local_exists
                else "Model downloaded to the models folder and loaded"
            ),
        )
        logger.info(
            "Model '%s' loaded successfully from %s.",
            model_id,
            "local cache" if local_exists else "download",
        )
        return pipe, False

    def _record_event(self, model_id: str, event: dict, *, local_exists: bool) -> None:
        """Translate a ``{status, loaded?, total?, file?}`` event into progress."""
        status = event.get("status")
        if status == "downloading":
            loaded = event.get("loaded") or 0
            total = event.get("total") or 0
            percent = round(loaded / total * 100) if total else 0
            self._tracker.update(
                model_id,
                status="downloading",
                progress=percent,
                message=f"Downloading to models/: {event.get('file') or 'model'} ({percent}%)",
            )
        elif status == "loading":
            self._tracker.update(
                model_id,
                status="loading",
                progress=90,
                message=(
                    "Loading local model..." if local_exists else "Loading downloaded model..."
                ),
            )
        elif status == "ready":
            self._tracker.update(
                model_id, status="ready", progress=100, message="Model is ready to use"
            )

    def _build_pipeline(self, model_dir: Path) -> Any:
        from transformers import pipeline

        return pipeline("image-to-text", model=str(model_dir), device=self._config.device)

    # -- Captioning ---------------------------------------------------------

    def caption(self, image_bytes: bytes, model_id: str) -> str:
        """Caption *image_bytes* with the local pipeline for *model_id*.

        Raises:
            BackendUnavailable: If local captioning cannot run.
            BackendFailure: If loading or inference fails.
        """
        logger.info("Using local model from models folder: %s", model_id)
        pipe, _ = self.load_pipeline(model_id)

        from PIL import Image

        try:
            image = Image.open(io.BytesIO(image_bytes)).convert("RGB")
            output = pipe(image)
        except Exception as exc:
            raise BackendFailure(
                f"Local captioning failed: {exc}", mode=self.mode, model_id=model_id
            ) from exc

        return _extract_text(output) or FALLBACK_CAPTION


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _extract_text(output: Any) -> str | None:
    """Pull the caption out of the shapes the backends return.

    Handles ``ImageToTextOutput`` objects, ``[{"generated_text": ...}]``
    pipeline lists, plain dicts, and bare strings.
    """
    if isinstance(output, list):
        output = output[0] if output else None
    if output is None:
        return None
    if isinstance(output, str):
        return output
    if isinstance(output, dict):
        return output.get("generated_text") or output.get("text")
    return getattr(output, "generated_text", None)


def _transformers_importable() -> bool:
    return importlib.util.find_spec("transformers") is not None


def _snapshot_download(model_id: str, target_dir: Path, report: Callable[[dict], None]) -> None:
    """Download *model_id* into *target_dir*, reporting per-file progress."""
    from huggingface_hub import snapshot_download
    from tqdm.auto import tqdm

    class _ReportingBar(tqdm):
        # snapshot_download advances this bar once per completed file, either
        # by iterating it or by calling update().
        def __iter__(self):
            done = 0
            for item in super().__iter__():
                done += 1
                report({"status": "downloading", "loaded": done, "total": self.total})
                yield item

        def update(self, n=1):
            displayed = super().update(n)
            report({"status": "downloading", "loaded": self.n, "total": self.total})
            return displayed

    logger.info("Downloading '%s' into %s.", model_id, target_dir)
    snapshot_download(
        repo_id=model_id,
        local_dir=str(target_dir),
        ignore_patterns=_IGNORE_PATTERNS,
        tqdm_class=_ReportingBar,
    )
