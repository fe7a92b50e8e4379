"""The prompt service: one owned object wiring every core component.

:class:`PromptService` replaces process-wide caches with an explicit owner.
The FastAPI lifespan creates one instance, calls :meth:`PromptService.init`
on startup and :meth:`PromptService.shutdown` on shutdown, and stores it on
``app.state`` where route handlers pick it up.

Components
----------
- :class:`~imgtoprompt.core.progress.ProgressTracker`: progress table.
- :class:`~imgtoprompt.core.local_cache.LocalCacheIndex`: models folder.
- :class:`~imgtoprompt.core.captioners.RemoteCaptioner`: Inference API.
- :class:`~imgtoprompt.core.captioners.LocalCaptioner`: local pipelines.
- :class:`~imgtoprompt.core.dispatch.CaptionDispatcher`: routing policy.

Usage
-----
::

    from imgtoprompt.core.config import config
    from imgtoprompt.core.service import PromptService

    service = PromptService(config)
    service.init()

    result = service.generate_prompt(
        image_bytes,
        "flux1",
        prompt_length="medium",
        detail_level="balanced",
    )
    print(result.prompt, result.caption.execution_mode)

    service.shutdown()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from imgtoprompt.core.captioners import Captioner, LocalCaptioner, RemoteCaptioner
from imgtoprompt.core.config import ImgToPromptConfig
from imgtoprompt.core.dispatch import CaptionDispatcher, CaptionResult
from imgtoprompt.core.errors import BackendUnavailable, InvalidModel, MissingInput
from imgtoprompt.core.local_cache import LocalCacheIndex
from imgtoprompt.core.progress import ProgressTracker
from imgtoprompt.core.registry import FLUX_MODEL_KEY, ModelConfig, get_model, list_models
from imgtoprompt.core.style import Chooser, adjust_prompt_style, enhance_for_flux

logger = logging.getLogger(__name__)

# Used when a backend returns an empty caption.
DEFAULT_CAPTION = "A beautiful image"


@dataclass(frozen=True)
class PromptResult:
    """A styled prompt together with how it was produced."""

    prompt: str
    caption: CaptionResult
    model_key: str
    model: ModelConfig


class PromptService:
    """Own the captioning backends, progress table, and cache index.

    Args:
        config: Application configuration.
        tracker: Progress tracker (built from *config* when omitted).
        cache_index: Local model cache index (rooted at ``models_dir``).
        remote: Remote captioning backend.
        local: Local captioning backend.
        chooser: Random phrase selection function used by the styling
            pipeline (``random.sample`` when omitted).
    """

    def __init__(
        self,
        config: ImgToPromptConfig,
        *,
        tracker: ProgressTracker | None = None,
        cache_index: LocalCacheIndex | None = None,
        remote: Captioner | None = None,
        local: LocalCaptioner | None = None,
        chooser: Chooser | None = None,
    ) -> None:
        self.config = config
        self.tracker = tracker or ProgressTracker(
            ready_reap_delay=config.ready_reap_delay,
            error_reap_delay=config.error_reap_delay,
            poll_interval=config.progress_poll_interval,
            close_delay=config.progress_close_delay,
        )
        self.cache_index = cache_index or LocalCacheIndex(config.models_dir)
        self.remote = remote or RemoteCaptioner(api_key=config.hf_api_key)
        self.local = local or LocalCaptioner(config, self.tracker, self.cache_index)
        self.dispatcher = CaptionDispatcher(self.remote, self.local)
        self._chooser = chooser

    # -- Lifecycle ----------------------------------------------------------

    def init(self) -> None:
        """Reset the progress table and probe local capability."""
        self.tracker.init()
        self.local.init()
        logger.info(
            "PromptService initialised (local captioning %s).",
            "available" if self.local.available else "unavailable",
        )

    def shutdown(self) -> None:
        """Unload local pipelines and discard progress records."""
        self.local.shutdown()
        self.tracker.shutdown()
        logger.info("PromptService shut down.")

    # -- Prompt generation --------------------------------------------------

    def generate_prompt(
        self,
        image_bytes: bytes | None,
        model_key: str,
        *,
        force_local: bool = False,
        prompt_length: str | None = "medium",
        detail_level: str = "balanced",
    ) -> PromptResult:
        """Caption an image and style the caption into a prompt.

        Args:
            image_bytes: Raw image payload.
            model_key: Registered model key.
            force_local: Try the local pipeline first even when the model
                prefers the API.
            prompt_length: Length target for the styling pipeline.
            detail_level: Detail level for the styling pipeline.

        Returns:
            The styled prompt and captioning metadata.

        Raises:
            MissingInput: If no image bytes were supplied.
            InvalidModel: If *model_key* is unknown.
            BackendFailure: If captioning failed (see the dispatch policy).
        """
        if not image_bytes:
            raise MissingInput("No image provided")

        model = get_model(model_key)
        caption = self.dispatcher.caption(image_bytes, model_key, force_local=force_local)

        text = caption.text.strip() or DEFAULT_CAPTION
        text = adjust_prompt_style(text, prompt_length, detail_level, chooser=self._chooser)
        if model_key == FLUX_MODEL_KEY:
            text = enhance_for_flux(text, chooser=self._chooser)

        logger.info(
            "Generated prompt with '%s' via %s (%d words).",
            model_key,
            caption.execution_mode,
            len(text.split()),
        )
        return PromptResult(prompt=text, caption=caption, model_key=model_key, model=model)

    def catalogue(self) -> dict:
        """Describe every registered model and the loaded pipelines."""
        models = [
            {
                "key": key,
                "description": model.description,
                "supports_local": model.local_model_id is not None,
                "supports_api": bool(model.remote_model_id),
                "default_mode": model.default_mode,
                "local_model": model.local_model_id,
                "api_model": model.remote_model_id,
            }
            for key, model in list_models()
        ]
        loaded = self.local.loaded_models()
        return {
            "models": models,
            "local_available": self.local.available,
            "local_cache_info": {"cached_models": loaded, "cache_size": len(loaded)},
        }

    # -- Preloading ---------------------------------------------------------

    def _local_model_id(self, model_key: str) -> str:
        model = get_model(model_key)
        if model.local_model_id is None:
            raise BackendUnavailable(f"Model '{model_key}' does not support local loading")
        return model.local_model_id

    def preload(self, model_key: str) -> dict:
        """Load the local pipeline for *model_key* ahead of the first request.

        Raises:
            InvalidModel: If *model_key* is unknown.
            BackendUnavailable: If the model has no local pipeline or local
                captioning cannot run.
            BackendFailure: If loading fails.
        """
        local_model_id = self._local_model_id(model_key)
        logger.info("Preloading model: %s", local_model_id)
        _, already_loaded = self.local.load_pipeline(local_model_id)
        return {
            "model": model_key,
            "local_model": local_model_id,
            "already_loaded": already_loaded,
        }

    def progress_key(self, model: str) -> str:
        """Return the progress-table key for a model key or model id.

        Progress is recorded per local model id; a registered model key is
        translated to its local id, anything else is used as given.
        """
        try:
            local_model_id = get_model(model).local_model_id
        except InvalidModel:
            return model
        return local_model_id or model

    def preload_status(self, model_key: str) -> dict:
        local_model_id = self._local_model_id(model_key)
        return {
            "model": model_key,
            "local_model": local_model_id,
            "is_loaded": self.local.is_loaded(local_model_id),
            "description": get_model(model_key).description,
        }
