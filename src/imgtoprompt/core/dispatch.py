"""Dispatch policy: choose local or remote captioning, with one fallback hop.

For every request the policy:

1. Resolves the model key (unknown keys fail with :class:`InvalidModel`
   before any backend is touched).
2. Works out whether the local side can run for this model: local
   capability must be available and the model must name a local id.
3. Attempts the local side first when the request forces it or the model
   prefers it (and it can run); otherwise the remote API.
4. On failure tries the other side exactly once, if it is structurally
   available.  A forced-local request still falls back to the API.  An API
   failure falls back to local only for requests that were not forced local.
5. If the fallback fails too, raises :class:`FallbackExhausted`, whose
   message and :attr:`~FallbackExhausted.original` are the *primary* error.

There are no retries within a side.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from imgtoprompt.core.captioners import Captioner, LocalCaptioner
from imgtoprompt.core.errors import BackendFailure, BackendUnavailable, FallbackExhausted
from imgtoprompt.core.registry import ModelConfig, get_model

logger = logging.getLogger(__name__)

LOCAL = "local"
API = "api"

_RECOVERABLE = (BackendFailure, BackendUnavailable)


@dataclass(frozen=True)
class CaptionResult:
    """Caption text plus the side that actually produced it."""

    text: str
    execution_mode: str
    model_used: str


class CaptionDispatcher:
    """Route captioning calls between the remote API and local pipelines.

    Args:
        remote: Remote captioning backend.
        local: Local captioning backend; its ``available`` flag is read on
            every call.
    """

    def __init__(self, remote: Captioner, local: LocalCaptioner) -> None:
        self._remote = remote
        self._local = local

    def caption(
        self,
        image_bytes: bytes,
        model_key: str,
        force_local: bool = False,
    ) -> CaptionResult:
        """Caption *image_bytes* with the model registered under *model_key*.

        Raises:
            InvalidModel: If *model_key* is unknown.
            BackendFailure: If the chosen side failed and no fallback exists.
            BackendUnavailable: Likewise, when the chosen side cannot run.
            FallbackExhausted: If the chosen side and the fallback both failed.
        """
        model = get_model(model_key)

        can_use_local = self._local.available and model.local_model_id is not None
        use_local = (force_local or model.prefer_local) and can_use_local
        primary = LOCAL if use_local else API
        fallback = API if use_local else LOCAL

        try:
            return self._attempt(primary, image_bytes, model)
        except _RECOVERABLE as exc:
            primary_error = exc

        logger.error("Model processing error (%s): %s", primary, primary_error)

        if not self._fallback_allowed(fallback, model, force_local, can_use_local):
            raise primary_error

        logger.info("%s side failed, trying %s fallback...", primary, fallback)
        try:
            result = self._attempt(fallback, image_bytes, model)
        except _RECOVERABLE as fallback_error:
            logger.error("%s fallback also failed: %s", fallback, fallback_error)
            raise FallbackExhausted(primary_error, fallback_error) from primary_error

        return result

    # -- Internal helpers ---------------------------------------------------

    def _attempt(self, mode: str, image_bytes: bytes, model: ModelConfig) -> CaptionResult:
        if mode == LOCAL:
            text = self._local.caption(image_bytes, model.local_model_id)
            return CaptionResult(text=text, execution_mode=LOCAL, model_used=model.local_model_id)

        text = self._remote.caption(image_bytes, model.remote_model_id)
        return CaptionResult(text=text, execution_mode=API, model_used=model.remote_model_id)

    @staticmethod
    def _fallback_allowed(
        fallback: str,
        model: ModelConfig,
        force_local: bool,
        can_use_local: bool,
    ) -> bool:
        if fallback == API:
            return bool(model.remote_model_id)
        return can_use_local and not force_local
