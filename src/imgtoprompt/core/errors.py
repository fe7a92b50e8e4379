"""Error taxonomy for captioning and model management.

Every error raised by the core package derives from :class:`ImgToPromptError`
so route handlers can catch the whole family in one place.  The classes map
onto user-visible outcomes:

========================  =====================================================
Exception                 Meaning
========================  =====================================================
``InvalidModel``          Unknown model key (user error, 400)
``MissingInput``          No image supplied (user error, 400)
``BackendUnavailable``    The chosen captioning side cannot run at all
``BackendFailure``        An attempted captioning call failed
``FallbackExhausted``     Primary and fallback sides both failed
``ModelNotFound``         No cached folder for a model (404)
========================  =====================================================

:func:`classify_error` turns a raw backend error into a stable
``(status_code, message)`` pair for the HTTP layer.
"""

from __future__ import annotations


class ImgToPromptError(Exception):
    """Base class for all imgtoprompt errors."""


class InvalidModel(ImgToPromptError):
    """Raised when a model key is not in the registry.

    The message enumerates the valid keys so it can be shown to the user
    as-is.
    """

    def __init__(self, model_key: str | None, available: list[str]) -> None:
        self.model_key = model_key
        self.available = list(available)
        super().__init__(
            f"Invalid model: {model_key}. Available models: {', '.join(self.available)}"
        )


class MissingInput(ImgToPromptError):
    """Raised when a request carries no image payload."""


class BackendUnavailable(ImgToPromptError):
    """Raised when a captioning side cannot run at all (e.g. no transformers)."""


class BackendFailure(ImgToPromptError):
    """Raised when an attempted captioning call fails.

    Attributes:
        mode: ``"local"`` or ``"api"``, the side that failed.
        model_id: Model identifier passed to the backend.
    """

    def __init__(self, message: str, *, mode: str, model_id: str | None = None) -> None:
        self.mode = mode
        self.model_id = model_id
        super().__init__(message)


class FallbackExhausted(BackendFailure):
    """Raised when both the primary and the fallback side failed.

    The primary's error is the one surfaced: ``str(exc)`` is the primary's
    message and :attr:`original` is the primary exception itself.
    """

    def __init__(self, original: Exception, fallback: Exception) -> None:
        self.original = original
        self.fallback = fallback
        super().__init__(
            str(original),
            mode=getattr(original, "mode", "unknown"),
            model_id=getattr(original, "model_id", None),
        )


class ModelNotFound(ImgToPromptError):
    """Raised when a cached model folder does not exist."""


# ---------------------------------------------------------------------------
# Classification for the HTTP boundary.
# ---------------------------------------------------------------------------

GENERIC_FAILURE_MESSAGE = "Failed to generate prompt"


def classify_error(exc: BaseException) -> tuple[int, str]:
    """Map a captioning error to an HTTP status code and a stable message.

    When *exc* is a :class:`FallbackExhausted` the primary error is
    classified.  Matching is case-insensitive on the error text.

    Args:
        exc: The error raised by the dispatch layer.

    Returns:
        Tuple of ``(status_code, user_message)``.
    """
    if isinstance(exc, FallbackExhausted):
        exc = exc.original

    text = str(exc).lower()

    if "api key" in text or "unauthorized" in text or "401" in text:
        return 401, (
            "Hugging Face API key is missing or invalid. "
            "Please check your IMGTOPROMPT_HF_API_KEY setting."
        )
    if "rate limit" in text or "429" in text:
        return 429, "Rate limit exceeded. Please try again later."
    if "model" in text:
        return 404, "Model not found or unavailable. Please try a different model."
    return 500, GENERIC_FAILURE_MESSAGE
