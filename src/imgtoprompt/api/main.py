"""imgtoprompt: FastAPI Application.

This module is the single entry point for the web service.  It defines the
FastAPI ``app`` instance, all REST routes, the progress event stream, and
the ``main()`` CLI function that launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :mod:`imgtoprompt.core.config`
  (``IMGTOPROMPT_*`` environment variables and ``.env``).
- **Captioning, styling, progress, and the model cache** are owned by a
  single :class:`~imgtoprompt.core.service.PromptService` created in the
  lifespan handler and stored on ``app.state.service``.
- **Captioning calls** run in a worker thread (``asyncio.to_thread``) so a
  slow model download or inference call never blocks other requests.
- **Progress** is streamed as Server-Sent Events.

Endpoints
---------
========  ===========================  ======================================
Method    Path                         Purpose
========  ===========================  ======================================
GET       ``/api/health``              Version and local capability
POST      ``/api/generate-prompt``     Caption an uploaded image into a prompt
GET       ``/api/generate-prompt``     Model catalogue
GET       ``/api/local-models``        List cached local models
DELETE    ``/api/local-models``        Delete a cached local model
GET       ``/api/model-progress``      Progress event stream (SSE)
POST      ``/api/preload-model``       Load a local pipeline ahead of time
GET       ``/api/preload-model``       Loaded pipelines / one model's status
========  ===========================  ======================================

Usage
-----
CLI (installed entry point)::

    imgtoprompt

Direct invocation::

    python -m imgtoprompt.api.main
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Literal

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from imgtoprompt import __version__
from imgtoprompt.api.models import (
    GeneratePromptResponse,
    PreloadRequest,
    PromptMetadata,
    PromptPayload,
)
from imgtoprompt.core.config import config
from imgtoprompt.core.errors import (
    BackendFailure,
    BackendUnavailable,
    InvalidModel,
    MissingInput,
    ModelNotFound,
    classify_error,
)
from imgtoprompt.core.service import PromptService

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Application lifecycle: prompt service setup and teardown.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the :class:`PromptService` on startup and shut it down on exit.

    No model is loaded at startup; local pipelines load lazily on the first
    request that needs them (or through ``POST /api/preload-model``).
    """
    service = PromptService(config)
    service.init()
    app.state.service = service
    logger.info("PromptService ready (models dir: %s).", config.models_dir)

    yield

    app.state.service.shutdown()
    logger.info("PromptService shut down.")


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="imgtoprompt",
    description="Image-to-prompt generator with local and hosted captioning models.",
    version=__version__,
    lifespan=lifespan,
)

# The browser client may be served from another origin during development.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _service() -> PromptService:
    return app.state.service


# ---------------------------------------------------------------------------
# Routes: prompt generation.
# ---------------------------------------------------------------------------


@app.get("/api/health")
async def health() -> dict:
    """Return the service version and whether local captioning can run."""
    return {
        "status": "ok",
        "version": __version__,
        "local_available": _service().local.available,
    }


@app.post("/api/generate-prompt", response_model=GeneratePromptResponse)
async def generate_prompt(
    image: UploadFile | None = File(default=None),
    model: str | None = Form(default=None),
    force_local: bool = Form(default=False),
    prompt_length: Literal["short", "medium", "long", "detailed"] = Form(default="medium"),
    detail_level: Literal["minimal", "balanced", "detailed", "comprehensive"] = Form(
        default="balanced"
    ),
) -> GeneratePromptResponse:
    """Caption an uploaded image and return a styled prompt.

    Form fields: ``image`` (file), ``model`` (registry key, defaults to
    ``config.default_model``), ``force_local``, ``prompt_length`` and
    ``detail_level``.

    Raises:
        HTTPException: 400 for a missing image or unknown model; 401, 429,
            404, or 500 for classified captioning failures.
    """
    service = _service()
    model_key = model or service.config.default_model
    image_bytes = await image.read() if image is not None else b""

    try:
        result = await asyncio.to_thread(
            service.generate_prompt,
            image_bytes,
            model_key,
            force_local=force_local,
            prompt_length=prompt_length,
            detail_level=detail_level,
        )
    except (MissingInput, InvalidModel) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (BackendFailure, BackendUnavailable) as exc:
        status_code, message = classify_error(exc)
        logger.error("Error generating prompt with '%s': %s", model_key, exc)
        raise HTTPException(status_code=status_code, detail=message) from exc

    return GeneratePromptResponse(
        prompt=PromptPayload(prompt=result.prompt),
        model=model_key,
        metadata=PromptMetadata(
            original_name=image.filename if image is not None else None,
            size=len(image_bytes),
            type=image.content_type if image is not None else None,
            model_used=result.caption.model_used,
            execution_mode=result.caption.execution_mode,
            model_description=result.model.description,
        ),
    )


@app.get("/api/generate-prompt")
async def get_models() -> dict:
    """Return every registered model and the loaded local pipelines."""
    return {"success": True, **_service().catalogue()}


# ---------------------------------------------------------------------------
# Routes: local model cache.
# ---------------------------------------------------------------------------


@app.get("/api/local-models")
async def list_local_models() -> dict:
    """List cached model folders with sizes, newest first.

    Raises:
        HTTPException: 500 if the models directory cannot be read.
    """
    try:
        summary = await asyncio.to_thread(_service().cache_index.summary)
    except OSError as exc:
        logger.exception("Error retrieving local models.")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to retrieve local models information: {exc}",
        ) from exc

    return {
        "success": True,
        **summary,
        "message": f"Found {len(summary['models'])} local models",
    }


@app.delete("/api/local-models")
async def delete_local_model(model: str | None = None) -> dict:
    """Delete the cached folder for ``model`` (``owner/name`` or folder name).

    Raises:
        HTTPException: 400 without a model name, 404 if it is not cached,
            500 if removal fails.
    """
    if not model:
        raise HTTPException(status_code=400, detail="Model name is required")

    try:
        deleted = await asyncio.to_thread(_service().cache_index.delete, model)
    except ModelNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except OSError as exc:
        logger.exception("Error deleting model '%s'.", model)
        raise HTTPException(status_code=500, detail=f"Failed to delete model: {exc}") from exc

    return {
        "success": True,
        "message": f"Model '{model}' removed successfully",
        "deleted_path": str(deleted),
    }


# ---------------------------------------------------------------------------
# Routes: progress stream and preloading.
# ---------------------------------------------------------------------------


@app.get("/api/model-progress")
async def model_progress(model: str | None = None) -> StreamingResponse:
    """Stream progress snapshots for ``model`` as Server-Sent Events.

    ``model`` may be a registry key or a local model id.  The first event
    arrives immediately, then one every poll interval; the stream closes
    shortly after a ``ready`` or ``error`` snapshot.  Starlette cancels the
    generator when the client disconnects.
    """
    if not model:
        raise HTTPException(status_code=400, detail="Model name required")

    service = _service()
    key = service.progress_key(model)

    async def event_stream() -> AsyncIterator[str]:
        async for record in service.tracker.subscribe(key):
            yield f"data: {json.dumps(record.to_dict())}\n\n"

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@app.post("/api/preload-model")
async def preload_model(req: PreloadRequest) -> dict:
    """Load the local pipeline for ``req.model`` ahead of the first request.

    Raises:
        HTTPException: 400 if the model is missing, unknown, or has no local
            pipeline; 500 if loading fails.
    """
    if not req.model:
        raise HTTPException(status_code=400, detail="Model parameter is required")

    try:
        result = await asyncio.to_thread(_service().preload, req.model)
    except (InvalidModel, BackendUnavailable) as exc:
        raise HTTPException(
            status_code=400,
            detail=f"Model '{req.model}' does not support local preloading",
        ) from exc
    except BackendFailure as exc:
        logger.error("Error preloading model '%s': %s", req.model, exc)
        raise HTTPException(status_code=500, detail=f"Failed to preload model: {exc}") from exc

    return {
        "success": True,
        "message": (
            "Model was already loaded"
            if result["already_loaded"]
            else "Model preloaded successfully"
        ),
        **result,
    }


@app.get("/api/preload-model")
async def preload_status(model: str | None = None) -> dict:
    """Report loaded pipelines, or whether ``model``'s pipeline is loaded.

    Raises:
        HTTPException: 400 if ``model`` is unknown or has no local pipeline.
    """
    service = _service()
    if not model:
        loaded = service.local.loaded_models()
        return {"success": True, "loaded_models": loaded, "cache_size": len(loaded)}

    try:
        status = service.preload_status(model)
    except (InvalidModel, BackendUnavailable) as exc:
        raise HTTPException(
            status_code=400,
            detail=f"Model '{model}' does not support local loading",
        ) from exc

    return {"success": True, **status}


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port, and log level from
    :data:`~imgtoprompt.core.config.config` (``IMGTOPROMPT_SERVER_HOST``,
    ``IMGTOPROMPT_SERVER_PORT``, ``IMGTOPROMPT_LOG_LEVEL``).

    This function is registered as the ``imgtoprompt`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "imgtoprompt.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
