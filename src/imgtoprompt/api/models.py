"""Pydantic request and response models for the imgtoprompt API.

FastAPI uses these models for request validation, response serialisation,
and OpenAPI documentation.

Models
------
PreloadRequest
    Payload for ``POST /api/preload-model``.
PromptPayload, PromptMetadata, GeneratePromptResponse
    Response of ``POST /api/generate-prompt``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class PreloadRequest(BaseModel):
    """Request body for the ``POST /api/preload-model`` endpoint.

    Attributes:
        model: Registered model key whose local pipeline should be loaded.
    """

    model: str | None = Field(
        default=None,
        description="Model key to preload (e.g. 'vit').",
    )


class PromptPayload(BaseModel):
    """The generated prompt text."""

    prompt: str
    confidence: float | None = None
    is_mock: bool = False


class PromptMetadata(BaseModel):
    """Details about the uploaded image and the model that captioned it."""

    original_name: str | None = None
    size: int
    type: str | None = None
    model_used: str
    execution_mode: str = Field(..., description="'local' or 'api'.")
    model_description: str


class GeneratePromptResponse(BaseModel):
    """Response body of ``POST /api/generate-prompt``."""

    success: bool = True
    prompt: PromptPayload
    model: str
    metadata: PromptMetadata
