"""Model registry: supported model keys and their execution-mode metadata.

Each key maps to a :class:`ModelConfig` naming the Hugging Face Inference
model used remotely, the optional model used by the in-process pipeline,
whether the local pipeline is the preferred first attempt, and a short
description.  The registry is fixed at import time.
"""

from __future__ import annotations

from dataclasses import dataclass

from imgtoprompt.core.errors import InvalidModel

# ---------------------------------------------------------------------------
# Model entry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelConfig:
    """A single captioning model in the registry."""

    remote_model_id: str
    local_model_id: str | None
    prefer_local: bool
    description: str

    @property
    def default_mode(self) -> str:
        return "local" if self.prefer_local else "api"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

FLUX_MODEL_KEY = "flux1"
DEFAULT_MODEL_KEY = "vit"

# Used for both sides. Local pipelines need PyTorch weights; the
# transformers.js ONNX export (Xenova/vit-gpt2-image-captioning) does not
# load in transformers.
_VIT_GPT2 = "nlpconnect/vit-gpt2-image-captioning"

# fmt: off
_MODELS: dict[str, ModelConfig] = {
    "vit": ModelConfig(
        remote_model_id=_VIT_GPT2,
        local_model_id=_VIT_GPT2,
        prefer_local=True,
        description="ViT-GPT2 image captioning (fastest local model)",
    ),
    "blip": ModelConfig(
        remote_model_id="Salesforce/blip-image-captioning-base",
        local_model_id=_VIT_GPT2,
        prefer_local=True,
        description="BLIP image captioning",
    ),
    "blip-large": ModelConfig(
        remote_model_id="Salesforce/blip-image-captioning-large",
        local_model_id=_VIT_GPT2,
        prefer_local=True,
        description="BLIP Large model (high quality)",
    ),
    "blip-longcap": ModelConfig(
        remote_model_id="unography/blip-long-cap",
        local_model_id=_VIT_GPT2,
        prefer_local=True,
        description="BLIP Long Caption (detailed descriptions)",
    ),
    "git-base": ModelConfig(
        remote_model_id="microsoft/git-base",
        local_model_id=_VIT_GPT2,
        prefer_local=True,
        description="Microsoft GIT model (high quality)",
    ),
    # API only: no local pipeline is registered for this key.
    "glm-4.5": ModelConfig(
        remote_model_id=_VIT_GPT2,
        local_model_id=None,
        prefer_local=False,
        description="GLM-4.5 via API only",
    ),
    FLUX_MODEL_KEY: ModelConfig(
        remote_model_id=_VIT_GPT2,
        local_model_id=_VIT_GPT2,
        prefer_local=True,
        description="Flux1-optimized prompts",
    ),
    "midjourney": ModelConfig(
        remote_model_id=_VIT_GPT2,
        local_model_id=_VIT_GPT2,
        prefer_local=True,
        description="Midjourney-style prompts",
    ),
    "dalle3": ModelConfig(
        remote_model_id=_VIT_GPT2,
        local_model_id=_VIT_GPT2,
        prefer_local=True,
        description="DALL-E 3 style prompts",
    ),
    "stable-diffusion": ModelConfig(
        remote_model_id=_VIT_GPT2,
        local_model_id=_VIT_GPT2,
        prefer_local=True,
        description="Stable Diffusion prompts",
    ),
}
# fmt: on

# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def get_model(model_key: str | None) -> ModelConfig:
    """Look up a model by key.

    Raises:
        InvalidModel: If *model_key* is not registered.  The message lists
            every valid key in registration order.
    """
    try:
        return _MODELS[model_key]
    except KeyError:
        raise InvalidModel(model_key, list(_MODELS)) from None


def list_models() -> list[tuple[str, ModelConfig]]:
    """Return ``(key, ModelConfig)`` pairs in registration order."""
    return list(_MODELS.items())
