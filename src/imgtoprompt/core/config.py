"""Configuration management for the imgtoprompt service.

This module provides centralized configuration management using Pydantic
Settings.  All configuration is loaded from environment variables with the
``IMGTOPROMPT_`` prefix, allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (IMGTOPROMPT_* prefix)
2. .env file in the project root
3. Default values defined in ImgToPromptConfig

The Hugging Face token is additionally accepted from the bare
``HUGGING_FACE_API_KEY`` variable so existing ``.env`` files keep working.

Example .env file:
    IMGTOPROMPT_HF_API_KEY=hf_xxx
    IMGTOPROMPT_MODELS_DIR=models
    IMGTOPROMPT_ENABLE_LOCAL_MODELS=true
    IMGTOPROMPT_DEVICE=cpu

Global Configuration Instance
------------------------------
A global ``config`` instance is created automatically at module import time.

Usage Example
-------------
    from imgtoprompt.core.config import config

    print(config.models_dir)
    print(config.default_model)

Progress Timing
---------------
The progress stream cadence and the reaping delays are configuration rather
than constants so tests can shrink them:

- progress_poll_interval: seconds between progress snapshots (0.5)
- progress_close_delay: grace period before closing a finished stream (1.0)
- ready_reap_delay: seconds a ``ready`` record survives (5.0)
- error_reap_delay: seconds an ``error`` record survives (10.0)
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ImgToPromptConfig(BaseSettings):
    """Main configuration for the imgtoprompt service.

    Values are loaded from environment variables with the IMGTOPROMPT_
    prefix, with fallback to the defaults defined here.  The models
    directory is created automatically on initialisation.

    Attributes
    ----------
    Captioning Settings:
        hf_api_key : str | None
            Hugging Face Inference API token used by the remote captioner
        default_model : str
            Model key used when a request does not name one
        enable_local_models : bool
            Allow in-process captioning pipelines (requires ``transformers``)
        device : str
            Device for local pipelines (cpu, cuda, mps)

    Paths:
        models_dir : Path
            Directory holding downloaded local models, one folder per model

    Progress Settings:
        progress_poll_interval, progress_close_delay,
        ready_reap_delay, error_reap_delay : float
            Progress stream cadence and reaping delays in seconds

    Server Settings:
        server_host, server_port, log_level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="IMGTOPROMPT_",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Captioning settings
    hf_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "IMGTOPROMPT_HF_API_KEY",
            "HUGGING_FACE_API_KEY",
        ),
        description="Hugging Face Inference API token",
    )
    default_model: str = Field(
        default="vit",
        description="Model key used when a request does not name one",
    )
    enable_local_models: bool = Field(
        default=True,
        description="Allow in-process captioning pipelines (requires transformers)",
    )
    device: str = Field(
        default="cpu",
        description="Device to run local pipelines on (cpu/cuda/mps)",
    )

    # Paths
    models_dir: Path = Field(
        default=Path("models"),
        description="Directory holding downloaded local models",
    )

    # Progress stream and reaping
    progress_poll_interval: float = Field(default=0.5, gt=0)
    progress_close_delay: float = Field(default=1.0, ge=0)
    ready_reap_delay: float = Field(default=5.0, ge=0)
    error_reap_delay: float = Field(default=10.0, ge=0)

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=3000,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root logging level used by the CLI entry point",
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create the models directory."""
        super().__init__(**kwargs)

        self.models_dir.mkdir(parents=True, exist_ok=True)


# Global configuration instance, loaded from IMGTOPROMPT_* variables and .env.
config = ImgToPromptConfig()
