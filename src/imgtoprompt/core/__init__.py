"""Core functionality for image-to-prompt generation.

Architecture Overview
---------------------
1. **Configuration** (config.py): pydantic-settings, ``IMGTOPROMPT_`` prefix.
2. **Model Registry** (registry.py): model keys and execution-mode metadata.
3. **Captioning** (captioners.py, dispatch.py): remote API and local
   pipelines behind a routing policy with one fallback hop.
4. **Styling** (style.py): detail-level and length adjustment of captions.
5. **Progress** (progress.py): download/load progress with auto-reaping.
6. **Local Cache** (local_cache.py): list and delete cached model folders.
7. **Service** (service.py): owns and wires all of the above.
"""

from imgtoprompt.core.config import ImgToPromptConfig, config
from imgtoprompt.core.registry import ModelConfig, get_model, list_models
from imgtoprompt.core.service import PromptService

__all__ = [
    "ImgToPromptConfig",
    "ModelConfig",
    "PromptService",
    "config",
    "get_model",
    "list_models",
]
