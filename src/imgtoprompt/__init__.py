"""imgtoprompt - turn uploaded images into prompts for image-generation tools."""

__version__ = "0.1.0"

__all__ = ["__version__"]
