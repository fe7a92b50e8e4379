"""On-disk cache of local captioning models.

Every local model lives in its own folder directly under the models
directory.  Folder names are the filesystem-safe form of the Hugging Face
model id: the ``/`` between owner and name becomes ``_``
(``Xenova/vit-gpt2-image-captioning`` ->
``Xenova_vit-gpt2-image-captioning``).  Only the first occurrence is
substituted in either direction, which keeps the mapping exact for ids whose
owner part contains no underscore.

The index never persists anything of its own: :meth:`LocalCacheIndex.list_entries`
walks the directory on every call.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import asdict, dataclass
from pathlib import Path

from imgtoprompt.core.errors import ModelNotFound

logger = logging.getLogger(__name__)

_SEPARATOR = "/"
_SAFE_SEPARATOR = "_"


def to_filesystem_safe(model_name: str) -> str:
    """Return the folder name for a logical model id."""
    return model_name.replace(_SEPARATOR, _SAFE_SEPARATOR, 1)


def to_logical(folder_name: str) -> str:
    """Return the logical model id for a cache folder name."""
    return folder_name.replace(_SAFE_SEPARATOR, _SEPARATOR, 1)


def format_bytes(size: int) -> str:
    """Render a byte count as ``Bytes``/``KB``/``MB``/``GB`` with two decimals."""
    if size <= 0:
        return "0 Bytes"

    units = ["Bytes", "KB", "MB", "GB"]
    index = 0
    while size >= 1024 ** (index + 1) and index < len(units) - 1:
        index += 1
    value = round(size / 1024**index, 2)
    # Match "1.5 KB" / "2 MB" rather than "2.0 MB".
    return f"{value:g} {units[index]}"


@dataclass(frozen=True)
class LocalCacheEntry:
    """A read-only view of one cached model folder."""

    name: str
    original_name: str
    size: int
    size_formatted: str
    file_count: int
    last_modified: float
    path: str

    def to_dict(self) -> dict:
        return asdict(self)


class LocalCacheIndex:
    """Enumerate, size, and delete cached model folders under *root*."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, model_name: str) -> Path:
        """Return the folder a model is (or would be) cached in."""
        return self.root / to_filesystem_safe(model_name)

    def exists(self, model_name: str) -> bool:
        return self.path_for(model_name).is_dir()

    def list_entries(self) -> list[LocalCacheEntry]:
        """Return one entry per model folder, most recently modified first.

        Folders that cannot be read are logged and skipped.
        """
        if not self.root.exists():
            self.root.mkdir(parents=True, exist_ok=True)
            return []

        entries: list[LocalCacheEntry] = []
        for child in self.root.iterdir():
            if not child.is_dir():
                continue
            try:
                size, file_count = _directory_size(child)
                last_modified = child.stat().st_mtime * 1000
            except OSError:
                logger.exception("Error reading model folder '%s'.", child.name)
                continue

            entries.append(
                LocalCacheEntry(
                    name=to_logical(child.name),
                    original_name=child.name,
                    size=size,
                    size_formatted=format_bytes(size),
                    file_count=file_count,
                    last_modified=last_modified,
                    path=str(child),
                )
            )

        entries.sort(key=lambda entry: entry.last_modified, reverse=True)
        return entries

    def summary(self) -> dict:
        """Return the listing plus totals, as served by the HTTP layer."""
        entries = self.list_entries()
        total_size = sum(entry.size for entry in entries)
        return {
            "models": [entry.to_dict() for entry in entries],
            "total_size": total_size,
            "total_size_formatted": format_bytes(total_size),
            "models_directory": str(self.root.resolve()),
        }

    def delete(self, model_name: str) -> Path:
        """Remove the cached folder for *model_name* recursively.

        Args:
            model_name: Logical model id (``owner/name``) or folder name.

        Returns:
            The path that was removed.

        Raises:
            ModelNotFound: If no such folder exists.
        """
        target = self.path_for(model_name)
        # Only immediate children of the models directory are deletable.
        if target.resolve().parent != self.root.resolve() or not target.is_dir():
            raise ModelNotFound(f"Model '{model_name}' not found locally")

        shutil.rmtree(target)
        logger.info("Removed cached model '%s' (%s).", model_name, target)
        return target


def _directory_size(path: Path) -> tuple[int, int]:
    """Return ``(total_bytes, file_count)`` for every file below *path*."""
    total = 0
    count = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for filename in filenames:
            total += os.stat(os.path.join(dirpath, filename)).st_size
            count += 1
    return total, count
