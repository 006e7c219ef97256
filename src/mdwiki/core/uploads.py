"""Image uploads.

Assets are named by a hash of their content, so uploading the same image
twice yields the same reference and never touches the stored file. Assets
are written to the working tree but not committed.
"""

import contextlib
import hashlib
import logging
import os
import tempfile
import threading
from pathlib import Path

from mdwiki.config import Settings
from mdwiki.core.errors import TooLargeError, UnsupportedTypeError, UploadError
from mdwiki.core.models import AssetReference, Identity

logger = logging.getLogger(__name__)

CONTENT_TYPES: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/webp": "webp",
}

NAME_LENGTH = 32


def normalize_content_type(content_type: str | None) -> str:
    """Lowercase media type without parameters (``image/PNG; x=y`` -> ``image/png``)."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def format_size(size: int) -> str:
    """Human readable size: ``10 MB``, ``512 KB``, ``100 bytes``."""
    for unit, scale in (("MB", 1024 * 1024), ("KB", 1024)):
        if size >= scale:
            return f"{round(size / scale, 1):g} {unit}"
    return f"{size} bytes"


class UploadHandler:
    """Stores uploaded images under the assets directory."""

    def __init__(
        self,
        assets_path: Path,
        url_prefix: str = "/images",
        max_bytes: int = 8 * 1024 * 1024,
        content_types: dict[str, str] | None = None,
    ):
        self.assets_path = assets_path
        self.url_prefix = url_prefix.rstrip("/")
        self.max_bytes = max_bytes
        self.content_types = content_types or CONTENT_TYPES
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "UploadHandler":
        return cls(
            settings.assets_path,
            url_prefix=f"/{settings.assets_dir}",
            max_bytes=settings.max_upload_bytes,
        )

    def extension_for(self, content_type: str | None) -> str:
        """File extension for an accepted content type."""
        extension = self.content_types.get(normalize_content_type(content_type))
        if extension is None:
            raise UnsupportedTypeError(context={"content_type": content_type})
        return extension

    def check_size(self, size: int) -> None:
        if size > self.max_bytes:
            raise TooLargeError(
                f"Upload is too large (limit {format_size(self.max_bytes)}).",
                context={"size": size, "limit": self.max_bytes},
            )

    def store(
        self, data: bytes, content_type: str | None, identity: Identity
    ) -> AssetReference:
        """Store an image and return its reference."""
        extension = self.extension_for(content_type)
        self.check_size(len(data))

        name = f"{hashlib.sha256(data).hexdigest()[:NAME_LENGTH]}.{extension}"
        target = self.assets_path / name
        reference = AssetReference(
            name=name,
            content_type=normalize_content_type(content_type),
            size=len(data),
            url=f"{self.url_prefix}/{name}",
        )

        with self._lock:
            if target.exists():
                logger.info("Upload by %s matches existing %s", identity.username, name)
                return reference.model_copy(update={"created": False})
            try:
                self._publish(target, data)
            except FileExistsError:
                return reference.model_copy(update={"created": False})
            except OSError as e:
                logger.warning("Failed to store upload %s: %s", name, e)
                raise UploadError(context={"error": str(e)}) from e

        logger.info("Stored upload %s (%d bytes) for %s", name, len(data), identity.username)
        return reference

    def _publish(self, target: Path, data: bytes) -> None:
        """Write to a temp file, then link it into place.

        ``os.link`` fails if ``target`` exists, so an existing asset is never
        replaced.
        """
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=".upload.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp, 0o644)
            os.link(tmp, target)
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp)
