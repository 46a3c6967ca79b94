"""Blob storage for uploaded file bytes."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from ragdesk.core.errors import NotFound, ValidationError
from ragdesk.core.logging import get_logger

logger = get_logger(__name__)


def storage_path_for(owner_id: str, document_id: str) -> str:
    return f"{owner_id}/{document_id}"


class LocalBlobStore:
    """Keep blobs as files below a root directory."""

    def __init__(self, root: Path) -> None:
        self.root = root.expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        candidate = (self.root / path).resolve()
        if candidate == self.root or self.root not in candidate.parents:
            raise ValidationError(f"Invalid storage path: {path}")
        return candidate

    def put(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        # Write to a sibling temp file and rename so readers never see a partial blob.
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".upload-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Stored blob %s (%s bytes)", path, len(data))

    def get(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except FileNotFoundError as exc:
            raise NotFound(f"Blob not found: {path}") from exc

    def delete(self, path: str) -> bool:
        target = self._resolve(path)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        return True


__all__ = ["LocalBlobStore", "storage_path_for"]
