"""Synchronous upload validation, run before any row or blob exists."""

from __future__ import annotations

import re

from ragdesk.core.errors import UnsupportedMediaType, ValidationError
from ragdesk.ingest.extractors import DOCX, PDF, SUPPORTED_MEDIA_TYPES

MAX_NAME_LENGTH = 255

EXTENSION_MEDIA_TYPES: dict[str, frozenset[str]] = {
    "pdf": frozenset({PDF}),
    "docx": frozenset({DOCX}),
    "txt": frozenset({"text/plain"}),
    "md": frozenset({"text/markdown"}),
    "markdown": frozenset({"text/markdown"}),
    "json": frozenset({"application/json"}),
    "csv": frozenset({"text/csv"}),
}

MEDIA_TYPE_LABELS: dict[str, str] = {
    PDF: "PDF",
    DOCX: "Word (.docx)",
    "text/plain": "Text",
    "text/markdown": "Markdown",
    "application/json": "JSON",
    "text/csv": "CSV",
}

_INVALID_NAME_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def normalize_media_type(media_type: str | None) -> str:
    """Drop parameters such as ``; charset=utf-8`` and lowercase."""
    if not media_type:
        return ""
    return media_type.split(";", 1)[0].strip().lower()


def validate_file_name(name: str) -> None:
    if not name or not name.strip():
        raise ValidationError("File name is required")
    if _INVALID_NAME_RE.search(name):
        raise ValidationError(
            "File name contains invalid characters. "
            "Please use only letters, numbers, spaces, and common punctuation."
        )
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"File name must be less than {MAX_NAME_LENGTH} characters")


def validate_file_size(size: int, max_bytes: int) -> None:
    if size == 0:
        raise ValidationError("Cannot upload empty file")
    if size > max_bytes:
        raise ValidationError(
            f"File size exceeds {max_bytes // (1024 * 1024)}MB limit. "
            f"Current file size: {size / 1024 / 1024:.2f}MB"
        )


def validate_media_type(media_type: str) -> None:
    if media_type not in SUPPORTED_MEDIA_TYPES:
        raise UnsupportedMediaType(MEDIA_TYPE_LABELS.get(media_type, media_type or "unknown"))


def validate_extension(name: str, media_type: str) -> None:
    """Reject files whose known extension contradicts the declared media type."""
    if "." not in name:
        return
    extension = name.rsplit(".", 1)[1].lower()
    allowed = EXTENSION_MEDIA_TYPES.get(extension)
    if allowed is not None and media_type not in allowed:
        label = MEDIA_TYPE_LABELS.get(media_type, media_type)
        raise ValidationError(
            f"File extension (.{extension}) does not match file type ({label}). "
            "This may indicate a renamed or corrupted file."
        )


def validate_upload(name: str, media_type: str, size: int, max_bytes: int) -> None:
    validate_file_name(name)
    validate_file_size(size, max_bytes)
    validate_media_type(media_type)
    validate_extension(name, media_type)


__all__ = [
    "EXTENSION_MEDIA_TYPES",
    "normalize_media_type",
    "validate_file_name",
    "validate_file_size",
    "validate_media_type",
    "validate_extension",
    "validate_upload",
]
