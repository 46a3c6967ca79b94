"""Tests for upload validation."""

import pytest

from ragdesk.core.errors import UnsupportedMediaType, ValidationError
from ragdesk.ingest.extractors import DOCX, PDF
from ragdesk.ingest.validation import normalize_media_type, validate_upload

MAX_BYTES = 50 * 1024 * 1024


def test_accepts_supported_uploads() -> None:
    validate_upload("report.pdf", PDF, 1024, MAX_BYTES)
    validate_upload("notes.md", "text/markdown", 10, MAX_BYTES)
    validate_upload("letter.docx", DOCX, 10, MAX_BYTES)
    validate_upload("no-extension", "text/plain", 10, MAX_BYTES)


def test_normalize_media_type() -> None:
    assert normalize_media_type("Text/Plain; charset=utf-8") == "text/plain"
    assert normalize_media_type(None) == ""


@pytest.mark.parametrize("name", ["", "bad/name.txt", "what?.txt", "tab\there.txt", "x" * 256])
def test_rejects_bad_names(name: str) -> None:
    with pytest.raises(ValidationError):
        validate_upload(name, "text/plain", 10, MAX_BYTES)


def test_rejects_empty_and_oversized_files() -> None:
    with pytest.raises(ValidationError, match="empty"):
        validate_upload("a.txt", "text/plain", 0, MAX_BYTES)
    with pytest.raises(ValidationError, match="50MB"):
        validate_upload("a.txt", "text/plain", MAX_BYTES + 1, MAX_BYTES)


def test_rejects_unsupported_types() -> None:
    with pytest.raises(UnsupportedMediaType):
        validate_upload("legacy.doc", "application/msword", 10, MAX_BYTES)
    with pytest.raises(UnsupportedMediaType):
        validate_upload("image.png", "image/png", 10, MAX_BYTES)


def test_rejects_mismatched_extension() -> None:
    with pytest.raises(ValidationError, match="does not match"):
        validate_upload("renamed.pdf", "text/plain", 10, MAX_BYTES)
