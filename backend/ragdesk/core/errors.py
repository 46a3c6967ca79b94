"""Error taxonomy shared by ingestion, retrieval and chat."""

from __future__ import annotations


class RagDeskError(Exception):
    """Base class for every error raised by ragdesk itself."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(RagDeskError):
    """Upload rejected before any document or job exists."""

    status_code = 400


class UnsupportedMediaType(ValidationError):
    def __init__(self, media_type: str) -> None:
        super().__init__(f"Unsupported file type: {media_type}")
        self.media_type = media_type


class ExtractionFailed(RagDeskError):
    """Input bytes could not be turned into text."""

    status_code = 422


class EmptyContent(RagDeskError):
    """No text was recoverable from the document."""

    status_code = 422


class ProviderUnavailable(RagDeskError):
    """The embedding or completion provider has no credential configured."""

    status_code = 503


class ProviderError(RagDeskError):
    """The upstream provider failed or answered with something unusable."""

    status_code = 502


class ConcurrencyConflict(RagDeskError):
    """A compare-and-set on the document status lost a race."""

    status_code = 409


class AttemptSuperseded(RagDeskError):
    """A newer attempt generation took over the document mid-flight."""

    status_code = 409

    def __init__(self, document_id: str, attempt: int) -> None:
        super().__init__(f"Attempt {attempt} of document {document_id} was superseded")
        self.document_id = document_id
        self.attempt = attempt


class NotFound(RagDeskError):
    status_code = 404


class DuplicateDocument(RagDeskError):
    status_code = 409

    def __init__(self, display_name: str) -> None:
        super().__init__(
            f'A file with the name "{display_name}" already exists. '
            "Please rename your file or delete the existing one."
        )
        self.display_name = display_name


class JobQueueError(RagDeskError):
    """Publishing a job to the queue failed."""

    status_code = 503


__all__ = [
    "RagDeskError",
    "ValidationError",
    "UnsupportedMediaType",
    "ExtractionFailed",
    "EmptyContent",
    "ProviderUnavailable",
    "ProviderError",
    "ConcurrencyConflict",
    "AttemptSuperseded",
    "NotFound",
    "DuplicateDocument",
    "JobQueueError",
]
