"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(slots=True)
class ExtractedText:
    """Plain text recovered from an uploaded file.

    ``page_offsets`` holds the starting character offset of every PDF page,
    in page order; it is empty for formats without pages.
    """

    text: str
    media_type: str
    page_offsets: list[int] = field(default_factory=list)

    def page_for(self, offset: int) -> int | None:
        if not self.page_offsets:
            return None
        page = 1
        for number, start in enumerate(self.page_offsets, start=1):
            if start > offset:
                break
            page = number
        return page


@dataclass(slots=True)
class ChunkDraft:
    """Chunk produced by the chunker prior to embedding and persistence."""

    index: int
    text: str
    token_count: int
    start_char: int
    end_char: int
    page: int | None = None

    def metadata(self) -> dict[str, Any]:
        meta: dict[str, Any] = {"start_char": self.start_char, "end_char": self.end_char}
        if self.page is not None:
            meta["page"] = self.page
        return meta


class AttemptOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SUPERSEDED = "superseded"


@dataclass(slots=True, frozen=True)
class JobDescriptor:
    """Unit of work handed to a job queue: one attempt of one document."""

    document_id: str
    attempt: int

    def to_dict(self) -> dict[str, Any]:
        return {"document_id": self.document_id, "attempt": self.attempt}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobDescriptor":
        return cls(document_id=str(data["document_id"]), attempt=int(data["attempt"]))


__all__ = ["ExtractedText", "ChunkDraft", "AttemptOutcome", "JobDescriptor"]
