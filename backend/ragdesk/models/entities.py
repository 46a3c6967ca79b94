"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

DocumentStatus = Literal["pending", "processing", "completed", "failed"]
ProcessingStage = Literal["downloading", "extracting", "chunking", "embedding", "storing"]
TurnRole = Literal["user", "assistant"]

IN_FLIGHT_STATUSES: frozenset[str] = frozenset({"pending", "processing"})


@dataclass(slots=True)
class ProcessingProgress:
    stage: ProcessingStage
    percentage: int
    last_updated_at: int
    current_chunk: int | None = None
    total_chunks: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "stage": self.stage,
            "percentage": self.percentage,
            "last_updated_at": self.last_updated_at,
        }
        if self.current_chunk is not None:
            payload["current_chunk"] = self.current_chunk
        if self.total_chunks is not None:
            payload["total_chunks"] = self.total_chunks
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProcessingProgress":
        return cls(
            stage=data["stage"],
            percentage=int(data.get("percentage", 0)),
            last_updated_at=int(data["last_updated_at"]),
            current_chunk=data.get("current_chunk"),
            total_chunks=data.get("total_chunks"),
        )


@dataclass(slots=True)
class Document:
    id: str
    owner_id: str
    display_name: str
    media_type: str
    size_bytes: int
    storage_path: str
    status: DocumentStatus
    attempt: int
    progress: ProcessingProgress | None
    error: dict[str, Any] | None
    chunk_count: int
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @property
    def in_flight(self) -> bool:
        return self.status in IN_FLIGHT_STATUSES

    def is_stuck(self, now_ms: int, stuck_after_ms: int) -> bool:
        """A processing document whose last progress write is too old."""
        if self.status != "processing":
            return False
        if self.progress is not None:
            last = self.progress.last_updated_at
        else:
            last = int(self.updated_at.timestamp() * 1000)
        return now_ms - last > stuck_after_ms

    def display_status(self, now_ms: int, stuck_after_ms: int) -> str:
        return "stuck" if self.is_stuck(now_ms, stuck_after_ms) else self.status


@dataclass(slots=True)
class Chunk:
    id: str
    document_id: str
    attempt: int
    index: int
    content: str
    embedding: bytes
    embedding_dim: int
    token_count: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Chatbot:
    id: str
    owner_id: str
    name: str
    system_prompt: str
    model: str | None
    temperature: int
    max_tokens: int
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class Conversation:
    id: str
    chatbot_id: str
    session_id: str
    created_at: datetime


@dataclass(slots=True)
class Turn:
    id: str
    conversation_id: str
    role: TurnRole
    content: str
    sources: list[dict[str, Any]] | None
    latency_ms: int | None
    created_at: datetime


__all__ = [
    "DocumentStatus",
    "ProcessingStage",
    "TurnRole",
    "IN_FLIGHT_STATUSES",
    "ProcessingProgress",
    "Document",
    "Chunk",
    "Chatbot",
    "Conversation",
    "Turn",
]
