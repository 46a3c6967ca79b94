"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from ragdesk.models.entities import Chatbot, Document, Turn
from ragdesk.utils.time import ms_to_datetime


class ProgressResponse(BaseModel):
    stage: str
    percentage: int
    last_updated_at: datetime
    current_chunk: int | None = None
    total_chunks: int | None = None


class DocumentResponse(BaseModel):
    id: str
    owner_id: str
    display_name: str
    media_type: str
    size_bytes: int
    status: Literal["pending", "processing", "completed", "failed"]
    display_status: str
    attempt: int
    progress: ProgressResponse | None = None
    error: dict[str, Any] | None = None
    chunk_count: int
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, document: Document, now_ms: int, stuck_after_ms: int) -> "DocumentResponse":
        progress = None
        if document.progress is not None:
            progress = ProgressResponse(
                stage=document.progress.stage,
                percentage=document.progress.percentage,
                last_updated_at=ms_to_datetime(document.progress.last_updated_at),
                current_chunk=document.progress.current_chunk,
                total_chunks=document.progress.total_chunks,
            )
        return cls(
            id=document.id,
            owner_id=document.owner_id,
            display_name=document.display_name,
            media_type=document.media_type,
            size_bytes=document.size_bytes,
            status=document.status,
            display_status=document.display_status(now_ms, stuck_after_ms),
            attempt=document.attempt,
            progress=progress,
            error=document.error,
            chunk_count=document.chunk_count,
            completed_at=document.completed_at,
            created_at=document.created_at,
            updated_at=document.updated_at,
        )


class DocumentListResponse(BaseModel):
    documents: list[DocumentResponse]


class ChatbotCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    system_prompt: str = ""
    model: str | None = None
    temperature: int = Field(default=70, ge=0, le=100)
    max_tokens: int = Field(default=2000, ge=1)


class ChatbotResponse(BaseModel):
    id: str
    owner_id: str
    name: str
    system_prompt: str
    model: str | None
    temperature: int
    max_tokens: int
    document_ids: list[str] = Field(default_factory=list)
    created_at: datetime

    @classmethod
    def from_entity(cls, chatbot: Chatbot, document_ids: list[str]) -> "ChatbotResponse":
        return cls(
            id=chatbot.id,
            owner_id=chatbot.owner_id,
            name=chatbot.name,
            system_prompt=chatbot.system_prompt,
            model=chatbot.model,
            temperature=chatbot.temperature,
            max_tokens=chatbot.max_tokens,
            document_ids=document_ids,
            created_at=chatbot.created_at,
        )


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    session_id: str | None = None


class TurnResponse(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    sources: list[dict[str, Any]] | None = None
    latency_ms: int | None = None
    created_at: datetime

    @classmethod
    def from_entity(cls, turn: Turn) -> "TurnResponse":
        return cls(
            role=turn.role,
            content=turn.content,
            sources=turn.sources,
            latency_ms=turn.latency_ms,
            created_at=turn.created_at,
        )


class HistoryResponse(BaseModel):
    session_id: str
    turns: list[TurnResponse]


class JobResponse(BaseModel):
    document_id: str
    attempt: int
    outcome: str


class StatusResponse(BaseModel):
    status: Literal["ok", "noop"]


__all__ = [
    "ProgressResponse",
    "DocumentResponse",
    "DocumentListResponse",
    "ChatbotCreateRequest",
    "ChatbotResponse",
    "ChatRequest",
    "TurnResponse",
    "HistoryResponse",
    "JobResponse",
    "StatusResponse",
]
