"""Chatbot scope management and streaming chat routes."""

from __future__ import annotations

from contextlib import aclosing
from typing import Any, AsyncIterator

import orjson
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse

from ragdesk.api.dependencies import get_actor_id, get_chat_engine, get_chat_repository, get_document_service
from ragdesk.chat.engine import ChatSessionEngine
from ragdesk.core.errors import NotFound
from ragdesk.db.repositories import ChatRepository
from ragdesk.ingest.documents import DocumentService
from ragdesk.models.dto import (
    ChatbotCreateRequest,
    ChatbotResponse,
    ChatRequest,
    HistoryResponse,
    StatusResponse,
    TurnResponse,
)
from ragdesk.models.entities import Chatbot

router = APIRouter()

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


def encode_sse(event: dict[str, Any]) -> bytes:
    return b"data: " + orjson.dumps(event) + b"\n\n"


def _owned_chatbot(chats: ChatRepository, chatbot_id: str, actor_id: str) -> Chatbot:
    chatbot = chats.get_chatbot(chatbot_id)
    if chatbot is None or chatbot.owner_id != actor_id:
        raise NotFound(f"Chatbot {chatbot_id} not found")
    return chatbot


@router.post(
    "/chatbots",
    response_model=ChatbotResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a chatbot (retrieval scope)",
)
async def create_chatbot(
    request: ChatbotCreateRequest,
    actor_id: str = Depends(get_actor_id),
    chats: ChatRepository = Depends(get_chat_repository),
) -> ChatbotResponse:
    chatbot = chats.create_chatbot(
        owner_id=actor_id,
        name=request.name,
        system_prompt=request.system_prompt,
        model=request.model,
        temperature=request.temperature,
        max_tokens=request.max_tokens,
    )
    return ChatbotResponse.from_entity(chatbot, [])


@router.get("/chatbots/{chatbot_id}", response_model=ChatbotResponse, summary="Chatbot and its linked documents")
async def get_chatbot(
    chatbot_id: str,
    actor_id: str = Depends(get_actor_id),
    chats: ChatRepository = Depends(get_chat_repository),
) -> ChatbotResponse:
    chatbot = _owned_chatbot(chats, chatbot_id, actor_id)
    return ChatbotResponse.from_entity(chatbot, chats.linked_document_ids(chatbot.id))


@router.delete("/chatbots/{chatbot_id}", response_model=StatusResponse, summary="Delete a chatbot")
async def delete_chatbot(
    chatbot_id: str,
    actor_id: str = Depends(get_actor_id),
    chats: ChatRepository = Depends(get_chat_repository),
) -> StatusResponse:
    chatbot = _owned_chatbot(chats, chatbot_id, actor_id)
    chats.delete_chatbot(chatbot.id)
    return StatusResponse(status="ok")


@router.put(
    "/chatbots/{chatbot_id}/documents/{document_id}",
    response_model=StatusResponse,
    summary="Add a document to the chatbot's knowledge",
)
async def associate_document(
    chatbot_id: str,
    document_id: str,
    actor_id: str = Depends(get_actor_id),
    chats: ChatRepository = Depends(get_chat_repository),
    service: DocumentService = Depends(get_document_service),
) -> StatusResponse:
    _owned_chatbot(chats, chatbot_id, actor_id)
    created = service.associate(chatbot_id, document_id, owner_id=actor_id)
    return StatusResponse(status="ok" if created else "noop")


@router.delete(
    "/chatbots/{chatbot_id}/documents/{document_id}",
    response_model=StatusResponse,
    summary="Remove a document from the chatbot's knowledge",
)
async def dissociate_document(
    chatbot_id: str,
    document_id: str,
    actor_id: str = Depends(get_actor_id),
    chats: ChatRepository = Depends(get_chat_repository),
    service: DocumentService = Depends(get_document_service),
) -> StatusResponse:
    _owned_chatbot(chats, chatbot_id, actor_id)
    service.dissociate(chatbot_id, document_id)
    return StatusResponse(status="ok")


@router.post("/chat/{chatbot_id}/stream", summary="Stream one chat turn as server-sent events")
async def stream_chat(
    chatbot_id: str,
    request: ChatRequest,
    engine: ChatSessionEngine = Depends(get_chat_engine),
) -> StreamingResponse:
    async def events() -> AsyncIterator[bytes]:
        async with aclosing(engine.turn(chatbot_id, request.message, request.session_id)) as turn:
            async for event in turn:
                yield encode_sse(event)

    return StreamingResponse(events(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/chat/{chatbot_id}/history", response_model=HistoryResponse, summary="Persisted turns of a session")
async def chat_history(
    chatbot_id: str,
    session_id: str = Query(..., min_length=1),
    engine: ChatSessionEngine = Depends(get_chat_engine),
) -> HistoryResponse:
    """Public share-link surface, like the stream route.

    Turns are keyed by chatbot and session, so the session id handed out in
    the stream metadata acts as the share credential.
    """
    turns = engine.turn_history(chatbot_id, session_id)
    return HistoryResponse(session_id=session_id, turns=[TurnResponse.from_entity(turn) for turn in turns])


__all__ = ["router", "encode_sse"]
