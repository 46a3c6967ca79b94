"""Chat session engine: retrieval-grounded, streamed conversation turns."""

from __future__ import annotations

import asyncio
import time
from contextlib import aclosing
from typing import Any, AsyncIterator

from ragdesk.chat.completions import CompletionClient, clamp_max_tokens, scale_temperature
from ragdesk.core.errors import NotFound, RagDeskError, ValidationError
from ragdesk.core.logging import get_logger, log_context
from ragdesk.core.metrics import CHAT_LATENCY, CHAT_TURNS
from ragdesk.db.repositories import ChatRepository
from ragdesk.ingest.embeddings import EmbeddingClient
from ragdesk.models.entities import Chatbot, Turn
from ragdesk.retrieval.context import build_system_prompt, dedupe_citations
from ragdesk.retrieval.retriever import DEFAULT_TOP_K, RetrievedChunk, Retriever
from ragdesk.utils.ids import new_session_id

logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 10
GENERIC_ERROR_MESSAGE = "Failed to generate a response"


class ChatSessionEngine:
    """Run one conversational turn as a stream of protocol events.

    Events, in order: at most one ``metadata`` (session id and citations),
    any number of ``text-delta``, then exactly one ``done`` or ``error``.
    Turns are persisted only when the provider stream finishes; a closed or
    failed stream leaves the conversation untouched.
    """

    def __init__(
        self,
        chats: ChatRepository,
        retriever: Retriever,
        embedder: EmbeddingClient,
        completions: CompletionClient,
        default_model: str,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self.chats = chats
        self.retriever = retriever
        self.embedder = embedder
        self.completions = completions
        self.default_model = default_model
        self.history_limit = history_limit
        self.top_k = top_k

    async def turn(
        self,
        scope_id: str,
        message: str,
        session_id: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        session_id = session_id or new_session_id()
        context = log_context(chatbot_id=scope_id, session_id=session_id)
        outcome = "cancelled"
        try:
            chatbot = await asyncio.to_thread(self.chats.get_chatbot, scope_id)
            if chatbot is None:
                raise NotFound(f"Chatbot {scope_id} not found")
            if not message or not message.strip():
                raise ValidationError("Message must not be empty")

            history = await asyncio.to_thread(self.chats.recent_turns, scope_id, session_id, self.history_limit)
            results = await self._retrieve(scope_id, message, context)
            sources = dedupe_citations(results)
            yield {"type": "metadata", "session_id": session_id, "sources": sources}

            messages = self._build_messages(chatbot, results, history, message)
            parts: list[str] = []
            finish: dict[str, Any] = {}
            started = time.perf_counter()
            stream = self.completions.stream(
                messages,
                model=chatbot.model or self.default_model,
                temperature=scale_temperature(chatbot.temperature),
                max_tokens=clamp_max_tokens(chatbot.max_tokens),
            )
            async with aclosing(stream) as events:
                async for event in events:
                    if event["type"] == "token":
                        parts.append(event["text"])
                        yield {"type": "text-delta", "text": event["text"]}
                    elif event["type"] == "finish":
                        finish = event
            latency = time.perf_counter() - started
            latency_ms = int(latency * 1000)
            content = "".join(parts)

            # No await between the end of the stream and this write, so a
            # cancellation lands either before it or after it, never inside.
            # The write blocks the event loop, up to the sqlite busy timeout while
            # an ingest worker holds the write lock; other streams stall with it.
            self.chats.persist_exchange(scope_id, session_id, message, content, sources, latency_ms)
            outcome = "completed"
            CHAT_LATENCY.observe(latency)
            logger.info("Chat turn completed in %sms", latency_ms, extra=context)
            yield {
                "type": "done",
                "session_id": session_id,
                "latency_ms": latency_ms,
                "finish_reason": finish.get("finish_reason"),
                "usage": finish.get("usage"),
            }
        except RagDeskError as exc:
            outcome = "error"
            logger.warning("Chat turn failed: %s", exc.message, extra=context)
            yield {"type": "error", "message": exc.message}
        except Exception:
            outcome = "error"
            logger.exception("Chat turn failed unexpectedly", extra=context)
            yield {"type": "error", "message": GENERIC_ERROR_MESSAGE}
        finally:
            CHAT_TURNS.labels(outcome=outcome).inc()
            if outcome == "cancelled":
                logger.info("Chat turn cancelled by client", extra=context)

    def turn_history(self, scope_id: str, session_id: str) -> list[Turn]:
        if self.chats.get_chatbot(scope_id) is None:
            raise NotFound(f"Chatbot {scope_id} not found")
        return self.chats.list_turns(scope_id, session_id)

    async def _retrieve(self, scope_id: str, message: str, context: dict[str, Any]) -> list[RetrievedChunk]:
        try:
            query_vector = await asyncio.to_thread(self.embedder.embed, message)
        except Exception as exc:
            logger.warning("Query embedding failed, answering without context: %s", exc, extra=context)
            return []
        return await asyncio.to_thread(self.retriever.retrieve, scope_id, query_vector, self.top_k)

    def _build_messages(
        self,
        chatbot: Chatbot,
        results: list[RetrievedChunk],
        history: list[Turn],
        message: str,
    ) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": build_system_prompt(chatbot.system_prompt, results)}]
        messages.extend({"role": turn.role, "content": turn.content} for turn in history)
        messages.append({"role": "user", "content": message})
        return messages


__all__ = ["ChatSessionEngine", "DEFAULT_HISTORY_LIMIT"]
