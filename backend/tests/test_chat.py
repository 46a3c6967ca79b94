"""Tests for the streaming chat engine."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Sequence

import numpy as np
import pytest

from ragdesk.chat.completions import CompletionClient, clamp_max_tokens, scale_temperature
from ragdesk.chat.engine import ChatSessionEngine
from ragdesk.core.errors import ProviderError
from ragdesk.db.repositories import ChatRepository
from ragdesk.ingest.embeddings import HashedEmbeddingClient
from ragdesk.retrieval import Retriever

CATS = "Cats purr softly when they are content. A purring cat sleeps in the sun."


class FakeCompletions(CompletionClient):
    def __init__(self, tokens: Sequence[str] = ("Hello", " world"), fail_after: int | None = None) -> None:
        self.tokens = list(tokens)
        self.fail_after = fail_after
        self.calls: list[dict[str, Any]] = []

    async def stream(self, messages, model, temperature, max_tokens) -> AsyncIterator[dict[str, Any]]:
        self.calls.append(
            {"messages": list(messages), "model": model, "temperature": temperature, "max_tokens": max_tokens}
        )
        for position, token in enumerate(self.tokens):
            if self.fail_after is not None and position == self.fail_after:
                raise ProviderError("upstream broke")
            yield {"type": "token", "text": token}
        yield {"type": "finish", "finish_reason": "stop", "usage": {"total_tokens": 3}, "model": model}


class BrokenEmbedder(HashedEmbeddingClient):
    def embed_batch(self, texts: Sequence[str]) -> list[np.ndarray]:
        raise ProviderError("embedding service down")


def _engine(chats: ChatRepository, completions: CompletionClient, embedder=None) -> ChatSessionEngine:
    return ChatSessionEngine(
        chats=chats,
        retriever=Retriever(chats.db),
        embedder=embedder or HashedEmbeddingClient(dim=64),
        completions=completions,
        default_model="test-model",
    )


def _collect(stream: AsyncIterator[dict[str, Any]]) -> list[dict[str, Any]]:
    async def run() -> list[dict[str, Any]]:
        return [event async for event in stream]

    return asyncio.run(run())


def test_turn_streams_and_persists(chats: ChatRepository, ingest_text) -> None:
    document_id = ingest_text("cats.txt", CATS)
    bot = chats.create_chatbot("owner-1", "Helper", system_prompt="Answer briefly.")
    chats.associate(bot.id, document_id)
    completions = FakeCompletions()

    events = _collect(_engine(chats, completions).turn(bot.id, "Why do cats purr?"))

    assert [event["type"] for event in events] == ["metadata", "text-delta", "text-delta", "done"]
    metadata, done = events[0], events[-1]
    session_id = metadata["session_id"]
    assert session_id and done["session_id"] == session_id
    assert [source["document_id"] for source in metadata["sources"]] == [document_id]
    assert metadata["sources"][0]["file_name"] == "cats.txt"
    assert done["finish_reason"] == "stop"
    assert done["latency_ms"] >= 0

    turns = chats.list_turns(bot.id, session_id)
    assert [(turn.role, turn.content) for turn in turns] == [
        ("user", "Why do cats purr?"),
        ("assistant", "".join(event["text"] for event in events if event["type"] == "text-delta")),
    ]
    assert turns[1].sources == metadata["sources"]
    assert turns[1].latency_ms == done["latency_ms"]

    system = completions.calls[0]["messages"][0]
    assert system["role"] == "system"
    assert system["content"].startswith("Relevant context from uploaded documents:")
    assert "[Source: cats.txt - Part 1]" in system["content"]
    assert system["content"].endswith("Answer briefly.")


def test_turn_without_documents_has_no_sources(chats: ChatRepository) -> None:
    bot = chats.create_chatbot("owner-1", "Helper", system_prompt="Be kind.")
    completions = FakeCompletions()
    events = _collect(_engine(chats, completions).turn(bot.id, "hi", session_id="s-1"))

    assert events[0] == {"type": "metadata", "session_id": "s-1", "sources": []}
    assert events[-1]["type"] == "done"
    assert completions.calls[0]["messages"][0] == {"role": "system", "content": "Be kind."}


def test_model_settings_are_mapped(chats: ChatRepository) -> None:
    bot = chats.create_chatbot("owner-1", "Helper", temperature=25, max_tokens=10)
    custom = chats.create_chatbot("owner-1", "Custom", model="custom-model", max_tokens=9000)
    completions = FakeCompletions()
    engine = _engine(chats, completions)
    _collect(engine.turn(bot.id, "hi"))
    _collect(engine.turn(custom.id, "hi"))

    assert completions.calls[0]["model"] == "test-model"
    assert completions.calls[0]["temperature"] == pytest.approx(0.25)
    assert completions.calls[0]["max_tokens"] == 100
    assert completions.calls[1]["model"] == "custom-model"
    assert completions.calls[1]["max_tokens"] == 4000


def test_clamps() -> None:
    assert clamp_max_tokens(None) == 2000
    assert clamp_max_tokens(50) == 100
    assert clamp_max_tokens(5000) == 4000
    assert scale_temperature(None) == pytest.approx(0.7)
    assert scale_temperature(150) == pytest.approx(1.0)


def test_embedding_failure_degrades_to_no_context(chats: ChatRepository, ingest_text) -> None:
    document_id = ingest_text("cats.txt", CATS)
    bot = chats.create_chatbot("owner-1", "Helper")
    chats.associate(bot.id, document_id)
    engine = _engine(chats, FakeCompletions(), embedder=BrokenEmbedder(dim=64))

    events = _collect(engine.turn(bot.id, "Why do cats purr?"))
    assert events[0]["sources"] == []
    assert events[-1]["type"] == "done"


def test_closed_stream_persists_nothing(chats: ChatRepository) -> None:
    bot = chats.create_chatbot("owner-1", "Helper")
    engine = _engine(chats, FakeCompletions(tokens=["a", "b", "c"]))

    async def run() -> list[dict[str, Any]]:
        stream = engine.turn(bot.id, "hi", session_id="s-1")
        seen = []
        async for event in stream:
            seen.append(event)
            if event["type"] == "text-delta":
                break
        await stream.aclose()
        return seen

    events = asyncio.run(run())
    assert [event["type"] for event in events] == ["metadata", "text-delta"]
    assert chats.list_turns(bot.id, "s-1") == []
    assert chats.find_conversation(bot.id, "s-1") is None


def test_provider_error_yields_error_event(chats: ChatRepository) -> None:
    bot = chats.create_chatbot("owner-1", "Helper")
    engine = _engine(chats, FakeCompletions(tokens=["a", "b"], fail_after=1))

    events = _collect(engine.turn(bot.id, "hi", session_id="s-1"))
    assert [event["type"] for event in events] == ["metadata", "text-delta", "error"]
    assert events[-1]["message"] == "upstream broke"
    assert chats.list_turns(bot.id, "s-1") == []


def test_unknown_chatbot_yields_only_error(chats: ChatRepository) -> None:
    events = _collect(_engine(chats, FakeCompletions()).turn("bot_missing", "hi"))
    assert len(events) == 1
    assert events[0]["type"] == "error"
    assert "not found" in events[0]["message"]


def test_history_is_bounded(chats: ChatRepository) -> None:
    bot = chats.create_chatbot("owner-1", "Helper")
    completions = FakeCompletions(tokens=["ok"])
    engine = _engine(chats, completions)
    for number in range(8):
        _collect(engine.turn(bot.id, f"question {number}", session_id="s-1"))

    last = completions.calls[-1]["messages"]
    assert len(last) == 1 + 10 + 1
    assert last[1] == {"role": "user", "content": "question 2"}
    assert last[-2] == {"role": "assistant", "content": "ok"}
    assert last[-1] == {"role": "user", "content": "question 7"}
    assert len(engine.turn_history(bot.id, "s-1")) == 16


def test_sessions_are_isolated(chats: ChatRepository) -> None:
    bot = chats.create_chatbot("owner-1", "Helper")
    completions = FakeCompletions(tokens=["ok"])
    engine = _engine(chats, completions)
    _collect(engine.turn(bot.id, "first", session_id="s-1"))
    _collect(engine.turn(bot.id, "second", session_id="s-2"))

    assert len(completions.calls[1]["messages"]) == 2
    assert [turn.content for turn in chats.list_turns(bot.id, "s-2")] == ["second", "ok"]
