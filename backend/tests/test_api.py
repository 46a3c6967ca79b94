"""API integration tests."""

from __future__ import annotations

import time
from typing import Any

import orjson
import pytest
from fastapi.testclient import TestClient

from ragdesk.api import dependencies as deps
from ragdesk.app import app
from ragdesk.chat.completions import CompletionClient
from ragdesk.chat.engine import ChatSessionEngine
from ragdesk.db.repositories import ChatRepository
from ragdesk.retrieval import Retriever

ACTOR = {"X-Actor-Id": "owner-1"}
NOTES = b"Ragdesk answers questions using the documents you upload."


class ScriptedCompletions(CompletionClient):
    async def stream(self, messages, model, temperature, max_tokens):
        for token in ("Grounded", " answer"):
            yield {"type": "token", "text": token}
        yield {"type": "finish", "finish_reason": "stop", "usage": None, "model": model}


def _scripted_engine() -> ChatSessionEngine:
    db = deps.get_database()
    return ChatSessionEngine(
        chats=ChatRepository(db),
        retriever=Retriever(db),
        embedder=deps.get_embedding_client(),
        completions=ScriptedCompletions(),
        default_model="test-model",
    )


@pytest.fixture
def client() -> TestClient:
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _upload(client: TestClient, name: str = "notes.txt", data: bytes = NOTES, media_type: str = "text/plain"):
    return client.post("/documents", files={"file": (name, data, media_type)}, headers=ACTOR)


def _wait_for(client: TestClient, document_id: str, status: str, attempt: int = 0) -> dict[str, Any]:
    deadline = time.monotonic() + 10
    while time.monotonic() < deadline:
        payload = client.get(f"/documents/{document_id}", headers=ACTOR).json()
        if payload["status"] == status and payload["attempt"] == attempt:
            return payload
        time.sleep(0.05)
    raise AssertionError(f"document {document_id} never reached {status}")


def _sse_events(body: str) -> list[dict[str, Any]]:
    events = []
    for frame in body.split("\n\n"):
        if frame.startswith("data: "):
            events.append(orjson.loads(frame[len("data: ") :]))
    return events


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_upload_and_poll_until_completed(client: TestClient) -> None:
    resp = _upload(client)
    assert resp.status_code == 201
    created = resp.json()
    assert created["display_name"] == "notes.txt"
    assert created["attempt"] == 0

    document = _wait_for(client, created["id"], "completed")
    assert document["display_status"] == "completed"
    assert document["chunk_count"] == 1
    assert document["progress"] is None

    listing = client.get("/documents", headers=ACTOR).json()
    assert [item["id"] for item in listing["documents"]] == [created["id"]]


def test_upload_rejections(client: TestClient) -> None:
    unsupported = _upload(client, name="image.png", data=b"\x89PNG", media_type="image/png")
    assert unsupported.status_code == 400
    assert "Unsupported" in unsupported.json()["detail"]
    assert client.get("/documents", headers=ACTOR).json()["documents"] == []

    missing_actor = client.post("/documents", files={"file": ("notes.txt", NOTES, "text/plain")})
    assert missing_actor.status_code == 400

    assert _upload(client).status_code == 201
    assert _upload(client).status_code == 409


def test_documents_are_scoped_to_their_owner(client: TestClient) -> None:
    document_id = _upload(client).json()["id"]
    resp = client.get(f"/documents/{document_id}", headers={"X-Actor-Id": "owner-2"})
    assert resp.status_code == 404


def test_retry_and_cancel(client: TestClient) -> None:
    document_id = _upload(client).json()["id"]
    _wait_for(client, document_id, "completed")

    cancel = client.post(f"/documents/{document_id}/cancel", headers=ACTOR)
    assert cancel.status_code == 400
    retry = client.post(f"/documents/{document_id}/retry", headers=ACTOR)
    assert retry.status_code == 400
    assert "completed" in retry.json()["detail"]
    assert _wait_for(client, document_id, "completed")["chunk_count"] == 1

    blank_id = _upload(client, name="blank.txt", data=b"   \n ").json()["id"]
    failed = _wait_for(client, blank_id, "failed")
    assert failed["error"]["stage"] == "extracting"

    retry = client.post(f"/documents/{blank_id}/retry", headers=ACTOR)
    assert retry.status_code == 202
    assert retry.json()["attempt"] == 1
    _wait_for(client, blank_id, "failed", attempt=1)


def test_delete_document(client: TestClient) -> None:
    document_id = _upload(client).json()["id"]
    _wait_for(client, document_id, "completed")
    assert client.delete(f"/documents/{document_id}", headers=ACTOR).json() == {"status": "ok"}
    assert client.get(f"/documents/{document_id}", headers=ACTOR).status_code == 404


def test_chatbot_knowledge_and_streaming_chat(client: TestClient) -> None:
    app.dependency_overrides[deps.get_chat_engine] = _scripted_engine
    document_id = _upload(client).json()["id"]
    _wait_for(client, document_id, "completed")

    bot = client.post("/chatbots", json={"name": "Helper", "system_prompt": "Be brief."}, headers=ACTOR)
    assert bot.status_code == 201
    bot_id = bot.json()["id"]
    linked = client.put(f"/chatbots/{bot_id}/documents/{document_id}", headers=ACTOR)
    assert linked.json() == {"status": "ok"}
    again = client.put(f"/chatbots/{bot_id}/documents/{document_id}", headers=ACTOR)
    assert again.json() == {"status": "noop"}
    assert client.get(f"/chatbots/{bot_id}", headers=ACTOR).json()["document_ids"] == [document_id]

    resp = client.post(f"/chat/{bot_id}/stream", json={"message": "What does ragdesk do?"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["cache-control"] == "no-cache"
    events = _sse_events(resp.text)
    assert [event["type"] for event in events] == ["metadata", "text-delta", "text-delta", "done"]
    assert events[0]["sources"][0]["document_id"] == document_id
    session_id = events[0]["session_id"]

    history = client.get(f"/chat/{bot_id}/history", params={"session_id": session_id})
    assert history.status_code == 200
    turns = history.json()["turns"]
    assert [turn["role"] for turn in turns] == ["user", "assistant"]
    assert turns[1]["content"] == "Grounded answer"
    assert turns[1]["sources"] == events[0]["sources"]

    other_bot = client.post("/chatbots", json={"name": "Other"}, headers=ACTOR).json()["id"]
    foreign = client.get(f"/chat/{other_bot}/history", params={"session_id": session_id})
    assert foreign.json()["turns"] == []
    missing = client.get("/chat/bot_missing/history", params={"session_id": session_id})
    assert missing.status_code == 404


def test_chat_with_unknown_chatbot_streams_error(client: TestClient) -> None:
    app.dependency_overrides[deps.get_chat_engine] = _scripted_engine
    resp = client.post("/chat/bot_missing/stream", json={"message": "hello"})
    assert resp.status_code == 200
    events = _sse_events(resp.text)
    assert [event["type"] for event in events] == ["error"]


def test_chatbot_routes_enforce_owner(client: TestClient) -> None:
    bot_id = client.post("/chatbots", json={"name": "Helper"}, headers=ACTOR).json()["id"]
    other = {"X-Actor-Id": "owner-2"}
    assert client.get(f"/chatbots/{bot_id}", headers=other).status_code == 404
    assert client.delete(f"/chatbots/{bot_id}", headers=other).status_code == 404
    assert client.delete(f"/chatbots/{bot_id}", headers=ACTOR).json() == {"status": "ok"}


def test_metrics_endpoint(client: TestClient) -> None:
    document_id = _upload(client).json()["id"]
    _wait_for(client, document_id, "completed")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "ragdesk_ingest_attempts_total" in resp.text
