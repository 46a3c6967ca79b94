"""Test fixtures for ragdesk."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from ragdesk.db.repositories import ChatRepository, DocumentRepository  # noqa: E402
from ragdesk.db.sqlite import SQLiteDatabase  # noqa: E402
from ragdesk.ingest.chunker import RecursiveChunker  # noqa: E402
from ragdesk.ingest.embeddings import HashedEmbeddingClient  # noqa: E402
from ragdesk.ingest.pipeline import IngestionController  # noqa: E402
from ragdesk.ingest.queue import JobQueue  # noqa: E402
from ragdesk.ingest.types import AttemptOutcome, JobDescriptor  # noqa: E402
from ragdesk.ingest.workers import JobHandle  # noqa: E402
from ragdesk.storage.blobs import LocalBlobStore, storage_path_for  # noqa: E402
from ragdesk.utils.ids import new_id  # noqa: E402

EMBEDDING_DIM = 64


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("RAGDESK_DB_PATH", str(tmp_path / "ragdesk.db"))
    monkeypatch.setenv("RAGDESK_BLOB_ROOT", str(tmp_path / "blobs"))
    monkeypatch.setenv("RAGDESK_EMBEDDING_PROVIDER", "hashed")
    monkeypatch.setenv("RAGDESK_EMBEDDING_DIM", str(EMBEDDING_DIM))
    monkeypatch.setenv("RAGDESK_TOKENIZER_MODEL", "")
    monkeypatch.setenv("RAGDESK_JOB_MODE", "inline")
    monkeypatch.delenv("RAGDESK_CONFIG", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

    from ragdesk.api import dependencies as deps

    deps.reset_state()
    yield
    deps.reset_state()


class RecordingQueue(JobQueue):
    """Collects published descriptors; tests decide when to run them."""

    def __init__(self) -> None:
        self.published: list[JobDescriptor] = []

    def publish(self, descriptor: JobDescriptor) -> JobHandle:
        self.published.append(descriptor)
        return JobHandle(descriptor=descriptor)


@pytest.fixture
def db(tmp_path: Path) -> SQLiteDatabase:
    database = SQLiteDatabase(tmp_path / "unit.db")
    database.ensure_schema()
    yield database
    database.close()


@pytest.fixture
def documents(db: SQLiteDatabase) -> DocumentRepository:
    return DocumentRepository(db)


@pytest.fixture
def chats(db: SQLiteDatabase) -> ChatRepository:
    return ChatRepository(db)


@pytest.fixture
def blobs(tmp_path: Path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "unit-blobs")


@pytest.fixture
def embedder() -> HashedEmbeddingClient:
    return HashedEmbeddingClient(dim=EMBEDDING_DIM)


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def controller(
    documents: DocumentRepository,
    blobs: LocalBlobStore,
    embedder: HashedEmbeddingClient,
    queue: RecordingQueue,
) -> IngestionController:
    return IngestionController(
        documents=documents,
        blobs=blobs,
        embedder=embedder,
        chunker=RecursiveChunker(chunk_size=1000, chunk_overlap=200),
        queue=queue,
        batch_size=4,
    )


@pytest.fixture
def ingest_text(
    documents: DocumentRepository,
    blobs: LocalBlobStore,
    controller: IngestionController,
) -> Callable[..., str]:
    """Store a text document and run its first attempt to completion."""

    def _ingest(name: str, text: str, owner_id: str = "owner-1") -> str:
        document_id = new_id("doc")
        path = storage_path_for(owner_id, document_id)
        blobs.put(path, text.encode("utf-8"))
        documents.create(owner_id, name, "text/plain", len(text), path, document_id=document_id)
        assert controller.run_attempt(document_id, 0) is AttemptOutcome.COMPLETED
        return document_id

    return _ingest


@pytest.fixture(scope="session")
def long_text() -> str:
    """About 12 KB of prose split into paragraphs."""
    paragraph = ("Retrieval augmented generation grounds answers in documents. " * 5)[:298]
    return "\n\n".join(paragraph for _ in range(40))
