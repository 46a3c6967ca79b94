"""Tests for document lifecycle operations."""

from __future__ import annotations

import pytest

from ragdesk.core.errors import (
    DuplicateDocument,
    JobQueueError,
    NotFound,
    UnsupportedMediaType,
    ValidationError,
)
from ragdesk.db.repositories import ChatRepository, DocumentRepository
from ragdesk.ingest.documents import DocumentService
from ragdesk.ingest.pipeline import IngestionController
from ragdesk.ingest.queue import JobQueue
from ragdesk.ingest.types import JobDescriptor
from ragdesk.storage.blobs import LocalBlobStore


class BrokenQueue(JobQueue):
    def publish(self, descriptor: JobDescriptor):
        raise JobQueueError("queue unavailable")


@pytest.fixture
def service(
    documents: DocumentRepository,
    chats: ChatRepository,
    blobs: LocalBlobStore,
    controller: IngestionController,
) -> DocumentService:
    return DocumentService(documents, chats, blobs, controller, max_file_size_bytes=1024)


def test_upload_creates_pending_document_and_job(service: DocumentService, blobs: LocalBlobStore, queue) -> None:
    document = service.upload("owner-1", "notes.txt", "text/plain; charset=utf-8", b"hello there")
    assert document.status == "pending"
    assert document.attempt == 0
    assert document.media_type == "text/plain"
    assert document.size_bytes == 11
    assert blobs.get(document.storage_path) == b"hello there"
    assert queue.published == [JobDescriptor(document.id, 0)]


def test_upload_rejects_duplicate_names(service: DocumentService) -> None:
    service.upload("owner-1", "notes.txt", "text/plain", b"one")
    with pytest.raises(DuplicateDocument):
        service.upload("owner-1", "notes.txt", "text/plain", b"two")
    other = service.upload("owner-2", "notes.txt", "text/plain", b"three")
    assert other.owner_id == "owner-2"


def test_invalid_upload_leaves_nothing_behind(service: DocumentService, blobs: LocalBlobStore, queue) -> None:
    with pytest.raises(UnsupportedMediaType):
        service.upload("owner-1", "image.png", "image/png", b"\x89PNG")
    with pytest.raises(ValidationError):
        service.upload("owner-1", "big.txt", "text/plain", b"x" * 2048)
    assert service.list_for_owner("owner-1") == []
    assert queue.published == []
    assert not any(blobs.root.rglob("*"))


def test_publish_failure_keeps_pending_document(
    documents: DocumentRepository,
    chats: ChatRepository,
    blobs: LocalBlobStore,
    controller: IngestionController,
) -> None:
    controller.queue = BrokenQueue()
    service = DocumentService(documents, chats, blobs, controller, max_file_size_bytes=1024)
    with pytest.raises(JobQueueError):
        service.upload("owner-1", "notes.txt", "text/plain", b"hello")
    stored = documents.find_by_name("owner-1", "notes.txt")
    assert stored is not None
    assert stored.status == "pending"


def test_get_enforces_owner(service: DocumentService) -> None:
    document = service.upload("owner-1", "notes.txt", "text/plain", b"hello")
    assert service.get(document.id, "owner-1").id == document.id
    with pytest.raises(NotFound):
        service.get(document.id, "owner-2")


def test_delete_removes_row_chunks_and_blob(
    service: DocumentService,
    documents: DocumentRepository,
    blobs: LocalBlobStore,
    controller: IngestionController,
) -> None:
    document = service.upload("owner-1", "notes.txt", "text/plain", b"hello there")
    controller.run_attempt(document.id, 0)
    assert documents.count_chunks(document.id) == 1

    service.delete(document.id, "owner-1")
    assert documents.get(document.id) is None
    assert documents.count_chunks(document.id) == 0
    with pytest.raises(NotFound):
        blobs.get(document.storage_path)


def test_associate_rules(
    service: DocumentService,
    chats: ChatRepository,
    controller: IngestionController,
) -> None:
    bot = chats.create_chatbot("owner-1", "Helper")
    pending = service.upload("owner-1", "pending.txt", "text/plain", b"still processing")
    assert service.associate(bot.id, pending.id, "owner-1") is True
    assert service.associate(bot.id, pending.id, "owner-1") is False
    assert chats.linked_document_ids(bot.id) == [pending.id]

    broken = service.upload("owner-1", "blank.txt", "text/plain", b"   ")
    controller.run_attempt(broken.id, 0)
    with pytest.raises(ValidationError, match="processing failed"):
        service.associate(bot.id, broken.id, "owner-1")

    with pytest.raises(NotFound):
        service.associate("bot_missing", pending.id, "owner-1")


def test_dissociate(service: DocumentService, chats: ChatRepository) -> None:
    bot = chats.create_chatbot("owner-1", "Helper")
    document = service.upload("owner-1", "notes.txt", "text/plain", b"hello")
    service.associate(bot.id, document.id)
    assert service.dissociate(bot.id, document.id) is True
    with pytest.raises(NotFound):
        service.dissociate(bot.id, document.id)


def test_blob_store_rejects_escaping_paths(blobs: LocalBlobStore) -> None:
    with pytest.raises(ValidationError):
        blobs.put("../outside", b"data")
    assert blobs.delete("owner-1/never-written") is False


def test_created_rows_match_stored_rows(documents: DocumentRepository, chats: ChatRepository) -> None:
    document = documents.create("owner-1", "notes.txt", "text/plain", 5, "owner-1/notes")
    assert documents.get(document.id) == document
    chatbot = chats.create_chatbot("owner-1", "Helper", system_prompt="Be brief.", model="gpt-4o-mini")
    assert chats.get_chatbot(chatbot.id) == chatbot
