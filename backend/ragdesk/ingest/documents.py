"""Document lifecycle operations exposed to the API and CLI."""

from __future__ import annotations

from ragdesk.core.errors import (
    DuplicateDocument,
    JobQueueError,
    NotFound,
    RagDeskError,
    ValidationError,
)
from ragdesk.core.logging import get_logger, log_context
from ragdesk.db.repositories import ChatRepository, DocumentRepository
from ragdesk.ingest.pipeline import IngestionController
from ragdesk.ingest.validation import normalize_media_type, validate_upload
from ragdesk.models.entities import Document
from ragdesk.storage.blobs import LocalBlobStore, storage_path_for
from ragdesk.utils.ids import new_id

logger = get_logger(__name__)


class DocumentService:
    def __init__(
        self,
        documents: DocumentRepository,
        chats: ChatRepository,
        blobs: LocalBlobStore,
        controller: IngestionController,
        max_file_size_bytes: int,
    ) -> None:
        self.documents = documents
        self.chats = chats
        self.blobs = blobs
        self.controller = controller
        self.max_file_size_bytes = max_file_size_bytes

    def upload(self, owner_id: str, display_name: str, media_type: str | None, data: bytes) -> Document:
        """Validate, store the bytes, create the pending row and publish its first job."""
        media_type = normalize_media_type(media_type)
        validate_upload(display_name, media_type, len(data), self.max_file_size_bytes)
        if self.documents.find_by_name(owner_id, display_name) is not None:
            raise DuplicateDocument(display_name)

        document_id = new_id("doc")
        storage_path = storage_path_for(owner_id, document_id)
        self.blobs.put(storage_path, data)
        try:
            document = self.documents.create(
                owner_id=owner_id,
                display_name=display_name,
                media_type=media_type,
                size_bytes=len(data),
                storage_path=storage_path,
                document_id=document_id,
            )
        except RagDeskError:
            self.blobs.delete(storage_path)
            raise

        context = log_context(document_id=document.id, owner_id=owner_id, media_type=media_type)
        logger.info("Document uploaded", extra=context)
        try:
            self.controller.submit(document.id)
        except JobQueueError:
            logger.error("Document stored but its ingestion job could not be queued", extra=context)
            raise
        return document

    def get(self, document_id: str, owner_id: str | None = None) -> Document:
        document = self.documents.get(document_id)
        if document is None or (owner_id is not None and document.owner_id != owner_id):
            raise NotFound(f"Document {document_id} not found")
        return document

    def list_for_owner(self, owner_id: str) -> list[Document]:
        return self.documents.list_for_owner(owner_id)

    def delete(self, document_id: str, owner_id: str | None = None) -> None:
        document = self.get(document_id, owner_id)
        self.documents.delete(document.id)
        self.blobs.delete(document.storage_path)
        logger.info("Document deleted", extra=log_context(document_id=document.id))

    def associate(self, chatbot_id: str, document_id: str, owner_id: str | None = None) -> bool:
        """Link a document to a chatbot's knowledge scope."""
        document = self.get(document_id, owner_id)
        if self.chats.get_chatbot(chatbot_id) is None:
            raise NotFound(f"Chatbot {chatbot_id} not found")
        if document.status == "failed":
            detail = (document.error or {}).get("message") or "unknown error"
            raise ValidationError(
                f'Cannot add "{document.display_name}" because processing failed: {detail}'
            )
        if document.in_flight:
            logger.info(
                "Associating a document that is still processing",
                extra=log_context(document_id=document.id, chatbot_id=chatbot_id, status=document.status),
            )
        return self.chats.associate(chatbot_id, document.id)

    def dissociate(self, chatbot_id: str, document_id: str) -> bool:
        if not self.chats.dissociate(chatbot_id, document_id):
            raise NotFound(f"Document {document_id} is not linked to chatbot {chatbot_id}")
        return True


__all__ = ["DocumentService"]
