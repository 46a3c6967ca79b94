"""Document upload, status and lifecycle routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from ragdesk.api.dependencies import (
    get_actor_id,
    get_app_settings,
    get_document_service,
    get_ingestion_controller,
)
from ragdesk.core.config import Settings
from ragdesk.ingest.documents import DocumentService
from ragdesk.ingest.pipeline import IngestionController
from ragdesk.models.dto import DocumentListResponse, DocumentResponse, StatusResponse
from ragdesk.models.entities import Document
from ragdesk.utils.time import now_ms

router = APIRouter()


def _present(document: Document, settings: Settings) -> DocumentResponse:
    return DocumentResponse.from_entity(document, now_ms(), settings.stuck_after_ms)


@router.post(
    "",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a document and queue it for ingestion",
)
async def upload_document(
    file: UploadFile = File(...),
    display_name: str | None = Form(default=None),
    actor_id: str = Depends(get_actor_id),
    service: DocumentService = Depends(get_document_service),
    settings: Settings = Depends(get_app_settings),
) -> DocumentResponse:
    data = await file.read()
    name = display_name or file.filename or ""
    document = service.upload(actor_id, name, file.content_type, data)
    return _present(document, settings)


@router.get("", response_model=DocumentListResponse, summary="List the caller's documents")
async def list_documents(
    actor_id: str = Depends(get_actor_id),
    service: DocumentService = Depends(get_document_service),
    settings: Settings = Depends(get_app_settings),
) -> DocumentListResponse:
    documents = service.list_for_owner(actor_id)
    return DocumentListResponse(documents=[_present(document, settings) for document in documents])


@router.get("/{document_id}", response_model=DocumentResponse, summary="Document status and progress")
async def get_document(
    document_id: str,
    actor_id: str = Depends(get_actor_id),
    service: DocumentService = Depends(get_document_service),
    settings: Settings = Depends(get_app_settings),
) -> DocumentResponse:
    return _present(service.get(document_id, actor_id), settings)


@router.post(
    "/{document_id}/retry",
    response_model=DocumentResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a fresh ingestion attempt",
)
async def retry_document(
    document_id: str,
    actor_id: str = Depends(get_actor_id),
    service: DocumentService = Depends(get_document_service),
    controller: IngestionController = Depends(get_ingestion_controller),
    settings: Settings = Depends(get_app_settings),
) -> DocumentResponse:
    observed = service.get(document_id, actor_id)
    document, _ = controller.retry(document_id, observed=observed)
    return _present(document, settings)


@router.post(
    "/{document_id}/cancel",
    response_model=DocumentResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Abandon the in-flight attempt and restart",
)
async def cancel_document(
    document_id: str,
    actor_id: str = Depends(get_actor_id),
    service: DocumentService = Depends(get_document_service),
    controller: IngestionController = Depends(get_ingestion_controller),
    settings: Settings = Depends(get_app_settings),
) -> DocumentResponse:
    service.get(document_id, actor_id)
    document, _ = controller.cancel(document_id)
    return _present(document, settings)


@router.delete("/{document_id}", response_model=StatusResponse, summary="Delete a document, its chunks and blob")
async def delete_document(
    document_id: str,
    actor_id: str = Depends(get_actor_id),
    service: DocumentService = Depends(get_document_service),
) -> StatusResponse:
    service.delete(document_id, actor_id)
    return StatusResponse(status="ok")


__all__ = ["router"]
