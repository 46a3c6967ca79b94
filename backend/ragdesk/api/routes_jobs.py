"""Worker endpoint called back by the job queue."""

from __future__ import annotations

import asyncio

import orjson
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ragdesk.api.dependencies import get_app_settings, get_ingestion_controller
from ragdesk.core.config import Settings
from ragdesk.core.logging import get_logger
from ragdesk.ingest.pipeline import IngestionController
from ragdesk.ingest.queue import SIGNATURE_HEADER, verify_signature
from ragdesk.ingest.types import JobDescriptor
from ragdesk.models.dto import JobResponse

router = APIRouter()
logger = get_logger(__name__)


@router.post("/process-document", response_model=JobResponse, summary="Run one ingestion attempt")
async def process_document(
    request: Request,
    controller: IngestionController = Depends(get_ingestion_controller),
    settings: Settings = Depends(get_app_settings),
):
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        return JSONResponse(status_code=401, content={"detail": "Missing signature"})
    if not verify_signature(signature, body, settings.signing_key, settings.next_signing_key):
        logger.warning("Rejected job delivery with an invalid signature")
        return JSONResponse(status_code=401, content={"detail": "Invalid signature"})
    try:
        descriptor = JobDescriptor.from_dict(orjson.loads(body))
    except (orjson.JSONDecodeError, KeyError, TypeError, ValueError):
        return JSONResponse(status_code=400, content={"detail": "Malformed job payload"})

    # Failures are recorded on the document; a 2xx stops the queue from redelivering.
    outcome = await asyncio.to_thread(controller.handle_job, descriptor)
    return JobResponse(document_id=descriptor.document_id, attempt=descriptor.attempt, outcome=outcome.value)


__all__ = ["router"]
