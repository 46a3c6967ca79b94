"""Ingestion job controller: document state machine and attempt execution."""

from __future__ import annotations

import time
from typing import Any

from ragdesk.core.errors import (
    AttemptSuperseded,
    ConcurrencyConflict,
    NotFound,
    RagDeskError,
    ValidationError,
)
from ragdesk.core.logging import get_logger, log_context
from ragdesk.core.metrics import INGEST_ATTEMPTS, INGEST_CHUNKS, INGEST_DURATION
from ragdesk.db.repositories import DocumentRepository
from ragdesk.ingest.chunker import RecursiveChunker
from ragdesk.ingest.embeddings import EmbeddingClient
from ragdesk.ingest.extractors import ExtractorRegistry
from ragdesk.ingest.queue import JobQueue
from ragdesk.ingest.types import AttemptOutcome, ChunkDraft, JobDescriptor
from ragdesk.ingest.workers import JobHandle
from ragdesk.models.entities import Chunk, Document, ProcessingProgress, ProcessingStage
from ragdesk.storage.blobs import LocalBlobStore
from ragdesk.utils.ids import new_id
from ragdesk.utils.time import now_ms

logger = get_logger(__name__)

STAGE_PERCENT: dict[str, int] = {
    "downloading": 0,
    "extracting": 10,
    "chunking": 20,
    "embedding": 30,
    "storing": 95,
}
_EMBEDDING_SPAN = STAGE_PERCENT["storing"] - STAGE_PERCENT["embedding"]
RETRYABLE_STATUSES = frozenset({"pending", "processing", "failed"})


class IngestionController:
    """Coordinate blob download, extraction, chunking, embeddings and persistence.

    Every transition goes through a compare-and-set on ``(status, attempt)``;
    an attempt that loses one of them has been superseded by a retry and stops
    without touching the document again.
    """

    def __init__(
        self,
        documents: DocumentRepository,
        blobs: LocalBlobStore,
        embedder: EmbeddingClient,
        chunker: RecursiveChunker,
        queue: JobQueue,
        batch_size: int = 16,
        extractors: ExtractorRegistry | None = None,
    ) -> None:
        self.documents = documents
        self.blobs = blobs
        self.embedder = embedder
        self.chunker = chunker
        self.queue = queue
        self.batch_size = max(1, batch_size)
        self.extractors = extractors or ExtractorRegistry()

    # Public operations -------------------------------------------------

    def submit(self, document_id: str) -> JobHandle:
        document = self._require(document_id)
        descriptor = JobDescriptor(document_id=document.id, attempt=document.attempt)
        return self.queue.publish(descriptor)

    def retry(self, document_id: str, observed: Document | None = None) -> tuple[Document, JobHandle]:
        """Supersede the current attempt of an unfinished document and start afresh.

        Completed documents keep their chunk set; ``observed`` is the snapshot the caller
        acted on, and the current row is used when it is omitted.
        """
        snapshot = observed or self._require(document_id)
        if snapshot.status not in RETRYABLE_STATUSES:
            raise ValidationError(
                f"Document is {snapshot.status}; only failed, stuck or processing documents can be retried"
            )
        new_attempt = self.documents.reset_for_retry(document_id, snapshot.status, snapshot.attempt)
        if new_attempt is None:
            raise ConcurrencyConflict(
                f"Document {document_id} changed since it was read; reload and try again"
            )
        logger.info(
            "Document reset for retry",
            extra=log_context(document_id=document_id, attempt=new_attempt, previous_status=snapshot.status),
        )
        handle = self.queue.publish(JobDescriptor(document_id=document_id, attempt=new_attempt))
        document = self._require(document_id)
        return document, handle

    def cancel(self, document_id: str) -> tuple[Document, JobHandle]:
        """Abandon the in-flight attempt by restarting from scratch."""
        document = self._require(document_id)
        if not document.in_flight:
            raise ValidationError(f"Document is {document.status}; only pending or processing documents can be cancelled")
        return self.retry(document_id, observed=document)

    def handle_job(self, descriptor: JobDescriptor) -> AttemptOutcome:
        return self.run_attempt(descriptor.document_id, descriptor.attempt)

    def run_attempt(self, document_id: str, attempt: int) -> AttemptOutcome:
        started = time.perf_counter()
        context = log_context(document_id=document_id, attempt=attempt)
        outcome = self._run(document_id, attempt, context)
        elapsed = time.perf_counter() - started
        INGEST_ATTEMPTS.labels(outcome=outcome.value).inc()
        INGEST_DURATION.labels(outcome=outcome.value).observe(elapsed)
        logger.info("Ingestion attempt %s in %.2fs", outcome.value, elapsed, extra=context)
        return outcome

    # Attempt execution -------------------------------------------------

    def _run(self, document_id: str, attempt: int, context: dict[str, Any]) -> AttemptOutcome:
        if not self.documents.claim(document_id, attempt, _progress("downloading")):
            logger.info("Attempt not claimable; already superseded or finished", extra=context)
            return AttemptOutcome.SUPERSEDED
        document = self.documents.get(document_id)
        if document is None:
            return AttemptOutcome.SUPERSEDED

        stage: ProcessingStage = "downloading"
        try:
            data = self.blobs.get(document.storage_path)

            stage = "extracting"
            self._advance(document_id, attempt, _progress(stage))
            extracted = self.extractors.extract(data, document.media_type)

            stage = "chunking"
            self._advance(document_id, attempt, _progress(stage))
            drafts = self.chunker.chunk_extracted(extracted)

            stage = "embedding"
            vectors = self._embed(document_id, attempt, drafts)

            stage = "storing"
            self._advance(document_id, attempt, _progress(stage))
            chunks = [self._to_chunk(document_id, attempt, draft, vector) for draft, vector in zip(drafts, vectors)]
            if not self.documents.complete_attempt(document_id, attempt, chunks):
                raise AttemptSuperseded(document_id, attempt)
        except AttemptSuperseded:
            logger.info("Attempt superseded during %s", stage, extra=context)
            return AttemptOutcome.SUPERSEDED
        except Exception as exc:
            return self._fail(document_id, attempt, stage, exc, context)

        INGEST_CHUNKS.inc(len(chunks))
        logger.info("Document processed into %s chunks", len(chunks), extra=context)
        return AttemptOutcome.COMPLETED

    def _embed(self, document_id: str, attempt: int, drafts: list[ChunkDraft]) -> list[Any]:
        total = len(drafts)
        self._advance(document_id, attempt, _progress("embedding", current=0, total=total))
        vectors: list[Any] = []
        for start in range(0, total, self.batch_size):
            batch = drafts[start : start + self.batch_size]
            vectors.extend(self.embedder.embed_batch([draft.text for draft in batch]))
            done = min(total, start + len(batch))
            percentage = STAGE_PERCENT["embedding"] + (_EMBEDDING_SPAN * done) // total
            self._advance(
                document_id,
                attempt,
                _progress("embedding", percentage=percentage, current=done, total=total),
            )
        return vectors

    def _advance(self, document_id: str, attempt: int, progress: ProcessingProgress) -> None:
        if not self.documents.update_progress(document_id, attempt, progress):
            raise AttemptSuperseded(document_id, attempt)

    def _fail(
        self,
        document_id: str,
        attempt: int,
        stage: str,
        exc: Exception,
        context: dict[str, Any],
    ) -> AttemptOutcome:
        message = exc.message if isinstance(exc, RagDeskError) else str(exc) or type(exc).__name__
        error = {"message": message, "stage": stage, "type": type(exc).__name__}
        if isinstance(exc, RagDeskError):
            logger.warning("Ingestion failed during %s: %s", stage, message, extra=context)
        else:
            logger.exception("Unexpected ingestion failure during %s", stage, extra=context)
        if self.documents.mark_failed(document_id, attempt, error):
            return AttemptOutcome.FAILED
        logger.info("Failure not recorded; attempt was superseded", extra=context)
        return AttemptOutcome.SUPERSEDED

    def _to_chunk(self, document_id: str, attempt: int, draft: ChunkDraft, vector: Any) -> Chunk:
        return Chunk(
            id=new_id("chk"),
            document_id=document_id,
            attempt=attempt,
            index=draft.index,
            content=draft.text,
            embedding=self.embedder.as_bytes(vector),
            embedding_dim=self.embedder.dim,
            token_count=draft.token_count,
            metadata=draft.metadata(),
        )

    def _require(self, document_id: str) -> Document:
        document = self.documents.get(document_id)
        if document is None:
            raise NotFound(f"Document {document_id} not found")
        return document


def _progress(
    stage: ProcessingStage,
    percentage: int | None = None,
    current: int | None = None,
    total: int | None = None,
) -> ProcessingProgress:
    return ProcessingProgress(
        stage=stage,
        percentage=STAGE_PERCENT[stage] if percentage is None else percentage,
        last_updated_at=now_ms(),
        current_chunk=current,
        total_chunks=total,
    )


__all__ = ["IngestionController", "STAGE_PERCENT"]
