"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Header

from ragdesk.chat.completions import CompletionClient, build_completion_client
from ragdesk.chat.engine import ChatSessionEngine
from ragdesk.core.config import Settings, get_settings
from ragdesk.core.errors import ValidationError
from ragdesk.db.repositories import ChatRepository, DocumentRepository
from ragdesk.db.sqlite import SQLiteDatabase
from ragdesk.ingest.chunker import RecursiveChunker, TokenCounter, load_token_counter
from ragdesk.ingest.documents import DocumentService
from ragdesk.ingest.embeddings import EmbeddingClient, build_embedding_client
from ragdesk.ingest.pipeline import IngestionController
from ragdesk.ingest.queue import InlineJobQueue, JobQueue, WebhookJobQueue
from ragdesk.ingest.workers import IngestionWorkerPool
from ragdesk.retrieval import Retriever
from ragdesk.storage.blobs import LocalBlobStore

_DB: SQLiteDatabase | None = None
_BLOBS: LocalBlobStore | None = None
_EMBEDDER: EmbeddingClient | None = None
_TOKEN_COUNTER: TokenCounter | None = None
_QUEUE: JobQueue | None = None
_CONTROLLER: IngestionController | None = None
_DOCUMENT_SERVICE: DocumentService | None = None
_COMPLETIONS: CompletionClient | None = None
_CHAT_ENGINE: ChatSessionEngine | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        settings = get_app_settings()
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_blob_store() -> LocalBlobStore:
    global _BLOBS
    if _BLOBS is None:
        _BLOBS = LocalBlobStore(get_app_settings().blob_root)
    return _BLOBS


def get_embedding_client() -> EmbeddingClient:
    global _EMBEDDER
    if _EMBEDDER is None:
        _EMBEDDER = build_embedding_client(get_app_settings())
    return _EMBEDDER


def get_token_counter() -> TokenCounter:
    global _TOKEN_COUNTER
    if _TOKEN_COUNTER is None:
        _TOKEN_COUNTER = load_token_counter(get_app_settings().tokenizer_model)
    return _TOKEN_COUNTER


def get_job_queue() -> JobQueue:
    global _QUEUE
    if _QUEUE is None:
        settings = get_app_settings()
        if settings.job_mode == "webhook":
            _QUEUE = WebhookJobQueue(
                queue_url=settings.queue_url,
                token=settings.queue_token,
                worker_url=settings.worker_url,
                retries=settings.queue_retries,
            )
        else:
            _QUEUE = InlineJobQueue(IngestionWorkerPool(max_workers=settings.worker_count))
    return _QUEUE


def get_ingestion_controller() -> IngestionController:
    global _CONTROLLER
    if _CONTROLLER is None:
        settings = get_app_settings()
        queue = get_job_queue()
        controller = IngestionController(
            documents=DocumentRepository(get_database()),
            blobs=get_blob_store(),
            embedder=get_embedding_client(),
            chunker=RecursiveChunker(settings.chunk_size, settings.chunk_overlap, get_token_counter()),
            queue=queue,
            batch_size=settings.embedding_batch_size,
        )
        if isinstance(queue, InlineJobQueue):
            queue.bind(controller.handle_job)
        _CONTROLLER = controller
    return _CONTROLLER


def get_document_service() -> DocumentService:
    global _DOCUMENT_SERVICE
    if _DOCUMENT_SERVICE is None:
        db = get_database()
        _DOCUMENT_SERVICE = DocumentService(
            documents=DocumentRepository(db),
            chats=ChatRepository(db),
            blobs=get_blob_store(),
            controller=get_ingestion_controller(),
            max_file_size_bytes=get_app_settings().max_file_size_bytes,
        )
    return _DOCUMENT_SERVICE


def get_chat_repository() -> ChatRepository:
    return ChatRepository(get_database())


def get_completion_client() -> CompletionClient:
    global _COMPLETIONS
    if _COMPLETIONS is None:
        _COMPLETIONS = build_completion_client(get_app_settings())
    return _COMPLETIONS


def get_chat_engine() -> ChatSessionEngine:
    global _CHAT_ENGINE
    if _CHAT_ENGINE is None:
        settings = get_app_settings()
        db = get_database()
        _CHAT_ENGINE = ChatSessionEngine(
            chats=ChatRepository(db),
            retriever=Retriever(db),
            embedder=get_embedding_client(),
            completions=get_completion_client(),
            default_model=settings.default_model,
            history_limit=settings.history_limit,
            top_k=settings.retrieval_top_k,
        )
    return _CHAT_ENGINE


def get_actor_id(x_actor_id: str | None = Header(default=None)) -> str:
    """Authenticated actor, asserted by the upstream identity layer."""
    if not x_actor_id or not x_actor_id.strip():
        raise ValidationError("Missing X-Actor-Id header")
    return x_actor_id.strip()


def reset_state() -> None:
    """Stop workers, close connections and drop every cached singleton."""
    global _DB, _BLOBS, _EMBEDDER, _TOKEN_COUNTER, _QUEUE, _CONTROLLER
    global _DOCUMENT_SERVICE, _COMPLETIONS, _CHAT_ENGINE
    if _QUEUE is not None:
        _QUEUE.close()
    if _DB is not None:
        _DB.close()
    _DB = None
    _BLOBS = None
    _EMBEDDER = None
    _TOKEN_COUNTER = None
    _QUEUE = None
    _CONTROLLER = None
    _DOCUMENT_SERVICE = None
    _COMPLETIONS = None
    _CHAT_ENGINE = None
    get_app_settings.cache_clear()
    get_settings.cache_clear()


__all__ = [
    "get_app_settings",
    "get_database",
    "get_blob_store",
    "get_embedding_client",
    "get_token_counter",
    "get_job_queue",
    "get_ingestion_controller",
    "get_document_service",
    "get_chat_repository",
    "get_completion_client",
    "get_chat_engine",
    "get_actor_id",
    "reset_state",
]
