"""Supervised thread pool running ingestion attempts in-process."""

from __future__ import annotations

import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable

from ragdesk.core.logging import get_logger, log_context
from ragdesk.ingest.types import JobDescriptor

logger = get_logger(__name__)


@dataclass(slots=True)
class JobHandle:
    """Observable reference to a published job.

    Inline jobs carry the pool future; jobs handed to a remote queue only carry
    the queue's message id and cannot be waited on locally.
    """

    descriptor: JobDescriptor
    future: Future | None = None
    message_id: str | None = None

    @property
    def remote(self) -> bool:
        return self.future is None

    def done(self) -> bool:
        return self.future is not None and self.future.done()

    def cancelled(self) -> bool:
        return self.future is not None and self.future.cancelled()

    def cancel(self) -> bool:
        """Cancel the job if it has not started yet."""
        return self.future is not None and self.future.cancel()

    def result(self, timeout: float | None = None) -> Any:
        if self.future is None:
            return None
        return self.future.result(timeout=timeout)


class IngestionWorkerPool:
    """Thread pool that tracks the latest handle per document."""

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ragdesk-ingest")
        self._handles: dict[str, JobHandle] = {}
        self._lock = threading.Lock()
        self._closed = False

    def submit(self, descriptor: JobDescriptor, fn: Callable[[JobDescriptor], Any]) -> JobHandle:
        with self._lock:
            if self._closed:
                raise RuntimeError("Worker pool is shut down")
            previous = self._handles.get(descriptor.document_id)
            if previous is not None and previous.cancel():
                logger.info(
                    "Cancelled queued attempt",
                    extra=log_context(document_id=descriptor.document_id, attempt=previous.descriptor.attempt),
                )
            future = self._executor.submit(fn, descriptor)
            handle = JobHandle(descriptor=descriptor, future=future)
            self._handles[descriptor.document_id] = handle
        future.add_done_callback(lambda fut: self._on_done(handle, fut))
        return handle

    def handle_for(self, document_id: str) -> JobHandle | None:
        with self._lock:
            return self._handles.get(document_id)

    def _on_done(self, handle: JobHandle, future: Future) -> None:
        descriptor = handle.descriptor
        context = log_context(document_id=descriptor.document_id, attempt=descriptor.attempt)
        try:
            outcome = future.result()
        except CancelledError:
            logger.debug("Ingestion job cancelled before start", extra=context)
        except Exception:
            logger.exception("Ingestion job crashed", extra=context)
        else:
            logger.debug("Ingestion job finished: %s", getattr(outcome, "value", outcome), extra=context)
        with self._lock:
            if self._handles.get(descriptor.document_id) is handle:
                del self._handles[descriptor.document_id]

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=True)


__all__ = ["JobHandle", "IngestionWorkerPool"]
