"""Job queues delivering ingestion attempts to a worker."""

from __future__ import annotations

from typing import Any, Callable

import orjson
import requests

from ragdesk.core.errors import JobQueueError
from ragdesk.core.logging import get_logger, log_context
from ragdesk.ingest.types import JobDescriptor
from ragdesk.ingest.workers import IngestionWorkerPool, JobHandle
from ragdesk.utils.hashing import verify_hmac_b64

logger = get_logger(__name__)

JobHandler = Callable[[JobDescriptor], Any]

SIGNATURE_HEADER = "Upstash-Signature"


class JobQueue:
    """Common queue interface."""

    def publish(self, descriptor: JobDescriptor) -> JobHandle:  # pragma: no cover - interface
        raise NotImplementedError

    def close(self) -> None:
        return None


class InlineJobQueue(JobQueue):
    """Run jobs on the in-process worker pool."""

    def __init__(self, pool: IngestionWorkerPool, handler: JobHandler | None = None) -> None:
        self.pool = pool
        self._handler = handler

    def bind(self, handler: JobHandler) -> None:
        self._handler = handler

    def publish(self, descriptor: JobDescriptor) -> JobHandle:
        if self._handler is None:
            raise JobQueueError("No job handler bound to the inline queue")
        handle = self.pool.submit(descriptor, self._handler)
        logger.info(
            "Ingestion job queued inline",
            extra=log_context(document_id=descriptor.document_id, attempt=descriptor.attempt),
        )
        return handle

    def close(self) -> None:
        self.pool.shutdown(wait=True)


class WebhookJobQueue(JobQueue):
    """Publish jobs to a QStash-compatible HTTP queue that calls back the worker URL."""

    def __init__(
        self,
        queue_url: str,
        token: str | None,
        worker_url: str | None,
        retries: int = 3,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.queue_url = queue_url.rstrip("/")
        self.token = token
        self.worker_url = worker_url
        self.retries = retries
        self.timeout = timeout
        self.session = session or requests.Session()

    def publish(self, descriptor: JobDescriptor) -> JobHandle:
        if not self.token or not self.worker_url:
            raise JobQueueError("Job queue token and worker URL must be configured")
        context = log_context(document_id=descriptor.document_id, attempt=descriptor.attempt)
        try:
            response = self.session.post(
                f"{self.queue_url}/v2/publish/{self.worker_url}",
                data=orjson.dumps(descriptor.to_dict()),
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Content-Type": "application/json",
                    "Upstash-Retries": str(self.retries),
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Failed to publish ingestion job: %s", exc, extra=context)
            raise JobQueueError(f"Failed to publish ingestion job: {exc}") from exc
        message_id = _message_id(response)
        logger.info("Ingestion job published", extra={**context, **log_context(message_id=message_id)})
        return JobHandle(descriptor=descriptor, message_id=message_id)

    def close(self) -> None:
        self.session.close()


def _message_id(response: requests.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        return payload.get("messageId")
    return None


def verify_signature(signature: str | None, body: bytes, current_key: str | None, next_key: str | None) -> bool:
    """Accept a body signed with either the current or the next signing key."""
    if not signature:
        return False
    for key in (current_key, next_key):
        if key and verify_hmac_b64(signature, key, body):
            return True
    return False


__all__ = [
    "SIGNATURE_HEADER",
    "JobQueue",
    "InlineJobQueue",
    "WebhookJobQueue",
    "verify_signature",
]
