"""Map ragdesk errors onto JSON HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ragdesk.core.errors import RagDeskError
from ragdesk.core.logging import get_logger

logger = get_logger(__name__)


async def ragdesk_exception_handler(request: Request, exc: RagDeskError) -> JSONResponse:
    """Return ``{"detail": message}`` with the status code the error class declares."""
    path = request.url.path if request.url else ""
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, path, exc.message)
    else:
        logger.debug("%s on %s: %s", type(exc).__name__, path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RagDeskError, ragdesk_exception_handler)


__all__ = ["register_exception_handlers", "ragdesk_exception_handler"]
