"""FastAPI application setup for ragdesk."""

from __future__ import annotations

from fastapi import FastAPI

from ragdesk.api.dependencies import (
    get_app_settings,
    get_chat_engine,
    get_database,
    get_document_service,
    reset_state,
)
from ragdesk.api.errors import register_exception_handlers
from ragdesk.api.routes_admin import router as admin_router
from ragdesk.api.routes_chat import router as chat_router
from ragdesk.api.routes_documents import router as documents_router
from ragdesk.api.routes_jobs import router as jobs_router
from ragdesk.core.logging import configure_logging

configure_logging()

app = FastAPI(
    title="ragdesk",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

register_exception_handlers(app)

app.include_router(documents_router, prefix="/documents", tags=["documents"])
app.include_router(jobs_router, prefix="/jobs", tags=["jobs"])
app.include_router(chat_router, prefix="", tags=["chat"])
app.include_router(admin_router, prefix="", tags=["admin"])


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons on startup."""
    get_app_settings()
    get_database()
    get_document_service()
    get_chat_engine()


@app.on_event("shutdown")
async def shutdown() -> None:
    """Drain the worker pool and close database connections."""
    reset_state()
