"""ID helpers."""

from __future__ import annotations

import secrets
import uuid


def new_id(prefix: str | None = None) -> str:
    """Generate a random UUID4 string with optional prefix."""
    base = uuid.uuid4().hex
    return f"{prefix}_{base}" if prefix else base


def new_session_id() -> str:
    """Opaque, URL-safe chat session identifier."""
    return secrets.token_urlsafe(16)
