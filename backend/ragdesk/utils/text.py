"""Text processing helpers."""

from __future__ import annotations

import re

# NUL cannot be stored in most text columns; other C0 controls (minus tab/newlines) become spaces.
_NUL_RE = re.compile("\x00")
_CONTROL_RE = re.compile("[\x01-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize(text: str) -> str:
    """Drop NUL bytes, blank out control characters and strip."""
    text = _NUL_RE.sub("", text)
    return _CONTROL_RE.sub(" ", text).strip()
