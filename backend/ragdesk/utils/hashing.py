"""Hashing and signing utilities."""

from __future__ import annotations

import base64
import hashlib
import hmac


def hmac_sha256_b64(key: str, body: bytes) -> str:
    """Base64 encoded HMAC-SHA256 of ``body``."""
    digest = hmac.new(key.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_hmac_b64(signature: str, key: str, body: bytes) -> bool:
    """Constant-time comparison of a base64 HMAC signature."""
    expected = hmac_sha256_b64(key, body)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("ascii", "ignore"))
