"""Embedding clients."""

from __future__ import annotations

import hashlib
import re
from typing import Sequence

import numpy as np
import openai
from openai import OpenAI

from ragdesk.core.config import Settings
from ragdesk.core.errors import ProviderError, ProviderUnavailable
from ragdesk.core.logging import get_logger

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")


class EmbeddingClient:
    """Common embedding interface: order-preserving, all-or-nothing batches."""

    model: str = ""

    def __init__(self, dim: int) -> None:
        self._dim = dim

    @property
    def dim(self) -> int:
        return self._dim

    def embed(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> list[np.ndarray]:  # pragma: no cover - interface
        raise NotImplementedError

    @staticmethod
    def as_bytes(vector: np.ndarray) -> bytes:
        return np.asarray(vector, dtype=np.float32).tobytes()

    @staticmethod
    def from_bytes(blob: bytes) -> np.ndarray:
        return np.frombuffer(blob, dtype=np.float32)


class HashedEmbeddingClient(EmbeddingClient):
    """Deterministic bag-of-words hashing; needs no network and no credentials."""

    def __init__(self, dim: int = 384, model: str = "hashed") -> None:
        super().__init__(dim)
        self.model = model

    def embed_batch(self, texts: Sequence[str]) -> list[np.ndarray]:
        vectors: list[np.ndarray] = []
        for text in texts:
            vector = np.zeros(self._dim, dtype=np.float32)
            for token in _tokenize(text):
                vector[_hash_token(token, self._dim)] += 1.0
            norm = float(np.linalg.norm(vector))
            if norm > 0:
                vector /= norm
            vectors.append(vector)
        return vectors


class OpenAIEmbeddingClient(EmbeddingClient):
    """Embeddings from an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "text-embedding-3-small",
        dim: int = 1536,
        base_url: str | None = None,
        timeout: float = 60.0,
    ) -> None:
        super().__init__(dim)
        self.model = model
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._client: OpenAI | None = None

    def _get_client(self) -> OpenAI:
        if not self._api_key:
            raise ProviderUnavailable("No embedding API key configured")
        if self._client is None:
            self._client = OpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=self._timeout,
                max_retries=0,
            )
        return self._client

    def embed_batch(self, texts: Sequence[str]) -> list[np.ndarray]:
        if not texts:
            return []
        client = self._get_client()
        try:
            response = client.embeddings.create(model=self.model, input=list(texts))
        except openai.OpenAIError as exc:
            raise ProviderError(f"Embedding request failed: {exc}") from exc

        data = sorted(response.data or [], key=lambda item: item.index)
        if len(data) != len(texts):
            raise ProviderError(f"Embedding provider returned {len(data)} vectors for {len(texts)} inputs")
        vectors: list[np.ndarray] = []
        for item in data:
            vector = np.asarray(item.embedding, dtype=np.float32)
            if vector.ndim != 1 or vector.shape[0] != self._dim:
                raise ProviderError(
                    f"Embedding provider returned a vector of shape {vector.shape}, expected ({self._dim},)"
                )
            vectors.append(vector)
        return vectors


def build_embedding_client(settings: Settings) -> EmbeddingClient:
    if settings.embedding_provider == "hashed":
        return HashedEmbeddingClient(dim=settings.embedding_dim)
    return OpenAIEmbeddingClient(
        api_key=settings.embedding_api_key,
        model=settings.embedding_model,
        dim=settings.embedding_dim,
        base_url=settings.embedding_base_url,
        timeout=settings.provider_timeout_seconds,
    )


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dim


__all__ = [
    "EmbeddingClient",
    "HashedEmbeddingClient",
    "OpenAIEmbeddingClient",
    "build_embedding_client",
]
