"""Exact cosine ranking over stored chunk vectors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np


@dataclass(slots=True)
class SearchResult:
    position: int
    distance: float

    @property
    def similarity(self) -> float:
        return float(min(1.0, max(-1.0, 1.0 - self.distance)))


class VectorIndex:
    """In-memory matrix of vectors searched by cosine distance.

    Rows keep insertion order, which also breaks distance ties.
    """

    def __init__(self, dim: int) -> None:
        self.dim = dim
        self._rows: list[np.ndarray] = []

    @property
    def size(self) -> int:
        return len(self._rows)

    def add(self, vector: np.ndarray) -> int:
        vector = np.asarray(vector, dtype=np.float32)
        if vector.shape != (self.dim,):
            raise ValueError("Vector dimension mismatch")
        self._rows.append(vector)
        return len(self._rows) - 1

    def extend(self, vectors: Sequence[np.ndarray]) -> None:
        for vector in vectors:
            self.add(vector)

    def search(self, query: np.ndarray, top_k: int) -> list[SearchResult]:
        if not self._rows or top_k <= 0:
            return []
        query = np.asarray(query, dtype=np.float32)
        if query.shape != (self.dim,):
            raise ValueError("Query vector dimension mismatch")
        distances = cosine_distances(np.vstack(self._rows), query)
        order = np.argsort(distances, kind="stable")[:top_k]
        return [SearchResult(position=int(idx), distance=float(distances[idx])) for idx in order]


def cosine_distances(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """``1 - cos(row, query)`` per row; zero vectors are treated as orthogonal."""
    matrix = matrix.astype(np.float64, copy=False)
    query = query.astype(np.float64, copy=False)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    cosine = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
    return 1.0 - np.clip(cosine, -1.0, 1.0)


__all__ = ["VectorIndex", "SearchResult", "cosine_distances"]
