"""Nearest-chunk retrieval for a chatbot's knowledge scope."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
import orjson

from ragdesk.core.logging import get_logger, log_context
from ragdesk.db.sqlite import SQLiteDatabase
from ragdesk.retrieval.vector_index import VectorIndex

logger = get_logger(__name__)

DEFAULT_TOP_K = 5


@dataclass(slots=True)
class RetrievedChunk:
    document_id: str
    display_name: str
    chunk_index: int
    content: str
    distance: float
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def citation(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "file_name": self.display_name,
            "chunk_index": self.chunk_index,
            "similarity": round(self.similarity, 6),
        }


class Retriever:
    """Rank every chunk of the scope's completed documents by cosine distance."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def retrieve(self, scope_id: str, query_vector: np.ndarray, top_k: int = DEFAULT_TOP_K) -> list[RetrievedChunk]:
        if top_k <= 0:
            return []
        query_vector = np.asarray(query_vector, dtype=np.float32)
        dim = int(query_vector.shape[0])
        rows = self.db.query(
            """
            SELECT c.document_id, d.display_name, c.chunk_index, c.content, c.embedding,
                   c.embedding_dim, c.metadata_json
            FROM chunks c
            JOIN knowledge_links k ON k.document_id = c.document_id
            JOIN documents d ON d.id = c.document_id
            WHERE k.chatbot_id = ? AND d.status = 'completed' AND c.attempt = d.attempt
            ORDER BY c.rowid
            """,
            [scope_id],
        )
        index = VectorIndex(dim)
        candidates: list[Any] = []
        skipped = 0
        for row in rows:
            if row["embedding_dim"] != dim:
                skipped += 1
                continue
            index.add(np.frombuffer(row["embedding"], dtype=np.float32))
            candidates.append(row)
        if skipped:
            logger.warning(
                "Skipped %s chunks embedded with a different dimension", skipped, extra=log_context(scope_id=scope_id)
            )

        results: list[RetrievedChunk] = []
        for hit in index.search(query_vector, top_k):
            row = candidates[hit.position]
            results.append(
                RetrievedChunk(
                    document_id=row["document_id"],
                    display_name=row["display_name"],
                    chunk_index=row["chunk_index"],
                    content=row["content"],
                    distance=hit.distance,
                    similarity=hit.similarity,
                    metadata=orjson.loads(row["metadata_json"]) if row["metadata_json"] else {},
                )
            )
        logger.debug(
            "Retrieved %s of %s candidate chunks", len(results), len(candidates), extra=log_context(scope_id=scope_id)
        )
        return results


__all__ = ["Retriever", "RetrievedChunk", "DEFAULT_TOP_K"]
