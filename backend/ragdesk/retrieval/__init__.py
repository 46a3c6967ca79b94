"""Retrieval and context assembly components."""

from .context import build_context, build_system_prompt, dedupe_citations
from .retriever import DEFAULT_TOP_K, RetrievedChunk, Retriever
from .vector_index import VectorIndex

__all__ = [
    "Retriever",
    "RetrievedChunk",
    "DEFAULT_TOP_K",
    "VectorIndex",
    "build_context",
    "build_system_prompt",
    "dedupe_citations",
]
