"""Grounded context assembly and citation handling."""

from __future__ import annotations

from typing import Any, Sequence

from ragdesk.retrieval.retriever import RetrievedChunk

CONTEXT_HEADER = "Relevant context from uploaded documents:"
BLOCK_SEPARATOR = "\n\n---\n\n"


def build_context(results: Sequence[RetrievedChunk]) -> str:
    """Render numbered, source-tagged blocks; empty string when nothing was retrieved."""
    if not results:
        return ""
    blocks = [
        f"[{number}] [Source: {result.display_name} - Part {result.chunk_index + 1}]\n{result.content}"
        for number, result in enumerate(results, start=1)
    ]
    return f"{CONTEXT_HEADER}\n\n{BLOCK_SEPARATOR.join(blocks)}"


def build_system_prompt(instructions: str, results: Sequence[RetrievedChunk]) -> str:
    context = build_context(results)
    if not context:
        return instructions
    if not instructions:
        return context
    return f"{context}\n\n{instructions}"


def dedupe_citations(results: Sequence[RetrievedChunk]) -> list[dict[str, Any]]:
    """One citation per document, keeping its best-scoring chunk."""
    best: dict[str, RetrievedChunk] = {}
    for result in results:
        current = best.get(result.document_id)
        if current is None or result.similarity > current.similarity:
            best[result.document_id] = result
    ordered = sorted(best.values(), key=lambda item: item.similarity, reverse=True)
    return [item.citation() for item in ordered]


__all__ = ["build_context", "build_system_prompt", "dedupe_citations"]
