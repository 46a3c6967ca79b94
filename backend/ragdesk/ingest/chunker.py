"""Chunking utilities."""

from __future__ import annotations

import math
import re
from typing import Callable, Sequence

import tiktoken

from ragdesk.core.errors import EmptyContent
from ragdesk.core.logging import get_logger
from ragdesk.ingest.types import ChunkDraft, ExtractedText

logger = get_logger(__name__)

DEFAULT_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ".", " ", "")
CHARS_PER_TOKEN = 4


class TokenCounter:
    """Counts tokens with a tiktoken encoding, or estimates when none is loaded."""

    def __init__(self, encoding: tiktoken.Encoding | None = None) -> None:
        self.encoding = encoding

    @property
    def exact(self) -> bool:
        return self.encoding is not None

    def count(self, text: str) -> int:
        if self.encoding is not None:
            return len(self.encoding.encode(text, disallowed_special=()))
        return math.ceil(len(text) / CHARS_PER_TOKEN)


def load_token_counter(model: str | None) -> TokenCounter:
    """Build the process-wide counter; failures degrade to the length estimate."""
    if not model:
        return TokenCounter()
    try:
        try:
            encoding = tiktoken.encoding_for_model(model)
        except KeyError:
            encoding = tiktoken.get_encoding("cl100k_base")
    except Exception as exc:
        logger.warning("Tokenizer for %s unavailable, estimating token counts: %s", model, exc)
        return TokenCounter()
    logger.info("Loaded tokenizer %s for %s", encoding.name, model)
    return TokenCounter(encoding)


class RecursiveChunker:
    """Split text on progressively finer separators and merge pieces with overlap.

    Pieces keep their separator as a prefix, are merged up to ``chunk_size``
    characters, and consecutive chunks share up to ``chunk_overlap`` characters
    of trailing pieces.
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        token_counter: TokenCounter | None = None,
        separators: Sequence[str] = DEFAULT_SEPARATORS,
    ) -> None:
        if chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.token_counter = token_counter or TokenCounter()
        self.separators = list(separators)

    def chunk(self, text: str, page_for: Callable[[int], int | None] | None = None) -> list[ChunkDraft]:
        if not text.strip():
            raise EmptyContent("Document has no text to chunk")
        drafts: list[ChunkDraft] = []
        index = 0
        previous_len = 0
        for piece in self.split_text(text):
            offset = max(0, index + previous_len - self.chunk_overlap)
            found = text.find(piece, offset)
            if found < 0:
                found = text.find(piece)
            index = found if found >= 0 else index
            previous_len = len(piece)
            drafts.append(
                ChunkDraft(
                    index=len(drafts),
                    text=piece,
                    token_count=self.token_counter.count(piece),
                    start_char=index,
                    end_char=index + len(piece),
                    page=page_for(index) if page_for else None,
                )
            )
        if not drafts:
            raise EmptyContent("Document has no text to chunk")
        return drafts

    def chunk_extracted(self, extracted: ExtractedText) -> list[ChunkDraft]:
        page_for = extracted.page_for if extracted.page_offsets else None
        return self.chunk(extracted.text, page_for=page_for)

    def split_text(self, text: str) -> list[str]:
        return self._split(text, self.separators)

    def _split(self, text: str, separators: Sequence[str]) -> list[str]:
        separator = separators[-1]
        remaining: Sequence[str] = ()
        for position, candidate in enumerate(separators):
            if candidate == "":
                separator = candidate
                break
            if candidate in text:
                separator = candidate
                remaining = separators[position + 1 :]
                break

        chunks: list[str] = []
        pending: list[str] = []
        for piece in _split_keeping_separator(text, separator):
            if len(piece) < self.chunk_size:
                pending.append(piece)
                continue
            if pending:
                chunks.extend(self._merge(pending))
                pending = []
            if remaining:
                chunks.extend(self._split(piece, remaining))
            else:
                chunks.append(piece)
        if pending:
            chunks.extend(self._merge(pending))
        return chunks

    def _merge(self, pieces: Sequence[str]) -> list[str]:
        merged: list[str] = []
        window: list[str] = []
        total = 0
        for piece in pieces:
            length = len(piece)
            if total + length > self.chunk_size and window:
                joined = "".join(window).strip()
                if joined:
                    merged.append(joined)
                while total > self.chunk_overlap or (total + length > self.chunk_size and total > 0):
                    total -= len(window[0])
                    window = window[1:]
            window.append(piece)
            total += length
        joined = "".join(window).strip()
        if joined:
            merged.append(joined)
        return merged


def _split_keeping_separator(text: str, separator: str) -> list[str]:
    if not separator:
        return list(text)
    parts = re.split(f"({re.escape(separator)})", text)
    pieces = [parts[0]] + [parts[i] + parts[i + 1] for i in range(1, len(parts) - 1, 2)]
    return [piece for piece in pieces if piece]


def chunk_text(
    text: str,
    chunk_size: int = 1000,
    chunk_overlap: int = 200,
    token_counter: TokenCounter | None = None,
) -> list[ChunkDraft]:
    """Convenience wrapper around :class:`RecursiveChunker`."""
    return RecursiveChunker(chunk_size, chunk_overlap, token_counter).chunk(text)


__all__ = [
    "DEFAULT_SEPARATORS",
    "TokenCounter",
    "load_token_counter",
    "RecursiveChunker",
    "chunk_text",
]
