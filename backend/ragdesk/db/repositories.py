"""Row-level persistence for documents, chunks, chatbots and conversations."""

from __future__ import annotations

import sqlite3
from typing import Any, Sequence

import orjson

from ragdesk.core.errors import DuplicateDocument
from ragdesk.core.logging import get_logger, log_context
from ragdesk.db.sqlite import SQLiteDatabase
from ragdesk.models.entities import (
    Chatbot,
    Chunk,
    Conversation,
    Document,
    ProcessingProgress,
    Turn,
)
from ragdesk.utils.ids import new_id
from ragdesk.utils.time import ms_to_datetime, now_ms

logger = get_logger(__name__)

_DOCUMENT_COLUMNS = (
    "id, owner_id, display_name, media_type, size_bytes, storage_path, status, attempt, "
    "progress_json, error_json, chunk_count, completed_at, created_at, updated_at"
)
_CHATBOT_COLUMNS = "id, owner_id, name, system_prompt, model, temperature, max_tokens, created_at, updated_at"


def _dumps(value: Any) -> str | None:
    if value is None:
        return None
    return orjson.dumps(value).decode("utf-8")


def _loads(value: str | None) -> Any:
    if not value:
        return None
    return orjson.loads(value)


class DocumentRepository:
    """Documents and their chunk sets.

    Every status change is a conditional ``UPDATE`` keyed on the expected
    status and attempt generation; the boolean/None results tell the caller
    whether its compare-and-set won.
    """

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def create(
        self,
        owner_id: str,
        display_name: str,
        media_type: str,
        size_bytes: int,
        storage_path: str,
        document_id: str | None = None,
    ) -> Document:
        document_id = document_id or new_id("doc")
        now = now_ms()
        try:
            self.db.execute(
                f"""
                INSERT INTO documents ({_DOCUMENT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, 'pending', 0, NULL, NULL, 0, NULL, ?, ?)
                """,
                [document_id, owner_id, display_name, media_type, size_bytes, storage_path, now, now],
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateDocument(display_name) from exc
        created_at = ms_to_datetime(now)
        return Document(
            id=document_id,
            owner_id=owner_id,
            display_name=display_name,
            media_type=media_type,
            size_bytes=size_bytes,
            storage_path=storage_path,
            status="pending",
            attempt=0,
            progress=None,
            error=None,
            chunk_count=0,
            completed_at=None,
            created_at=created_at,
            updated_at=created_at,
        )

    def get(self, document_id: str) -> Document | None:
        row = self.db.query_one(f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?", [document_id])
        return _row_to_document(row) if row else None

    def find_by_name(self, owner_id: str, display_name: str) -> Document | None:
        row = self.db.query_one(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE owner_id = ? AND display_name = ?",
            [owner_id, display_name],
        )
        return _row_to_document(row) if row else None

    def list_for_owner(self, owner_id: str) -> list[Document]:
        rows = self.db.query(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE owner_id = ? ORDER BY created_at DESC, rowid DESC",
            [owner_id],
        )
        return [_row_to_document(row) for row in rows]

    def delete(self, document_id: str) -> bool:
        cursor = self.db.execute("DELETE FROM documents WHERE id = ?", [document_id])
        return cursor.rowcount > 0

    # State transitions -----------------------------------------------

    def reset_for_retry(self, document_id: str, observed_status: str, observed_attempt: int) -> int | None:
        """Move ``(observed_status, observed_attempt)`` to ``(pending, attempt + 1)``.

        Existing chunks are deleted in the same transaction. Returns the new
        attempt generation, or ``None`` when the observed state no longer holds.
        """
        new_attempt = observed_attempt + 1
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                UPDATE documents
                SET status = 'pending', attempt = ?, progress_json = NULL, error_json = NULL,
                    chunk_count = 0, completed_at = NULL, updated_at = ?
                WHERE id = ? AND status = ? AND attempt = ?
                """,
                [new_attempt, now_ms(), document_id, observed_status, observed_attempt],
            )
            if cursor.rowcount != 1:
                return None
            cursor.execute("DELETE FROM chunks WHERE document_id = ?", [document_id])
        return new_attempt

    def claim(self, document_id: str, attempt: int, progress: ProcessingProgress) -> bool:
        """``(pending, attempt) -> (processing, attempt)``, dropping partial writes."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                UPDATE documents
                SET status = 'processing', progress_json = ?, error_json = NULL, updated_at = ?
                WHERE id = ? AND status = 'pending' AND attempt = ?
                """,
                [_dumps(progress.to_dict()), now_ms(), document_id, attempt],
            )
            if cursor.rowcount != 1:
                return False
            cursor.execute("DELETE FROM chunks WHERE document_id = ?", [document_id])
        return True

    def update_progress(self, document_id: str, attempt: int, progress: ProcessingProgress) -> bool:
        cursor = self.db.execute(
            """
            UPDATE documents SET progress_json = ?, updated_at = ?
            WHERE id = ? AND status = 'processing' AND attempt = ?
            """,
            [_dumps(progress.to_dict()), now_ms(), document_id, attempt],
        )
        return cursor.rowcount == 1

    def complete_attempt(self, document_id: str, attempt: int, chunks: Sequence[Chunk]) -> bool:
        """Swap in ``chunks`` and mark the document completed, atomically."""
        now = now_ms()
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                UPDATE documents
                SET status = 'completed', chunk_count = ?, completed_at = ?, progress_json = NULL,
                    error_json = NULL, updated_at = ?
                WHERE id = ? AND status = 'processing' AND attempt = ?
                """,
                [len(chunks), now, now, document_id, attempt],
            )
            if cursor.rowcount != 1:
                return False
            cursor.execute("DELETE FROM chunks WHERE document_id = ?", [document_id])
            cursor.executemany(
                """
                INSERT INTO chunks (
                  id, document_id, attempt, chunk_index, content, embedding, embedding_dim,
                  token_count, metadata_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.id,
                        document_id,
                        attempt,
                        chunk.index,
                        chunk.content,
                        chunk.embedding,
                        chunk.embedding_dim,
                        chunk.token_count,
                        _dumps(chunk.metadata),
                        now,
                    )
                    for chunk in chunks
                ],
            )
        return True

    def mark_failed(self, document_id: str, attempt: int, error: dict[str, Any]) -> bool:
        cursor = self.db.execute(
            """
            UPDATE documents SET status = 'failed', error_json = ?, progress_json = NULL, updated_at = ?
            WHERE id = ? AND status = 'processing' AND attempt = ?
            """,
            [_dumps(error), now_ms(), document_id, attempt],
        )
        if cursor.rowcount != 1:
            return False
        logger.info(
            "Document marked failed",
            extra=log_context(document_id=document_id, attempt=attempt, stage=error.get("stage")),
        )
        return True

    # Chunks ----------------------------------------------------------

    def list_chunks(self, document_id: str) -> list[Chunk]:
        rows = self.db.query(
            """
            SELECT id, document_id, attempt, chunk_index, content, embedding, embedding_dim,
                   token_count, metadata_json
            FROM chunks WHERE document_id = ? ORDER BY chunk_index
            """,
            [document_id],
        )
        return [
            Chunk(
                id=row["id"],
                document_id=row["document_id"],
                attempt=row["attempt"],
                index=row["chunk_index"],
                content=row["content"],
                embedding=row["embedding"],
                embedding_dim=row["embedding_dim"],
                token_count=row["token_count"],
                metadata=_loads(row["metadata_json"]) or {},
            )
            for row in rows
        ]

    def count_chunks(self, document_id: str) -> int:
        row = self.db.query_one("SELECT COUNT(*) AS count FROM chunks WHERE document_id = ?", [document_id])
        return int(row["count"]) if row else 0


class ChatRepository:
    """Chatbots, their knowledge links and persisted conversation turns."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def create_chatbot(
        self,
        owner_id: str,
        name: str,
        system_prompt: str = "",
        model: str | None = None,
        temperature: int = 70,
        max_tokens: int = 2000,
    ) -> Chatbot:
        chatbot_id = new_id("bot")
        now = now_ms()
        self.db.execute(
            f"INSERT INTO chatbots ({_CHATBOT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [chatbot_id, owner_id, name, system_prompt, model, temperature, max_tokens, now, now],
        )
        logger.info("Chatbot created", extra=log_context(chatbot_id=chatbot_id, owner_id=owner_id))
        created_at = ms_to_datetime(now)
        return Chatbot(
            id=chatbot_id,
            owner_id=owner_id,
            name=name,
            system_prompt=system_prompt,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            created_at=created_at,
            updated_at=created_at,
        )

    def get_chatbot(self, chatbot_id: str) -> Chatbot | None:
        row = self.db.query_one(f"SELECT {_CHATBOT_COLUMNS} FROM chatbots WHERE id = ?", [chatbot_id])
        if row is None:
            return None
        return Chatbot(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            system_prompt=row["system_prompt"],
            model=row["model"],
            temperature=row["temperature"],
            max_tokens=row["max_tokens"],
            created_at=ms_to_datetime(row["created_at"]),
            updated_at=ms_to_datetime(row["updated_at"]),
        )

    def delete_chatbot(self, chatbot_id: str) -> bool:
        return self.db.execute("DELETE FROM chatbots WHERE id = ?", [chatbot_id]).rowcount > 0

    def associate(self, chatbot_id: str, document_id: str) -> bool:
        cursor = self.db.execute(
            "INSERT OR IGNORE INTO knowledge_links (chatbot_id, document_id, created_at) VALUES (?, ?, ?)",
            [chatbot_id, document_id, now_ms()],
        )
        return cursor.rowcount == 1

    def dissociate(self, chatbot_id: str, document_id: str) -> bool:
        cursor = self.db.execute(
            "DELETE FROM knowledge_links WHERE chatbot_id = ? AND document_id = ?",
            [chatbot_id, document_id],
        )
        return cursor.rowcount == 1

    def linked_document_ids(self, chatbot_id: str) -> list[str]:
        rows = self.db.query(
            "SELECT document_id FROM knowledge_links WHERE chatbot_id = ? ORDER BY created_at, rowid",
            [chatbot_id],
        )
        return [row["document_id"] for row in rows]

    def find_conversation(self, chatbot_id: str, session_id: str) -> Conversation | None:
        row = self.db.query_one(
            "SELECT id, chatbot_id, session_id, created_at FROM conversations WHERE chatbot_id = ? AND session_id = ?",
            [chatbot_id, session_id],
        )
        if row is None:
            return None
        return Conversation(
            id=row["id"],
            chatbot_id=row["chatbot_id"],
            session_id=row["session_id"],
            created_at=ms_to_datetime(row["created_at"]),
        )

    def recent_turns(self, chatbot_id: str, session_id: str, limit: int) -> list[Turn]:
        """Last ``limit`` turns of a session, oldest first."""
        if limit <= 0:
            return []
        rows = self.db.query(
            """
            SELECT t.id, t.conversation_id, t.role, t.content, t.sources_json, t.latency_ms, t.created_at
            FROM turns t JOIN conversations c ON c.id = t.conversation_id
            WHERE c.chatbot_id = ? AND c.session_id = ?
            ORDER BY t.rowid DESC LIMIT ?
            """,
            [chatbot_id, session_id, limit],
        )
        return [_row_to_turn(row) for row in reversed(rows)]

    def list_turns(self, chatbot_id: str, session_id: str) -> list[Turn]:
        rows = self.db.query(
            """
            SELECT t.id, t.conversation_id, t.role, t.content, t.sources_json, t.latency_ms, t.created_at
            FROM turns t JOIN conversations c ON c.id = t.conversation_id
            WHERE c.chatbot_id = ? AND c.session_id = ?
            ORDER BY t.rowid
            """,
            [chatbot_id, session_id],
        )
        return [_row_to_turn(row) for row in rows]

    def persist_exchange(
        self,
        chatbot_id: str,
        session_id: str,
        user_content: str,
        assistant_content: str,
        sources: list[dict[str, Any]],
        latency_ms: int,
    ) -> str:
        """Store the user turn and the assistant reply together; returns the conversation id."""
        now = now_ms()
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT OR IGNORE INTO conversations (id, chatbot_id, session_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [new_id("conv"), chatbot_id, session_id, now, now],
            )
            row = cursor.execute(
                "SELECT id FROM conversations WHERE chatbot_id = ? AND session_id = ?",
                [chatbot_id, session_id],
            ).fetchone()
            conversation_id = row["id"]
            cursor.executemany(
                """
                INSERT INTO turns (id, conversation_id, role, content, sources_json, latency_ms, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (new_id("turn"), conversation_id, "user", user_content, None, None, now),
                    (new_id("turn"), conversation_id, "assistant", assistant_content, _dumps(sources), latency_ms, now),
                ],
            )
            cursor.execute("UPDATE conversations SET updated_at = ? WHERE id = ?", [now, conversation_id])
        return conversation_id


def _row_to_document(row: sqlite3.Row) -> Document:
    progress = _loads(row["progress_json"])
    return Document(
        id=row["id"],
        owner_id=row["owner_id"],
        display_name=row["display_name"],
        media_type=row["media_type"],
        size_bytes=row["size_bytes"],
        storage_path=row["storage_path"],
        status=row["status"],
        attempt=row["attempt"],
        progress=ProcessingProgress.from_dict(progress) if progress else None,
        error=_loads(row["error_json"]),
        chunk_count=row["chunk_count"],
        completed_at=ms_to_datetime(row["completed_at"]),
        created_at=ms_to_datetime(row["created_at"]),
        updated_at=ms_to_datetime(row["updated_at"]),
    )


def _row_to_turn(row: sqlite3.Row) -> Turn:
    return Turn(
        id=row["id"],
        conversation_id=row["conversation_id"],
        role=row["role"],
        content=row["content"],
        sources=_loads(row["sources_json"]),
        latency_ms=row["latency_ms"],
        created_at=ms_to_datetime(row["created_at"]),
    )


__all__ = ["DocumentRepository", "ChatRepository"]
