"""SQLite-backed repository for conversations and messages."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

MessageRecord = dict[str, Any]
ConversationRecord = dict[str, Any]

MESSAGE_ROLES = ("user", "assistant")


def _normalize_db_timestamp(value: str | None) -> str | None:
    """Convert SQLite timestamp strings to ISO8601 in UTC."""

    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.isoformat()


def _conversation_from_row(row: aiosqlite.Row) -> ConversationRecord:
    return {
        "id": int(row["id"]),
        "user_id": row["user_id"],
        "is_active": bool(row["is_active"]),
        "created_at": _normalize_db_timestamp(row["created_at"]),
    }


class ChatRepository:
    """Persist per-user conversations and their messages."""

    def __init__(self, database_path: Path):
        self._path = database_path
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the SQLite connection and ensure tables exist."""

        if self._connection is not None:
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA foreign_keys=ON;")
        await self._create_schema()

    async def _create_schema(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id INTEGER NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
                role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
                content TEXT NOT NULL,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP
            );

            -- At most one active conversation per user
            CREATE UNIQUE INDEX IF NOT EXISTS idx_conversations_active_user
                ON conversations(user_id) WHERE is_active = 1;
            CREATE INDEX IF NOT EXISTS idx_conversations_user_id ON conversations(user_id);
            CREATE INDEX IF NOT EXISTS idx_messages_conversation_id ON messages(conversation_id);
            """
        )
        await self._connection.commit()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def get_active_conversation(self, user_id: str) -> ConversationRecord | None:
        """Return the user's active conversation, if any."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            SELECT id, user_id, is_active, created_at
            FROM conversations
            WHERE user_id = ? AND is_active = 1
            ORDER BY id DESC
            LIMIT 1
            """,
            (user_id,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            return None
        return _conversation_from_row(row)

    async def get_or_create_active_conversation(
        self, user_id: str
    ) -> ConversationRecord:
        """Return the active conversation, creating one lazily."""

        existing = await self.get_active_conversation(user_id)
        if existing is not None:
            return existing

        try:
            return await self._insert_conversation(user_id)
        except sqlite3.IntegrityError:
            # A concurrent request created it first.
            existing = await self.get_active_conversation(user_id)
            if existing is None:  # pragma: no cover - defensive
                raise
            return existing

    async def start_new_conversation(self, user_id: str) -> ConversationRecord:
        """Deactivate the current conversation and create a fresh one."""

        assert self._connection is not None
        await self._connection.execute(
            "UPDATE conversations SET is_active = 0 WHERE user_id = ? AND is_active = 1",
            (user_id,),
        )
        await self._connection.commit()
        return await self._insert_conversation(user_id)

    async def clear_conversations(self, user_id: str) -> int:
        """Delete every conversation (and its messages) owned by the user."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            "DELETE FROM conversations WHERE user_id = ?",
            (user_id,),
        )
        await self._connection.commit()
        try:
            return cursor.rowcount
        finally:
            await cursor.close()

    async def _insert_conversation(self, user_id: str) -> ConversationRecord:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "INSERT INTO conversations(user_id) VALUES (?)",
            (user_id,),
        )
        await self._connection.commit()
        try:
            inserted_id = cursor.lastrowid
        finally:
            await cursor.close()
        if inserted_id is None:  # pragma: no cover - defensive
            raise RuntimeError("Insert failed: lastrowid is None")

        row_cursor = await self._connection.execute(
            "SELECT id, user_id, is_active, created_at FROM conversations WHERE id = ?",
            (inserted_id,),
        )
        row = await row_cursor.fetchone()
        await row_cursor.close()
        assert row is not None
        return _conversation_from_row(row)

    async def add_message(
        self,
        conversation_id: int,
        role: str,
        content: str,
    ) -> tuple[int, str | None]:
        """Persist a single chat message and return its id and timestamp."""

        assert self._connection is not None
        if role not in MESSAGE_ROLES:
            raise ValueError(f"Unsupported message role: {role!r}")

        cursor = await self._connection.execute(
            "INSERT INTO messages(conversation_id, role, content) VALUES (?, ?, ?)",
            (conversation_id, role, content),
        )
        await self._connection.commit()
        try:
            inserted_id = cursor.lastrowid
        finally:
            await cursor.close()
        if inserted_id is None:  # pragma: no cover - defensive
            raise RuntimeError("Insert failed: lastrowid is None")
        timestamp_cursor = await self._connection.execute(
            "SELECT created_at FROM messages WHERE id = ?",
            (inserted_id,),
        )
        timestamp_row = await timestamp_cursor.fetchone()
        await timestamp_cursor.close()
        created_at: str | None = None
        if timestamp_row is not None:
            created_at = _normalize_db_timestamp(timestamp_row["created_at"])
        return int(inserted_id), created_at

    async def get_messages(
        self, conversation_id: int, limit: int
    ) -> list[MessageRecord]:
        """Return the newest ``limit`` messages, oldest first."""

        assert self._connection is not None
        if limit <= 0:
            return []
        cursor = await self._connection.execute(
            """
            SELECT id, role, content, created_at
            FROM (
                SELECT id, role, content, created_at
                FROM messages
                WHERE conversation_id = ?
                ORDER BY id DESC
                LIMIT ?
            )
            ORDER BY id ASC
            """,
            (conversation_id, limit),
        )
        rows = await cursor.fetchall()
        await cursor.close()

        return [
            {
                "id": int(row["id"]),
                "role": row["role"],
                "content": row["content"],
                "created_at": _normalize_db_timestamp(row["created_at"]),
            }
            for row in rows
        ]

    async def count_messages(self, conversation_id: int) -> int:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "SELECT COUNT(*) FROM messages WHERE conversation_id = ?",
            (conversation_id,),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return int(row[0]) if row is not None else 0


__all__ = ["ChatRepository", "ConversationRecord", "MessageRecord"]
