"""Append-only durable log of conversation messages, keyed by user."""

from __future__ import annotations

import sqlite3
from typing import Any


class ConversationLog:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def append(self, *, user_id: str, role: str, content: str, created_at: str) -> int:
        cursor = self._conn.execute(
            """
            INSERT INTO conversation_messages (user_id, role, content, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (user_id, role, content, created_at),
        )
        self._conn.commit()
        return int(cursor.lastrowid)

    def latest(self, user_id: str, *, limit: int = 100) -> list[dict[str, Any]]:
        """Return the last `limit` messages for a user, oldest first."""
        rows = self._conn.execute(
            """
            SELECT id, user_id, role, content, created_at
            FROM conversation_messages
            WHERE user_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (user_id, limit),
        ).fetchall()
        return [dict(row) for row in reversed(rows)]

    def count(self, user_id: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) AS n FROM conversation_messages WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        return int(row["n"]) if row else 0

    def delete_user(self, user_id: str) -> int:
        cursor = self._conn.execute(
            "DELETE FROM conversation_messages WHERE user_id = ?",
            (user_id,),
        )
        self._conn.commit()
        return cursor.rowcount
