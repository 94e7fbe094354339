"""Audit trail for security-relevant actions (access denials, rate limits, tool calls)."""

from __future__ import annotations

import json
import sqlite3
from typing import Any

from mate.logging_config import redact


class AuditLog:
    """Append-only event rows; details are stored as redacted JSON."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def record(self, action: str, user_id: str | None, details: dict[str, Any] | None = None) -> int:
        cursor = self._conn.execute(
            """
            INSERT INTO audit_events (action, user_id, details)
            VALUES (?, ?, ?)
            """,
            (action, user_id, redact(json.dumps(details or {}, ensure_ascii=True, default=str))),
        )
        self._conn.commit()
        return int(cursor.lastrowid)

    def latest(self, limit: int = 50, *, action: str | None = None) -> list[dict[str, Any]]:
        if action is None:
            rows = self._conn.execute(
                """
                SELECT id, action, user_id, details, created_at
                FROM audit_events
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        else:
            rows = self._conn.execute(
                """
                SELECT id, action, user_id, details, created_at
                FROM audit_events
                WHERE action = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (action, limit),
            ).fetchall()

        events: list[dict[str, Any]] = []
        for row in rows:
            event = dict(row)
            event["details"] = json.loads(event["details"])
            events.append(event)
        return events
