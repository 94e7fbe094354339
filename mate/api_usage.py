"""Persistent LLM usage tracking (tokens per user, provider and routing mode)."""

from __future__ import annotations

import sqlite3
from typing import Any

_GROUPINGS = {
    "by_model": ("provider", "model"),
    "by_mode": ("mode",),
}


class ApiUsageStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def record(
        self,
        user_id: str,
        provider: str,
        model: str,
        mode: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
    ) -> None:
        tokens_in = int(input_tokens)
        tokens_out = int(output_tokens)
        self._conn.execute(
            "INSERT INTO api_usage "
            "(user_id, provider, model, mode, input_tokens, output_tokens, total_tokens) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (user_id, provider, model, mode, tokens_in, tokens_out, tokens_in + tokens_out),
        )
        self._conn.commit()

    def _grouped(self, columns: tuple[str, ...], where: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        cols = ", ".join(columns)
        rows = self._conn.execute(
            f"SELECT {cols}, COUNT(*) AS calls, COALESCE(SUM(total_tokens), 0) AS total_tokens "
            f"FROM api_usage {where} GROUP BY {cols} ORDER BY total_tokens DESC",
            params,
        ).fetchall()
        return [dict(row) for row in rows]

    def summary(self, *, user_id: str | None = None) -> dict[str, Any]:
        """Totals for one user, or for everyone when ``user_id`` is None."""
        where, params = ("WHERE user_id = ?", (user_id,)) if user_id is not None else ("", ())
        row = self._conn.execute(
            "SELECT COUNT(*), COALESCE(SUM(input_tokens), 0), COALESCE(SUM(output_tokens), 0) "
            f"FROM api_usage {where}",
            params,
        ).fetchone()
        calls, tokens_in, tokens_out = (int(v) for v in row) if row else (0, 0, 0)
        result: dict[str, Any] = {
            "total_calls": calls,
            "total_input_tokens": tokens_in,
            "total_output_tokens": tokens_out,
            "total_tokens": tokens_in + tokens_out,
        }
        for key, columns in _GROUPINGS.items():
            result[key] = self._grouped(columns, where, params)
        return result
