"""Tool registry bound to one user, with audited execution."""

from __future__ import annotations

from typing import Any

import structlog

from mate.security.audit import AuditLog
from mate.tools.base import BaseTool, ToolExecutionResult

logger = structlog.get_logger()


class ToolRegistry:
    def __init__(self, user_id: str, audit: AuditLog | None = None) -> None:
        self._user_id = user_id
        self._audit = audit
        self._tools: dict[str, BaseTool] = {}

    @property
    def user_id(self) -> str:
        return self._user_id

    def register(self, tool: BaseTool) -> None:
        self._tools[tool.name] = tool

    def count(self) -> int:
        return len(self._tools)

    def list_tools(self) -> list[str]:
        return sorted(self._tools.keys())

    def definitions(self) -> list[dict[str, Any]]:
        return [self._tools[name].definition() for name in self.list_tools()]

    def _missing_fields(self, tool: BaseTool, payload: dict[str, Any]) -> list[str]:
        required = tool.input_schema.get("required") or []
        return [name for name in required if not str(payload.get(name) or "").strip()]

    def execute(self, tool_name: str, payload: dict[str, Any]) -> ToolExecutionResult:
        tool = self._tools.get(tool_name)
        if tool is None:
            return ToolExecutionResult(ok=False, output={"error": f"Unknown tool: {tool_name}"})
        if not isinstance(payload, dict):
            return ToolExecutionResult(ok=False, output={"error": "Tool input must be an object"})
        missing = self._missing_fields(tool, payload)
        if missing:
            return ToolExecutionResult(
                ok=False,
                output={"error": f"Missing required field(s): {', '.join(missing)}"},
            )

        try:
            result = tool.execute(payload)
        except Exception as exc:
            logger.error("tool_failed", tool=tool_name, user_id=self._user_id, error_type=type(exc).__name__)
            result = ToolExecutionResult(ok=False, output={"error": f"Tool {tool_name} failed"})
        logger.info("tool_executed", tool=tool_name, user_id=self._user_id, ok=result.ok)
        if self._audit is not None:
            self._audit.record(
                "tool_executed",
                self._user_id,
                {"tool_name": tool_name, "payload": payload, "ok": result.ok},
            )
        return result
