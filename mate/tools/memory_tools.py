"""Long-term memory operations exposed to the model as tools."""

from __future__ import annotations

from abc import abstractmethod
from typing import Any

from mate.memory.longterm import LongTermMemoryStore, MemoryFile, StorageError
from mate.security.audit import AuditLog
from mate.tools.base import BaseTool, ToolExecutionResult
from mate.tools.registry import ToolRegistry

_FILE_PROPERTY = {
    "type": "string",
    "enum": [f.value for f in MemoryFile],
    "description": "Which record: 'about' for identity facts, 'preferences' for likes and settings.",
}
_DATE_PROPERTY = {"type": "string", "description": "Date as YYYY-MM-DD. Defaults to today."}


class _MemoryTool(BaseTool):
    def __init__(self, store: LongTermMemoryStore, user_id: str) -> None:
        self._store = store
        self._user_id = user_id

    def execute(self, payload: dict[str, Any]) -> ToolExecutionResult:
        try:
            return ToolExecutionResult(ok=True, output=self._run(payload))
        except (ValueError, StorageError) as exc:
            return ToolExecutionResult(ok=False, output={"error": str(exc)})

    @abstractmethod
    def _run(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Tool body; ValueError and StorageError become failed results."""


class RememberTool(_MemoryTool):
    name = "remember"
    description = "Store or update a fact about the user (name, location, work, preferences)."
    input_schema = {
        "type": "object",
        "properties": {
            "key": {"type": "string", "description": "Field name, e.g. Name or Favorite food."},
            "value": {"type": "string"},
            "file": _FILE_PROPERTY,
        },
        "required": ["key", "value"],
    }

    def _run(self, payload: dict[str, Any]) -> dict[str, Any]:
        message = self._store.remember(
            self._user_id,
            str(payload["key"]),
            str(payload["value"]),
            payload.get("file") or MemoryFile.ABOUT,
        )
        return {"message": message}


class RecallTool(_MemoryTool):
    name = "recall"
    description = "Look up a stored fact about the user by field name."
    input_schema = {
        "type": "object",
        "properties": {"key": {"type": "string"}, "file": _FILE_PROPERTY},
        "required": ["key"],
    }

    def _run(self, payload: dict[str, Any]) -> dict[str, Any]:
        fact = self._store.recall(self._user_id, str(payload["key"]), payload.get("file"))
        if fact is None:
            return {"found": False, "key": payload["key"]}
        return {"found": True, "key": fact.key, "value": fact.value, "file": fact.file.value}


class ForgetTool(_MemoryTool):
    name = "forget"
    description = "Remove a stored fact about the user."
    input_schema = RecallTool.input_schema

    def _run(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"message": self._store.forget(self._user_id, str(payload["key"]), payload.get("file"))}


class AddNoteTool(_MemoryTool):
    name = "add_note"
    description = "Save a note on a topic, replacing any earlier note with the same topic."
    input_schema = {
        "type": "object",
        "properties": {"topic": {"type": "string"}, "content": {"type": "string"}},
        "required": ["topic", "content"],
    }

    def _run(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"message": self._store.add_note(self._user_id, str(payload["topic"]), str(payload["content"]))}


class GetNoteTool(_MemoryTool):
    name = "get_note"
    description = "Read the note saved on a topic."
    input_schema = {
        "type": "object",
        "properties": {"topic": {"type": "string"}},
        "required": ["topic"],
    }

    def _run(self, payload: dict[str, Any]) -> dict[str, Any]:
        content = self._store.get_note(self._user_id, str(payload["topic"]))
        return {"found": content is not None, "content": content or ""}


class ListNotesTool(_MemoryTool):
    name = "list_notes"
    description = "List the topics of all saved notes."
    input_schema = {"type": "object", "properties": {}}

    def _run(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"notes": self._store.list_notes(self._user_id)}


class DeleteNoteTool(_MemoryTool):
    name = "delete_note"
    description = "Delete the note saved on a topic."
    input_schema = GetNoteTool.input_schema

    def _run(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"deleted": self._store.delete_note(self._user_id, str(payload["topic"]))}


class AddJournalEntryTool(_MemoryTool):
    name = "add_journal_entry"
    description = "Append a time-stamped entry to the user's daily journal."
    input_schema = {
        "type": "object",
        "properties": {"content": {"type": "string"}, "date": _DATE_PROPERTY},
        "required": ["content"],
    }

    def _run(self, payload: dict[str, Any]) -> dict[str, Any]:
        day = self._store.add_journal_entry(self._user_id, str(payload["content"]), payload.get("date"))
        return {"message": f"Journal entry added for {day}"}


class GetJournalEntryTool(_MemoryTool):
    name = "get_journal_entry"
    description = "Read the journal for a day."
    input_schema = {"type": "object", "properties": {"date": _DATE_PROPERTY}}

    def _run(self, payload: dict[str, Any]) -> dict[str, Any]:
        content = self._store.get_journal_entry(self._user_id, payload.get("date"))
        return {"found": content is not None, "content": content or ""}


MEMORY_TOOLS: tuple[type[_MemoryTool], ...] = (
    RememberTool,
    RecallTool,
    ForgetTool,
    AddNoteTool,
    GetNoteTool,
    ListNotesTool,
    DeleteNoteTool,
    AddJournalEntryTool,
    GetJournalEntryTool,
)


def build_memory_registry(
    store: LongTermMemoryStore,
    user_id: str,
    audit: AuditLog | None = None,
) -> ToolRegistry:
    registry = ToolRegistry(user_id, audit=audit)
    for tool_cls in MEMORY_TOOLS:
        registry.register(tool_cls(store, user_id))
    return registry
