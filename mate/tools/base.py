"""Base interface for tools the model may call."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ToolExecutionResult:
    ok: bool
    output: dict[str, Any]


class BaseTool(ABC):
    name: str
    description: str
    input_schema: dict[str, Any]

    def definition(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }

    @abstractmethod
    def execute(self, payload: dict[str, Any]) -> ToolExecutionResult:
        """Run tool with validated payload."""
