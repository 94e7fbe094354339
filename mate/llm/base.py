"""Base LLM provider abstraction."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mate.tools.registry import ToolRegistry


class LLMError(Exception):
    """Base LLM error."""


class LLMRateLimitError(LLMError):
    """Rate limit hit."""


class LLMAuthError(LLMError):
    """Authentication failure or missing credentials."""


class LLMTimeoutError(LLMError):
    """Provider did not answer in time."""


@dataclass(frozen=True)
class Completion:
    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMProvider(ABC):
    """Abstract LLM provider interface."""

    provider_name: str = "base"
    supports_thinking: bool = False
    supports_tools: bool = False

    def __init__(self, model: str) -> None:
        self.model = model

    @abstractmethod
    def complete(
        self,
        messages: list[dict[str, str]],
        *,
        system: str | None = None,
        max_tokens: int = 4096,
        thinking_budget: int | None = None,
        tools: "ToolRegistry | None" = None,
    ) -> Completion:
        """Generate a reply.

        Args:
            messages: ``{"role": ..., "content": ...}`` dicts, oldest first.
            system: Optional system prompt.
            max_tokens: Max response tokens.
            thinking_budget: Extended thinking budget; ignored by providers
                that do not support it.
            tools: Registry whose tools the model may call; ignored by
                providers without tool support.

        Returns:
            Completion with the final text (reasoning stripped) and usage.
        """
        ...
