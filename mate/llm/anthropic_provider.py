"""Claude (Anthropic) provider with extended thinking and a tool-use loop."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import anthropic
import structlog

from mate.llm.base import Completion, LLMAuthError, LLMError, LLMProvider, LLMRateLimitError, LLMTimeoutError

if TYPE_CHECKING:
    from mate.tools.registry import ToolRegistry

logger = structlog.get_logger()

DEFAULT_MODEL = "claude-sonnet-4-20250514"
MAX_TOOL_ROUNDS = 8


class AnthropicProvider(LLMProvider):
    provider_name = "anthropic"
    supports_thinking = True
    supports_tools = True

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        *,
        timeout: float | None = None,
        client: Any = None,
    ) -> None:
        super().__init__(model or DEFAULT_MODEL)
        if client is not None:
            self.client = client
            return
        if not api_key:
            raise LLMAuthError("Missing Anthropic API key")
        kwargs: dict[str, Any] = {"api_key": api_key}
        if timeout is not None:
            kwargs["timeout"] = timeout
        self.client = anthropic.Anthropic(**kwargs)

    def _handle_error(self, e: Exception) -> LLMError:
        if isinstance(e, anthropic.AuthenticationError):
            return LLMAuthError(f"Claude auth failed: {e}")
        if isinstance(e, anthropic.RateLimitError):
            return LLMRateLimitError(f"Claude rate limit: {e}")
        if isinstance(e, anthropic.APITimeoutError):
            return LLMTimeoutError(f"Claude timed out: {e}")
        return LLMError(f"Claude API error: {e}")

    def complete(
        self,
        messages: list[dict[str, str]],
        *,
        system: str | None = None,
        max_tokens: int = 4096,
        thinking_budget: int | None = None,
        tools: "ToolRegistry | None" = None,
    ) -> Completion:
        conversation: list[dict[str, Any]] = [dict(m) for m in messages]
        kwargs: dict[str, Any] = {"model": self.model, "max_tokens": max_tokens}
        if system:
            kwargs["system"] = system
        if thinking_budget:
            # budget_tokens must stay below max_tokens
            kwargs["thinking"] = {
                "type": "enabled",
                "budget_tokens": min(thinking_budget, max_tokens - 1),
            }
        if tools is not None and tools.count():
            kwargs["tools"] = tools.definitions()

        input_tokens = 0
        output_tokens = 0
        for _ in range(MAX_TOOL_ROUNDS):
            try:
                response = self.client.messages.create(messages=conversation, **kwargs)
            except anthropic.APIError as e:
                raise self._handle_error(e) from e

            usage = getattr(response, "usage", None)
            if usage is not None:
                input_tokens += int(getattr(usage, "input_tokens", 0) or 0)
                output_tokens += int(getattr(usage, "output_tokens", 0) or 0)

            tool_uses = [b for b in response.content if b.type == "tool_use"]
            if response.stop_reason != "tool_use" or not tool_uses or tools is None:
                return Completion(
                    text=_final_text(response.content),
                    model=str(getattr(response, "model", None) or self.model),
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                )

            # thinking blocks must be sent back unchanged alongside tool_use
            conversation.append({"role": "assistant", "content": response.content})
            results = []
            for block in tool_uses:
                result = tools.execute(block.name, dict(block.input or {}))
                results.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": block.id,
                        "content": json.dumps(result.output, ensure_ascii=False),
                        **({"is_error": True} if not result.ok else {}),
                    }
                )
            conversation.append({"role": "user", "content": results})

        logger.warning("tool_rounds_exhausted", model=self.model, rounds=MAX_TOOL_ROUNDS)
        raise LLMError(f"Tool loop did not finish after {MAX_TOOL_ROUNDS} rounds")


def _final_text(blocks: list[Any]) -> str:
    """Visible answer only; thinking and redacted_thinking blocks are dropped."""
    parts = [b.text for b in blocks if b.type == "text" and getattr(b, "text", "")]
    return "\n".join(parts).strip()
