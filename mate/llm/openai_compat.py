"""Minimal OpenAI-compatible chat completions client (OpenAI, Groq)."""

from __future__ import annotations

import json
import socket
from typing import TYPE_CHECKING, Any
from urllib import error, request

from mate.llm.base import Completion, LLMAuthError, LLMError, LLMProvider, LLMRateLimitError, LLMTimeoutError

if TYPE_CHECKING:
    from mate.tools.registry import ToolRegistry

OPENAI_BASE = "https://api.openai.com/v1"
GROQ_BASE = "https://api.groq.com/openai/v1"
DEFAULT_TIMEOUT_SECONDS = 120


def _parse_usage(data: dict[str, Any]) -> tuple[int, int]:
    usage = data.get("usage") or {}
    return int(usage.get("prompt_tokens", 0) or 0), int(usage.get("completion_tokens", 0) or 0)


class OpenAICompatibleProvider(LLMProvider):
    provider_name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        base_url: str | None = None,
        provider_name: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(model)
        if not api_key:
            raise LLMAuthError("Missing API key")
        self._api_key = api_key
        self._base_url = (base_url or OPENAI_BASE).rstrip("/")
        self._timeout = timeout
        if provider_name:
            self.provider_name = provider_name

    def complete(
        self,
        messages: list[dict[str, str]],
        *,
        system: str | None = None,
        max_tokens: int = 4096,
        thinking_budget: int | None = None,
        tools: "ToolRegistry | None" = None,
    ) -> Completion:
        payload_messages: list[dict[str, str]] = []
        if system:
            payload_messages.append({"role": "system", "content": system})
        payload_messages.extend(messages)
        body = {
            "model": self.model,
            "messages": payload_messages,
            "max_tokens": max_tokens,
        }
        data = self._post("/chat/completions", body)

        content: str | None = None
        for choice in data.get("choices") or []:
            msg = choice.get("message") or {}
            if msg.get("content") is not None:
                content = msg["content"]
                break
        if content is None:
            raise LLMError(f"{self.provider_name} returned no content")
        input_tokens, output_tokens = _parse_usage(data)
        return Completion(
            text=content.strip(),
            model=str(data.get("model") or self.model),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        encoded = json.dumps(body).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        req = request.Request(self._base_url + path, data=encoded, headers=headers, method="POST")
        try:
            with request.urlopen(req, timeout=self._timeout) as response:  # noqa: S310
                return json.loads(response.read().decode("utf-8"))
        except error.HTTPError as exc:
            body_read = exc.read().decode("utf-8", errors="replace")
            if exc.code in (401, 403):
                raise LLMAuthError(f"{self.provider_name} HTTP {exc.code}: {body_read}") from exc
            if exc.code == 429:
                raise LLMRateLimitError(f"{self.provider_name} HTTP 429: {body_read}") from exc
            raise LLMError(f"{self.provider_name} HTTP {exc.code}: {body_read}") from exc
        except (socket.timeout, TimeoutError) as exc:
            raise LLMTimeoutError(f"{self.provider_name} timed out after {self._timeout}s") from exc
        except error.URLError as exc:
            raise LLMError(f"{self.provider_name} unreachable: {exc.reason}") from exc
        except json.JSONDecodeError as exc:
            raise LLMError(f"{self.provider_name} returned invalid JSON") from exc
