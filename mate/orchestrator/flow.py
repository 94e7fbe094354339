"""Flow mode: structured system prompt, extended thinking and memory tools."""

from __future__ import annotations

import asyncio

import structlog

from mate.api_usage import ApiUsageStore
from mate.llm.base import LLMError
from mate.llm.providers import ProviderSelector
from mate.memory.conversation import ConversationStore
from mate.memory.longterm import LongTermMemoryStore
from mate.orchestrator.base import ExecutionError, RoutingMode
from mate.orchestrator.simple import SimpleExecutor
from mate.security.audit import AuditLog
from mate.tools.memory_tools import build_memory_registry

logger = structlog.get_logger()

DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_MAX_TOKENS = 16000
DEFAULT_THINKING_BUDGET = 10000
DEFAULT_HISTORY_LIMIT = 30
TASK_FRAMING = "Please help me with the following task. Think through it carefully:\n\n"


class FlowExecutor:
    def __init__(
        self,
        *,
        conversations: ConversationStore,
        memory: LongTermMemoryStore,
        providers: ProviderSelector,
        simple: SimpleExecutor | None = None,
        fallback_to_simple: bool = True,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        thinking_budget: int = DEFAULT_THINKING_BUDGET,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        usage: ApiUsageStore | None = None,
        audit: AuditLog | None = None,
    ) -> None:
        self._conversations = conversations
        self._memory = memory
        self._providers = providers
        self._simple = simple
        self._fallback = fallback_to_simple and simple is not None
        self._timeout = timeout
        self._max_tokens = max_tokens
        self._thinking_budget = thinking_budget
        self._history_limit = history_limit
        self._usage = usage
        self._audit = audit

    def build_system_prompt(self, user_id: str, *, with_tools: bool) -> str:
        parts = [
            "You are an advanced AI assistant capable of handling complex, multi-step tasks.",
            "Think through problems carefully and provide thorough, well-reasoned responses.",
            "",
        ]
        long_term = self._memory.load_long_term_memory(user_id)
        if long_term:
            parts += ["=== LONG-TERM MEMORY ===", long_term, ""]

        parts.append("=== INSTRUCTIONS ===")
        if with_tools:
            parts += [
                "- Use the memory tools to keep long-term memory up to date:",
                "  - remember/forget with file 'about' for identity info (name, location, work)",
                "  - remember/forget with file 'preferences' for preferences (language, tone)",
                "  - add_note for topic-specific notes",
                "  - add_journal_entry for daily summaries",
            ]
        else:
            memory_dir = self._memory.memory_dir(user_id)
            parts += [
                f"- Memory is stored in {memory_dir}/",
                "  - about.md holds user identity info (name, location, work)",
                "  - preferences.md holds user preferences (language, tone)",
                "  - notes/{topic}.md holds topic-specific notes",
                "  - journal/{YYYY-MM-DD}.md holds daily summaries",
            ]
        parts += [
            "- Respond in the same language as the user",
            "- For complex tasks, break down your approach step by step",
            "- Provide comprehensive and detailed responses",
        ]
        return "\n".join(parts)

    def build_messages(self, text: str, user_id: str) -> list[dict[str, str]]:
        messages = [
            m.as_chat_message()
            for m in self._conversations.get_history(user_id, self._history_limit)
        ]
        messages.append({"role": "user", "content": TASK_FRAMING + text})
        return messages

    async def execute(self, text: str, user_id: str) -> str:
        selection = self._providers.select()
        logger.info(
            "flow_execution_started",
            user_id=user_id,
            provider=selection.name,
            model=selection.model,
            thinking=selection.thinking,
            timeout=self._timeout,
        )
        try:
            provider = self._providers.build(selection, timeout=self._timeout)
            tools = build_memory_registry(self._memory, user_id, self._audit) if provider.supports_tools else None
            completion = await asyncio.wait_for(
                asyncio.to_thread(
                    provider.complete,
                    self.build_messages(text, user_id),
                    system=self.build_system_prompt(user_id, with_tools=tools is not None),
                    max_tokens=self._max_tokens,
                    thinking_budget=self._thinking_budget if selection.thinking else None,
                    tools=tools,
                ),
                timeout=self._timeout,
            )
            if not completion.text:
                raise LLMError("Empty reply")
        except Exception as exc:
            logger.error(
                "flow_execution_failed",
                user_id=user_id,
                provider=selection.name,
                error=str(exc) or type(exc).__name__,
            )
            if self._fallback:
                assert self._simple is not None
                logger.info("flow_fallback_to_simple", user_id=user_id)
                return await self._simple.execute(text, user_id)
            raise ExecutionError() from exc

        if self._usage is not None:
            self._usage.record(
                user_id,
                selection.name,
                completion.model,
                RoutingMode.FLOW.value,
                completion.input_tokens,
                completion.output_tokens,
            )
        self._conversations.add_exchange(user_id, text, completion.text)
        logger.info(
            "flow_execution_completed",
            user_id=user_id,
            response_length=len(completion.text),
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
        )
        return completion.text
