"""Simple mode: one flat prompt sent to the Claude CLI or to an SDK provider."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from mate.api_usage import ApiUsageStore
from mate.llm.base import LLMError
from mate.memory.conversation import ConversationStore, format_history
from mate.memory.longterm import LongTermMemoryStore
from mate.orchestrator.base import ExecutionError, RoutingMode

if TYPE_CHECKING:
    from mate.llm.providers import ProviderSelector

logger = structlog.get_logger()

RUNNER_CLI = "cli"
RUNNER_SDK = "sdk"
DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024
DEFAULT_HISTORY_LIMIT = 20
SDK_MAX_TOKENS = 4096
_READ_CHUNK = 64 * 1024

INSTRUCTION_SUFFIX = (
    "Reply to the current message. Respond in the same language as the user, "
    "be concise, and use what you know about them when it helps."
)


class _OutputLimitExceeded(Exception):
    pass


class SimpleExecutor:
    def __init__(
        self,
        *,
        conversations: ConversationStore,
        memory: LongTermMemoryStore,
        runner: str = RUNNER_CLI,
        cli_command: str = "claude",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        providers: "ProviderSelector | None" = None,
        usage: ApiUsageStore | None = None,
    ) -> None:
        if runner not in (RUNNER_CLI, RUNNER_SDK):
            raise ValueError(f"Unknown runner: {runner}")
        if runner == RUNNER_SDK and providers is None:
            raise ValueError("The sdk runner needs a provider selector")
        self._conversations = conversations
        self._memory = memory
        self._runner = runner
        self._cli_command = cli_command
        self._timeout = timeout
        self._max_output_bytes = max_output_bytes
        self._history_limit = history_limit
        self._providers = providers
        self._usage = usage

    def build_prompt(self, text: str, user_id: str) -> str:
        parts: list[str] = []
        long_term = self._memory.load_long_term_memory(user_id)
        if long_term:
            parts.append(f"What you know about the user:\n{long_term}")
        history = self._conversations.get_history(user_id, self._history_limit)
        if history:
            parts.append(f"Recent conversation:\n{format_history(history)}")
        parts.append(f"Current message:\nUser: {text}")
        parts.append(INSTRUCTION_SUFFIX)
        return "\n\n".join(parts)

    async def execute(self, text: str, user_id: str) -> str:
        prompt = self.build_prompt(text, user_id)
        logger.info(
            "simple_execution_started",
            user_id=user_id,
            runner=self._runner,
            prompt_length=len(prompt),
            timeout=self._timeout,
        )
        if self._runner == RUNNER_CLI:
            reply = await self._run_cli(prompt)
        else:
            reply = await self._run_sdk(prompt, user_id)
        if not reply:
            logger.error("simple_empty_reply", user_id=user_id, runner=self._runner)
            raise ExecutionError()
        self._conversations.add_exchange(user_id, text, reply)
        logger.info("simple_execution_completed", user_id=user_id, response_length=len(reply))
        return reply

    async def _run_cli(self, prompt: str) -> str:
        argv = [self._cli_command, "-p", prompt, "--output-format", "text"]
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error("cli_spawn_failed", command=self._cli_command, error=str(exc))
            raise ExecutionError() from exc

        try:
            stdout, stderr = await asyncio.wait_for(self._collect(proc), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            await _terminate(proc)
            logger.error("cli_timeout", command=self._cli_command, timeout=self._timeout)
            raise ExecutionError() from exc
        except _OutputLimitExceeded as exc:
            await _terminate(proc)
            logger.error("cli_output_too_large", limit_bytes=self._max_output_bytes)
            raise ExecutionError() from exc

        err_text = stderr.decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            logger.error("cli_failed", exit_code=proc.returncode, stderr=err_text[:500])
            raise ExecutionError()
        if err_text:
            logger.warning("cli_stderr_output", stderr=err_text[:500])
        return stdout.decode("utf-8", errors="replace").strip()

    async def _collect(self, proc: asyncio.subprocess.Process) -> tuple[bytes, bytes]:
        async def read_stdout() -> bytes:
            chunks: list[bytes] = []
            size = 0
            while True:
                chunk = await proc.stdout.read(_READ_CHUNK)
                if not chunk:
                    return b"".join(chunks)
                size += len(chunk)
                if size > self._max_output_bytes:
                    raise _OutputLimitExceeded(size)
                chunks.append(chunk)

        stdout, stderr = await asyncio.gather(read_stdout(), proc.stderr.read())
        await proc.wait()
        return stdout, stderr

    async def _run_sdk(self, prompt: str, user_id: str) -> str:
        assert self._providers is not None
        selection = self._providers.select()
        try:
            provider = self._providers.build(selection, timeout=self._timeout)
            completion = await asyncio.wait_for(
                asyncio.to_thread(
                    provider.complete,
                    [{"role": "user", "content": prompt}],
                    max_tokens=SDK_MAX_TOKENS,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error("simple_sdk_timeout", provider=selection.name, timeout=self._timeout)
            raise ExecutionError() from exc
        except LLMError as exc:
            logger.error("simple_sdk_failed", provider=selection.name, error=str(exc))
            raise ExecutionError() from exc
        if self._usage is not None:
            self._usage.record(
                user_id,
                selection.name,
                completion.model,
                RoutingMode.SIMPLE.value,
                completion.input_tokens,
                completion.output_tokens,
            )
        return completion.text.strip()


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()
