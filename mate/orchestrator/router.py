"""Per-user routing mode, complexity hint and dispatch to the executors."""

from __future__ import annotations

import re

import structlog

from mate.memory.longterm import LongTermMemoryStore, StorageError
from mate.orchestrator.base import RoutingMode
from mate.orchestrator.flow import FlowExecutor
from mate.orchestrator.simple import SimpleExecutor

logger = structlog.get_logger()

# Accented Spanish imperatives are bounded by whitespace rather than \b.
_SPANISH_WORDS = ("investigá", "analizá", "creá", "compará", "buildea", "escribí", "múltiples")
COMPLEX_PATTERNS: tuple[re.Pattern[str], ...] = (
    *(re.compile(rf"(?:^|\s){word}(?:\s|$)", re.IGNORECASE) for word in _SPANISH_WORDS),
    re.compile(r"\bresearch\b", re.IGNORECASE),
    re.compile(r"\banalyze\b", re.IGNORECASE),
    re.compile(r"\bcreate\b", re.IGNORECASE),
    re.compile(r"\bbuild\b", re.IGNORECASE),
    re.compile(r"\bcompare\b", re.IGNORECASE),
    re.compile(r"step.by.step", re.IGNORECASE),
    re.compile(r"\b(documento|informe|reporte|essay|article)\b", re.IGNORECASE),
)


def suggest_mode(text: str) -> RoutingMode:
    """UI hint only; never changes the mode a user picked."""
    if any(pattern.search(text) for pattern in COMPLEX_PATTERNS):
        return RoutingMode.FLOW
    return RoutingMode.SIMPLE


class ModeRegistry:
    """Ephemeral per-user mode; everyone starts in simple."""

    def __init__(self) -> None:
        self._modes: dict[str, RoutingMode] = {}

    def get(self, user_id: str) -> RoutingMode:
        return self._modes.get(user_id, RoutingMode.SIMPLE)

    def set(self, user_id: str, mode: RoutingMode | str) -> RoutingMode:
        resolved = RoutingMode(mode)
        self._modes[user_id] = resolved
        return resolved

    def reset(self, user_id: str) -> None:
        self._modes.pop(user_id, None)


class Router:
    def __init__(self, simple: SimpleExecutor, flow: FlowExecutor, memory: LongTermMemoryStore) -> None:
        self._simple = simple
        self._flow = flow
        self._memory = memory

    def _prepare_memory(self, user_id: str) -> None:
        try:
            self._memory.prepare(user_id)
        except StorageError as exc:
            logger.warning("memory_prepare_failed", user_id=user_id, error=str(exc))

    async def route_message(self, text: str, mode: RoutingMode, user_id: str) -> str:
        """Raises ExecutionError with a generic message on failure."""
        logger.info("routing_message", mode=mode.value, message_length=len(text), user_id=user_id)
        self._prepare_memory(user_id)
        if mode == RoutingMode.FLOW:
            return await self._flow.execute(text, user_id)
        return await self._simple.execute(text, user_id)
