"""Message processing shared by every front-end: route, reply, remember."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from mate.memory.conversation import ConversationStore
from mate.memory.longterm import LongTermMemoryStore, StorageError
from mate.orchestrator.base import RoutingMode
from mate.orchestrator.router import ModeRegistry, Router, suggest_mode
from mate.patterns import ExtractedInfo, extract_all_user_info

logger = structlog.get_logger()

FLOW_HINT = "Tip: this looks like a multi-step task. Send /flow to switch to deep reasoning mode."


@dataclass(frozen=True)
class AssistantReply:
    text: str
    hint: str | None = None


class Assistant:
    def __init__(
        self,
        router: Router,
        modes: ModeRegistry,
        conversations: ConversationStore,
        memory: LongTermMemoryStore,
    ) -> None:
        self._router = router
        self._modes = modes
        self._conversations = conversations
        self._memory = memory

    def mode_of(self, user_id: str) -> RoutingMode:
        return self._modes.get(user_id)

    def set_mode(self, user_id: str, mode: RoutingMode) -> RoutingMode:
        return self._modes.set(user_id, mode)

    def history_size(self, user_id: str) -> int:
        return self._conversations.count(user_id)

    def clear_history(self, user_id: str) -> None:
        self._conversations.clear(user_id)

    async def handle(self, user_id: str, text: str) -> AssistantReply:
        """Raises ExecutionError when the executor fails."""
        mode = self._modes.get(user_id)
        reply = await self._router.route_message(text, mode, user_id)
        self.remember_extracted(user_id, text)
        hint = None
        if mode == RoutingMode.SIMPLE and suggest_mode(text) == RoutingMode.FLOW:
            hint = FLOW_HINT
        return AssistantReply(text=reply, hint=hint)

    def remember_extracted(self, user_id: str, text: str) -> list[ExtractedInfo]:
        stored: list[ExtractedInfo] = []
        for info in extract_all_user_info(text):
            try:
                self._memory.remember(user_id, info.key, info.value, info.file)
            except (StorageError, ValueError) as exc:
                logger.warning("auto_remember_failed", user_id=user_id, key=info.key, error=str(exc))
                continue
            stored.append(info)
        if stored:
            logger.info("auto_remembered", user_id=user_id, keys=[i.key for i in stored])
        return stored
