"""Short-term conversation history per user: most recent N messages, FIFO trimmed.

Messages from the same user are appended in completion order. Two messages
from one user processed concurrently may land in either order; there is no
per-user serialisation. Different users never share a history.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from mate.memory.conversation_log import ConversationLog

ROLES = ("user", "assistant")
DEFAULT_MAX_MESSAGES = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ConversationMessage:
    role: str
    content: str
    timestamp: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"role must be one of {ROLES}, got {self.role!r}")

    def as_chat_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class ConversationStore:
    def __init__(self, max_messages: int = DEFAULT_MAX_MESSAGES, log: ConversationLog | None = None) -> None:
        if max_messages <= 0:
            raise ValueError("max_messages must be positive")
        self._max = max_messages
        self._log = log
        self._histories: dict[str, deque[ConversationMessage]] = {}

    @property
    def max_messages(self) -> int:
        return self._max

    def _history(self, user_id: str) -> deque[ConversationMessage]:
        history = self._histories.get(user_id)
        if history is None:
            history = deque(maxlen=self._max)
            if self._log is not None:
                for row in self._log.latest(user_id, limit=self._max):
                    history.append(
                        ConversationMessage(
                            role=row["role"],
                            content=row["content"],
                            timestamp=datetime.fromisoformat(row["created_at"]),
                        )
                    )
            self._histories[user_id] = history
        return history

    def add_message(self, user_id: str, message: ConversationMessage) -> None:
        history = self._history(user_id)
        history.append(message)
        if self._log is not None:
            self._log.append(
                user_id=user_id,
                role=message.role,
                content=message.content,
                created_at=message.timestamp.isoformat(),
            )

    def add_exchange(self, user_id: str, user_text: str, assistant_text: str) -> None:
        self.add_message(user_id, ConversationMessage(role="user", content=user_text))
        self.add_message(user_id, ConversationMessage(role="assistant", content=assistant_text))

    def get_history(self, user_id: str, limit: int | None = None) -> list[ConversationMessage]:
        """Up to `limit` most recent messages, oldest first."""
        history = list(self._history(user_id))
        if limit is None:
            return history
        if limit <= 0:
            return []
        return history[-limit:]

    def count(self, user_id: str) -> int:
        return len(self._history(user_id))

    def clear(self, user_id: str) -> None:
        self._histories.pop(user_id, None)
        if self._log is not None:
            self._log.delete_user(user_id)
        self._histories[user_id] = deque(maxlen=self._max)


def format_history(messages: Iterable[ConversationMessage]) -> str:
    return "\n".join(
        f"{'User' if msg.role == 'user' else 'Assistant'}: {msg.content}" for msg in messages
    )
