"""Allowed Telegram user ids."""

from __future__ import annotations

import re
from typing import Iterable

_USER_ID_RE = re.compile(r"^[1-9]\d*$")


class UserWhitelist:
    def __init__(self, allowed_user_ids: Iterable[str | int]) -> None:
        self._allowed = {str(uid).strip() for uid in allowed_user_ids if str(uid).strip()}

    @classmethod
    def from_string(cls, comma_separated: str) -> "UserWhitelist":
        return cls(part for part in comma_separated.split(","))

    def is_allowed(self, user_id: str | int | None) -> bool:
        """Telegram ids are positive integers; anything else is rejected before lookup."""
        if user_id is None or isinstance(user_id, bool):
            return False
        normalized = str(user_id).strip()
        if not _USER_ID_RE.match(normalized):
            return False
        return normalized in self._allowed

    def user_ids(self) -> list[str]:
        return sorted(self._allowed)

    @property
    def size(self) -> int:
        return len(self._allowed)
