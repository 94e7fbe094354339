"""Routing modes and the error that crosses from the executors to the bot."""

from __future__ import annotations

from enum import Enum

GENERIC_ERROR_MESSAGE = "An error occurred processing your request."


class RoutingMode(str, Enum):
    SIMPLE = "simple"
    FLOW = "flow"


class ExecutionError(RuntimeError):
    """Executor failure. The message is always generic; details go to the log."""

    def __init__(self, message: str = GENERIC_ERROR_MESSAGE) -> None:
        super().__init__(message)
