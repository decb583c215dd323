"""Orchestrator Events - every asynchronous input as one event type.

Transport callbacks and capture failures are converted into SessionEvent
values and queued; the orchestrator consumes them one at a time through a
single handler. Each event carries the epoch of the session that produced
it so callbacks from a stopped or replaced session can be recognized and
dropped.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(Enum):
    """Kinds of session events."""

    TRANSPORT_OPENED = "transport_opened"
    TRANSPORT_MESSAGE = "transport_message"
    TRANSPORT_ERROR = "transport_error"
    TRANSPORT_CLOSED = "transport_closed"
    CAPTURE_FAILED = "capture_failed"


@dataclass(frozen=True)
class SessionEvent:
    """One queued input for the orchestrator."""

    type: EventType
    epoch: int
    payload: Any = None
    reason: str = ""
    metadata: dict = field(default_factory=dict)

    @classmethod
    def opened(cls, epoch: int) -> "SessionEvent":
        return cls(EventType.TRANSPORT_OPENED, epoch)

    @classmethod
    def message(cls, epoch: int, message: Any) -> "SessionEvent":
        return cls(EventType.TRANSPORT_MESSAGE, epoch, payload=message)

    @classmethod
    def error(cls, epoch: int, error: Exception) -> "SessionEvent":
        return cls(EventType.TRANSPORT_ERROR, epoch, payload=error)

    @classmethod
    def closed(cls, epoch: int, reason: str = "") -> "SessionEvent":
        return cls(EventType.TRANSPORT_CLOSED, epoch, reason=reason)

    @classmethod
    def capture_failed(cls, epoch: int, error: Exception) -> "SessionEvent":
        return cls(EventType.CAPTURE_FAILED, epoch, payload=error)
