"""Mock Transport - scripted stand-in for the streaming voice API.

Used for:
- Unit tests (deterministic message sequences)
- Running the service without an API key

The mock records every frame it receives and lets the caller push server
messages, errors and closes through the callbacks of the open session.
"""

from __future__ import annotations

from typing import Any

from src.audio.pcm import AudioFrame
from src.exceptions import TransportError
from src.transport.base import (
    LiveConnectConfig,
    LiveSession,
    StreamingVoiceTransport,
    TransportCallbacks,
)


class MockLiveSession(LiveSession):
    """Session that records frames and replays scripted events."""

    def __init__(self, callbacks: TransportCallbacks, fail_send: bool = False) -> None:
        self.callbacks = callbacks
        self.sent: list[AudioFrame] = []
        self.closed = False
        self.close_calls = 0
        self.fail_send = fail_send

    async def send(self, frame: AudioFrame) -> None:
        if self.fail_send:
            raise TransportError("mock send failure")
        self.sent.append(frame)

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True

    def push(self, message: Any) -> None:
        """Deliver a server message."""
        self.callbacks.on_message(message)

    def fail(self, error: Exception | None = None) -> None:
        """Deliver a transport error."""
        self.callbacks.on_error(error or TransportError("mock transport error"))

    def remote_close(self, reason: str = "remote") -> None:
        """Deliver a graceful close."""
        self.callbacks.on_close(reason)


class MockTransport(StreamingVoiceTransport):
    """Transport whose sessions are driven by the caller.

    Args:
        fail_open: Raise TransportError from open()
        auto_open: Fire on_open inside open() (as the real SDK does)
    """

    def __init__(self, fail_open: bool = False, auto_open: bool = True) -> None:
        self.fail_open = fail_open
        self.auto_open = auto_open
        self.sessions: list[MockLiveSession] = []
        self.configs: list[LiveConnectConfig] = []

    @property
    def last_session(self) -> MockLiveSession | None:
        return self.sessions[-1] if self.sessions else None

    async def open(self, config: LiveConnectConfig, callbacks: TransportCallbacks) -> LiveSession:
        self.configs.append(config)
        if self.fail_open:
            raise TransportError("mock open failure", details={"model": config.model})

        session = MockLiveSession(callbacks)
        self.sessions.append(session)
        if self.auto_open:
            callbacks.on_open()
        return session
