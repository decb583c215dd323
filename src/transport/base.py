"""Streaming Voice Transport Interface.

The orchestrator depends on this capability interface only:

    session = await transport.open(config, callbacks)
    await session.send(frame)
    await session.close()

Callbacks mirror the vendor SDK: on_open, on_message, on_error, on_close.
They are plain functions invoked on the event loop; the orchestrator turns
each one into an internal event.

Server messages are accepted either in wire shape (dicts with camelCase
keys, audio as base64 text) or as SDK objects (snake_case attributes,
audio as raw bytes). ServerEvent.from_message normalizes both.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from src.audio.pcm import AudioFrame

OpenCallback = Callable[[], None]
MessageCallback = Callable[[Any], None]
ErrorCallback = Callable[[Exception], None]
CloseCallback = Callable[[str], None]

AUDIO_FIELD = "modelTurn.parts[0].inlineData.data"


@dataclass
class TransportCallbacks:
    """Event callbacks registered when a session is opened."""

    on_open: OpenCallback
    on_message: MessageCallback
    on_error: ErrorCallback
    on_close: CloseCallback


@dataclass
class LiveConnectConfig:
    """Connection parameters for a live voice session."""

    model: str
    system_instruction: str = ""
    response_modalities: tuple[str, ...] = ("AUDIO",)
    input_audio_transcription: bool = True
    output_audio_transcription: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)


class LiveSession(ABC):
    """An open streaming session."""

    @abstractmethod
    async def send(self, frame: AudioFrame) -> None:
        """Push one realtime audio frame."""

    @abstractmethod
    async def close(self) -> None:
        """Close the session. Idempotent."""


class StreamingVoiceTransport(ABC):
    """Factory for live sessions."""

    @abstractmethod
    async def open(self, config: LiveConnectConfig, callbacks: TransportCallbacks) -> LiveSession:
        """Open a session.

        on_open must fire before the first on_message.

        Raises:
            TransportError: If the connection cannot be established
        """


def _get(obj: Any, camel: str, snake: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(camel, obj.get(snake))
    return getattr(obj, snake, None)


@dataclass(frozen=True)
class ServerEvent:
    """The parts of one server message the orchestrator reacts to."""

    input_text: str | None = None
    output_text: str | None = None
    turn_complete: bool = False
    interrupted: bool = False
    audio: str | bytes | None = None
    malformed_field: str | None = None  # Set when modelTurn lacks inline audio

    @classmethod
    def from_message(cls, message: Any) -> "ServerEvent":
        content = _get(message, "serverContent", "server_content")
        if content is None:
            return cls()

        input_tx = _get(content, "inputTranscription", "input_transcription")
        output_tx = _get(content, "outputTranscription", "output_transcription")

        audio = None
        malformed = None
        model_turn = _get(content, "modelTurn", "model_turn")
        if model_turn is not None:
            audio = _extract_audio(model_turn)
            if audio is None:
                malformed = AUDIO_FIELD

        return cls(
            input_text=_get(input_tx, "text", "text"),
            output_text=_get(output_tx, "text", "text"),
            turn_complete=bool(_get(content, "turnComplete", "turn_complete")),
            interrupted=bool(_get(content, "interrupted", "interrupted")),
            audio=audio,
            malformed_field=malformed,
        )


def _extract_audio(model_turn: Any) -> str | bytes | None:
    parts = _get(model_turn, "parts", "parts")
    if not parts:
        return None
    inline = _get(parts[0], "inlineData", "inline_data")
    data = _get(inline, "data", "data")
    if not data or not isinstance(data, (str, bytes)):
        return None
    return data
