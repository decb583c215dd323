"""Gemini Live Transport - google-genai real-time voice sessions.

Wraps `client.aio.live.connect(...)` behind the StreamingVoiceTransport
interface:

- open() enters the SDK's connection context, fires on_open and starts a
  receive task that forwards every LiveServerMessage to on_message
- send() uploads one 16 kHz PCM frame with send_realtime_input
- close() cancels the receive task and exits the connection context

The SDK's receive() iterator ends after each completed turn, so the
receive task keeps re-entering it; an iteration that yields nothing means
the server closed the stream.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any

from google import genai
from google.genai import types
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from src.audio.pcm import AudioFrame
from src.exceptions import MissingConfigError, TransportClosedError, TransportError
from src.observability.logging import get_logger
from src.transport.base import (
    LiveConnectConfig,
    LiveSession,
    StreamingVoiceTransport,
    TransportCallbacks,
)

logger = get_logger(__name__)


def create_client(api_key: str | None) -> genai.Client:
    """Create a google-genai client.

    Raises:
        MissingConfigError: If no API key is configured
    """
    if not api_key:
        raise MissingConfigError("gemini_api_key")
    return genai.Client(api_key=api_key)


def build_connect_config(config: LiveConnectConfig) -> types.LiveConnectConfig:
    """Translate transport-neutral settings into the SDK config."""
    return types.LiveConnectConfig(
        response_modalities=[types.Modality(m) for m in config.response_modalities],
        system_instruction=config.system_instruction or None,
        input_audio_transcription=(
            types.AudioTranscriptionConfig() if config.input_audio_transcription else None
        ),
        output_audio_transcription=(
            types.AudioTranscriptionConfig() if config.output_audio_transcription else None
        ),
    )


class GeminiLiveSession(LiveSession):
    """One open Gemini Live connection."""

    def __init__(
        self,
        session: Any,
        stack: contextlib.AsyncExitStack,
        callbacks: TransportCallbacks,
    ) -> None:
        self._session = session
        self._stack = stack
        self._callbacks = callbacks
        self._receive_task: asyncio.Task | None = None
        self._closed = False

    def start_receiving(self) -> None:
        self._receive_task = asyncio.create_task(self._receive_loop())

    async def send(self, frame: AudioFrame) -> None:
        if self._closed:
            raise TransportClosedError("send after close")
        await self._session.send_realtime_input(
            audio=types.Blob(data=frame.pcm, mime_type=frame.mime_type)
        )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        task, self._receive_task = self._receive_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        try:
            await self._stack.aclose()
        except Exception as e:
            logger.warning("gemini_close_error", error=str(e))

    async def _receive_loop(self) -> None:
        try:
            while not self._closed:
                received = False
                async for message in self._session.receive():
                    received = True
                    self._callbacks.on_message(message)
                if not received:
                    self._callbacks.on_close("stream ended")
                    return
        except asyncio.CancelledError:
            raise
        except ConnectionClosedOK as e:
            self._callbacks.on_close(e.reason or "closed")
        except ConnectionClosed as e:
            self._callbacks.on_error(TransportError(f"Connection lost: {e}"))
        except Exception as e:
            self._callbacks.on_error(TransportError(f"Receive failed: {e}"))


class GeminiLiveTransport(StreamingVoiceTransport):
    """StreamingVoiceTransport backed by the Gemini Live API.

    Usage:
        transport = GeminiLiveTransport(api_key="...")
        session = await transport.open(config, callbacks)
    """

    def __init__(self, api_key: str | None = None, client: genai.Client | None = None) -> None:
        self._client = client or create_client(api_key)

    async def open(self, config: LiveConnectConfig, callbacks: TransportCallbacks) -> LiveSession:
        stack = contextlib.AsyncExitStack()
        try:
            session = await stack.enter_async_context(
                self._client.aio.live.connect(
                    model=config.model,
                    config=build_connect_config(config),
                )
            )
        except Exception as e:
            await stack.aclose()
            raise TransportError(
                f"Failed to connect to Gemini Live: {e}",
                details={"model": config.model},
            ) from e

        live = GeminiLiveSession(session, stack, callbacks)
        callbacks.on_open()
        live.start_receiving()
        return live
