"""Integration Tests - Full Session Flow.

End-to-end conversation against fake backends:
    1. Session start and connect
    2. Greeting after the quiet period
    3. User turn, then AI reply with streamed audio
    4. Barge-in cutting AI playback
    5. Stop and resource cleanup
"""

import asyncio
import base64

import pytest

from src.audio.memory_io import MemoryAudioIO
from src.config.constants import GREETINGS
from src.config.settings import Settings
from src.orchestrator.greeting import ToneGreetingSynthesizer
from src.orchestrator.orchestrator import VoiceSessionOrchestrator
from src.orchestrator.state_machine import ConnectionState
from src.orchestrator.transcript import Speaker
from src.transport.mock import MockTransport

pytestmark = pytest.mark.integration


def _content(**fields) -> dict:
    return {"serverContent": fields}


def _speech(seconds: float) -> dict:
    pcm = b"\x00\x08" * int(seconds * 24000)
    data = base64.b64encode(pcm).decode("ascii")
    return _content(modelTurn={"parts": [{"inlineData": {"data": data}}]})


@pytest.fixture
def audio_io():
    return MemoryAudioIO()


@pytest.fixture
def transport():
    return MockTransport()


@pytest.fixture
async def companion(transport, audio_io):
    """Orchestrator with the greeting enabled and a short quiet period."""
    settings = Settings(
        _env_file=None,
        voice_transport="mock",
        audio_backend="memory",
        greeting_enabled=True,
        greeting_delay_s=0.05,
    )
    orch = VoiceSessionOrchestrator(
        transport, audio_io, ToneGreetingSynthesizer(duration_s=0.1), settings
    )
    yield orch
    await orch.aclose()


class TestConversationFlow:
    """Greeting, one exchange, stop."""

    @pytest.mark.asyncio
    async def test_greeting_then_exchange_then_stop(self, companion, transport, audio_io):
        await companion.start_session()
        await companion.flush()
        assert companion.connection_state == ConnectionState.CONNECTED

        # Quiet period elapses: the greeting is spoken and recorded
        await asyncio.sleep(0.15)
        greeting = companion.transcript_history[0]
        assert greeting.speaker == Speaker.AI
        assert greeting.text in GREETINGS

        session = transport.last_session
        session.push(_content(inputTranscription={"text": "Hello"}))
        await companion.flush()
        assert companion.current_interim_transcription == "Hello"

        session.push(_content(outputTranscription={"text": "Hi there! "}))
        session.push(_speech(0.2))
        session.push(_content(outputTranscription={"text": "How are you?"}, turnComplete=True))
        await companion.flush()
        assert companion.current_interim_transcription == ""

        await companion.stop_session()

        history = companion.transcript_history
        assert [(e.speaker, e.text) for e in history] == [
            (Speaker.AI, greeting.text),
            (Speaker.USER, "Hello"),
            (Speaker.AI, "Hi there! How are you?"),
        ]
        assert history[0].timestamp <= history[1].timestamp < history[2].timestamp
        assert companion.connection_state == ConnectionState.CLOSED
        assert companion.last_error is None

        assert session.closed
        assert not audio_io.capture.mic_open
        assert audio_io.playback.clock.is_closed

    @pytest.mark.asyncio
    async def test_microphone_frames_reach_transport(self, companion, transport, audio_io):
        await companion.start_session()
        await companion.flush()

        for _ in range(3):
            audio_io.capture.feed()
        await asyncio.sleep(0.02)
        await companion.stop_session()

        frames = transport.last_session.sent
        assert len(frames) == 3
        assert all(f.mime_type == "audio/pcm;rate=16000" for f in frames)


class TestBargeIn:
    """User speech interrupts the AI mid-reply."""

    @pytest.mark.asyncio
    async def test_interrupt_cuts_playback_and_keeps_session(self, companion, transport, audio_io):
        await companion.start_session()
        await companion.flush()
        session = transport.last_session

        # User speaks before the quiet period ends: no greeting
        session.push(_content(inputTranscription={"text": "Tell me a story"}))
        session.push(_content(outputTranscription={"text": "Once upon"}, turnComplete=True))
        session.push(_speech(0.5))
        session.push(_speech(0.5))
        await companion.flush()
        assert len(companion.playback.active_sources) == 2

        session.push(_content(interrupted=True, inputTranscription={"text": "Wait"}))
        await companion.flush()
        audio_io.playback.advance(0.01)

        assert companion.playback.active_sources == set()
        assert companion.connection_state == ConnectionState.CONNECTED
        assert companion.current_interim_transcription == "Wait"

        await asyncio.sleep(0.15)
        assert [e.text for e in companion.transcript_history] == ["Tell me a story", "Once upon"]
