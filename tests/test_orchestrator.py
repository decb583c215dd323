"""Tests for VoiceSessionOrchestrator.

Tests cover:
- Start / stop lifecycle and idempotence
- Failure paths: microphone denied, transport open failure,
  transport error, send failure, remote close
- Stale callbacks from stopped sessions
- Capture to transport framing
- Playback scheduling and barge-in
- Transcript reconciliation
- Speaker toggle
- Greeting timer behavior
"""

import asyncio
import base64

import numpy as np
import pytest
from prometheus_client import REGISTRY

from src.audio.memory_io import MemoryAudioIO
from src.config.constants import GREETINGS
from src.config.settings import Settings
from src.exceptions import MissingConfigError
from src.orchestrator.greeting import ToneGreetingSynthesizer
from src.orchestrator.orchestrator import VoiceSessionOrchestrator, create_orchestrator
from src.orchestrator.state_machine import ConnectionState
from src.orchestrator.transcript import Speaker
from src.transport.base import LiveConnectConfig, LiveSession, TransportCallbacks
from src.transport.mock import MockLiveSession, MockTransport


def _settings(**overrides) -> Settings:
    values = {
        "voice_transport": "mock",
        "audio_backend": "memory",
        "greeting_enabled": False,
        "greeting_delay_s": 0.05,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _audio(seconds: float) -> dict:
    pcm = b"\x00\x10" * int(seconds * 24000)
    return {
        "serverContent": {
            "modelTurn": {
                "parts": [{"inlineData": {"data": base64.b64encode(pcm).decode("ascii")}}]
            }
        }
    }


def _content(**fields) -> dict:
    return {"serverContent": fields}


def _states(orch: VoiceSessionOrchestrator) -> list[ConnectionState]:
    return [t.new_state for t in orch.state_history]


async def _connect(orch: VoiceSessionOrchestrator) -> None:
    await orch.start_session()
    await orch.flush()


async def _settle(orch: VoiceSessionOrchestrator, delay: float = 0.02) -> None:
    await asyncio.sleep(delay)
    await orch.flush()


class GatedTransport(MockTransport):
    """Transport whose open() blocks until released."""

    def __init__(self) -> None:
        super().__init__(auto_open=False)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def open(self, config: LiveConnectConfig, callbacks: TransportCallbacks) -> LiveSession:
        self.entered.set()
        await self.release.wait()
        session = MockLiveSession(callbacks)
        self.sessions.append(session)
        callbacks.on_open()
        return session


class SlowCloseSession(MockLiveSession):
    """Session whose close() blocks until the gate is set."""

    def __init__(self, callbacks: TransportCallbacks, gate: asyncio.Event) -> None:
        super().__init__(callbacks)
        self.gate = gate
        self.closing = asyncio.Event()

    async def close(self) -> None:
        self.closing.set()
        await self.gate.wait()
        await super().close()


class SlowCloseTransport(MockTransport):
    """Transport whose sessions take until release to close."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def open(self, config: LiveConnectConfig, callbacks: TransportCallbacks) -> LiveSession:
        self.configs.append(config)
        session = SlowCloseSession(callbacks, self.gate)
        self.sessions.append(session)
        callbacks.on_open()
        return session


class TestLifecycle:
    """Start / stop behavior."""

    @pytest.mark.asyncio
    async def test_start_connects(self, orchestrator, transport, audio_io):
        await _connect(orchestrator)

        assert orchestrator.connection_state == ConnectionState.CONNECTED
        assert _states(orchestrator) == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
        assert orchestrator.session_id
        assert orchestrator.epoch == 1
        assert audio_io.capture.mic_open
        assert audio_io.capture.processing
        assert len(transport.sessions) == 1

    @pytest.mark.asyncio
    async def test_connect_config(self, orchestrator, transport, test_settings):
        await _connect(orchestrator)

        config = transport.configs[0]
        assert config.model == test_settings.live_model
        assert config.system_instruction == test_settings.system_instruction
        assert config.response_modalities == ("AUDIO",)
        assert config.input_audio_transcription
        assert config.output_audio_transcription

    @pytest.mark.asyncio
    async def test_start_is_idempotent_while_active(self, orchestrator, transport, audio_io):
        await _connect(orchestrator)
        await orchestrator.start_session()
        await orchestrator.flush()

        assert len(transport.sessions) == 1
        assert len(audio_io.captures) == 1
        assert audio_io.capture.mic_opened_count == 1
        assert orchestrator.epoch == 1

    @pytest.mark.asyncio
    async def test_stop_releases_everything(self, orchestrator, transport, audio_io):
        await _connect(orchestrator)
        await orchestrator.stop_session()

        assert orchestrator.connection_state == ConnectionState.CLOSED
        assert transport.last_session.closed
        assert not audio_io.capture.mic_open
        assert not audio_io.capture.processing
        assert audio_io.playback.clock.is_closed
        assert orchestrator.playback is None
        assert orchestrator.capture_pipeline is None

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, orchestrator, transport):
        await _connect(orchestrator)
        await orchestrator.stop_session()
        await orchestrator.stop_session()

        assert _states(orchestrator).count(ConnectionState.CLOSED) == 1
        assert transport.last_session.close_calls == 1

    @pytest.mark.asyncio
    async def test_stop_from_idle(self, orchestrator):
        await orchestrator.stop_session()
        assert orchestrator.connection_state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, orchestrator, transport, audio_io):
        await _connect(orchestrator)
        first_id = orchestrator.session_id
        await orchestrator.stop_session()
        await _connect(orchestrator)

        assert orchestrator.connection_state == ConnectionState.CONNECTED
        assert orchestrator.epoch == 2
        assert orchestrator.session_id != first_id
        assert len(transport.sessions) == 2
        assert len(audio_io.captures) == 2

    @pytest.mark.asyncio
    async def test_restart_resets_transcript(self, orchestrator, transport):
        await _connect(orchestrator)
        transport.last_session.push(_content(inputTranscription={"text": "hi"}, turnComplete=True))
        await orchestrator.flush()
        assert orchestrator.transcript_history

        await orchestrator.stop_session()
        await _connect(orchestrator)
        assert orchestrator.transcript_history == []

    @pytest.mark.asyncio
    async def test_state_listener(self, orchestrator):
        seen = []
        orchestrator.on_state_change(lambda t: seen.append(t.new_state))
        await _connect(orchestrator)
        await orchestrator.stop_session()

        assert seen == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.CLOSED,
        ]

    @pytest.mark.asyncio
    async def test_snapshot(self, orchestrator):
        await _connect(orchestrator)
        snapshot = orchestrator.snapshot()

        assert snapshot["connection_state"] == "connected"
        assert snapshot["transcription_history"] == []
        assert snapshot["current_interim_transcription"] == ""
        assert snapshot["speaker_on"] is True
        assert snapshot["error"] is None


class TestFailures:
    """Every failure ends in Error, then teardown to Closed."""

    @pytest.mark.asyncio
    async def test_microphone_denied(self, test_settings, transport, synthesizer):
        audio_io = MemoryAudioIO(deny_microphone=True)
        orch = VoiceSessionOrchestrator(transport, audio_io, synthesizer, test_settings)

        await orch.start_session()
        await orch.flush()

        assert _states(orch) == [
            ConnectionState.CONNECTING,
            ConnectionState.ERROR,
            ConnectionState.CLOSED,
        ]
        assert orch.last_error["type"] == "PermissionDeniedError"
        assert transport.sessions == []
        assert audio_io.capture.state.value == "closed"
        assert audio_io.playback.clock.is_closed
        await orch.aclose()

    @pytest.mark.asyncio
    async def test_transport_open_failure(self, test_settings, audio_io, synthesizer):
        transport = MockTransport(fail_open=True)
        orch = VoiceSessionOrchestrator(transport, audio_io, synthesizer, test_settings)

        await orch.start_session()
        await orch.flush()

        assert orch.connection_state == ConnectionState.CLOSED
        assert ConnectionState.ERROR in _states(orch)
        assert orch.last_error["type"] == "TransportError"
        assert not audio_io.capture.mic_open
        await orch.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_while_connected(self, orchestrator, transport, audio_io):
        await _connect(orchestrator)
        transport.last_session.fail()
        await orchestrator.flush()

        assert _states(orchestrator)[-2:] == [ConnectionState.ERROR, ConnectionState.CLOSED]
        assert transport.last_session.closed
        assert not audio_io.capture.mic_open
        assert audio_io.playback.clock.is_closed
        assert orchestrator.snapshot()["error"]["type"] == "TransportError"

    @pytest.mark.asyncio
    async def test_send_failure_tears_down(self, orchestrator, transport, audio_io):
        await _connect(orchestrator)
        transport.last_session.fail_send = True

        audio_io.capture.feed()
        await _settle(orchestrator)

        assert orchestrator.connection_state == ConnectionState.CLOSED
        assert ConnectionState.ERROR in _states(orchestrator)
        assert transport.last_session.closed

    @pytest.mark.asyncio
    async def test_remote_close(self, orchestrator, transport, audio_io):
        await _connect(orchestrator)
        transport.last_session.remote_close("server going away")
        await orchestrator.flush()

        last = orchestrator.state_history[-1]
        assert last.new_state == ConnectionState.CLOSED
        assert last.reason == "remote_close"
        assert last.metadata == {"reason": "server going away"}
        assert ConnectionState.ERROR not in _states(orchestrator)
        assert transport.last_session.closed
        assert not audio_io.capture.mic_open

    @pytest.mark.asyncio
    async def test_restart_after_error(self, orchestrator, transport):
        await _connect(orchestrator)
        transport.last_session.fail()
        await orchestrator.flush()

        await _connect(orchestrator)
        assert orchestrator.connection_state == ConnectionState.CONNECTED
        assert orchestrator.last_error is None


class TestStaleCallbacks:
    """Callbacks from stopped or replaced sessions never touch state."""

    @pytest.mark.asyncio
    async def test_late_open_after_stop(self, test_settings, audio_io, synthesizer):
        transport = MockTransport(auto_open=False)
        orch = VoiceSessionOrchestrator(transport, audio_io, synthesizer, test_settings)

        await orch.start_session()
        assert orch.connection_state == ConnectionState.CONNECTING
        await orch.stop_session()

        transport.last_session.callbacks.on_open()
        await orch.flush()

        assert orch.connection_state == ConnectionState.CLOSED
        assert ConnectionState.CONNECTED not in _states(orch)
        assert transport.last_session.closed
        await orch.aclose()

    @pytest.mark.asyncio
    async def test_stop_while_transport_opening(self, test_settings, audio_io, synthesizer):
        """A transport that opens after stop is closed, and its on_open ignored."""
        transport = GatedTransport()
        orch = VoiceSessionOrchestrator(transport, audio_io, synthesizer, test_settings)

        start = asyncio.create_task(orch.start_session())
        await transport.entered.wait()
        await orch.stop_session()
        assert orch.connection_state == ConnectionState.CLOSED
        assert not audio_io.capture.mic_open

        transport.release.set()
        await start
        await orch.flush()

        assert orch.connection_state == ConnectionState.CLOSED
        assert transport.last_session.closed
        assert orch.capture_pipeline is None
        assert ConnectionState.CONNECTED not in _states(orch)
        await orch.aclose()

    @pytest.mark.asyncio
    async def test_start_during_error_teardown(self, test_settings, audio_io, synthesizer):
        """A session started while the failed one is still closing stays live."""
        transport = SlowCloseTransport()
        orch = VoiceSessionOrchestrator(transport, audio_io, synthesizer, test_settings)
        await _connect(orch)
        first = transport.last_session

        first.fail()
        await first.closing.wait()
        assert orch.connection_state == ConnectionState.ERROR

        await orch.start_session()
        second = transport.last_session
        assert second is not first

        transport.gate.set()
        await orch.flush()

        assert orch.connection_state == ConnectionState.CONNECTED
        assert first.closed
        assert not second.closed
        assert audio_io.capture.mic_open
        assert not audio_io.captures[0].mic_open
        assert orch.capture_pipeline is not None
        assert orch.state_history[-1].reason == "transport_open"

        await orch.stop_session()
        assert second.closed
        assert not audio_io.capture.mic_open
        await orch.aclose()

    @pytest.mark.asyncio
    async def test_stop_during_error_teardown(self, test_settings, audio_io, synthesizer):
        transport = SlowCloseTransport()
        orch = VoiceSessionOrchestrator(transport, audio_io, synthesizer, test_settings)
        await _connect(orch)

        transport.last_session.fail()
        await transport.last_session.closing.wait()
        await orch.stop_session()
        assert orch.connection_state == ConnectionState.CLOSED

        transport.gate.set()
        await orch.flush()

        assert _states(orch)[-2:] == [ConnectionState.ERROR, ConnectionState.CLOSED]
        assert transport.last_session.closed
        await orch.aclose()

    @pytest.mark.asyncio
    async def test_old_session_messages_dropped(self, orchestrator, transport):
        await _connect(orchestrator)
        old = transport.last_session
        await orchestrator.stop_session()
        await _connect(orchestrator)

        old.push(_content(inputTranscription={"text": "ghost"}))
        old.fail()
        old.remote_close()
        await orchestrator.flush()

        assert orchestrator.connection_state == ConnectionState.CONNECTED
        assert orchestrator.current_interim_transcription == ""

    @pytest.mark.asyncio
    async def test_messages_after_stop_dropped(self, orchestrator, transport):
        await _connect(orchestrator)
        session = transport.last_session
        await orchestrator.stop_session()

        session.push(_content(inputTranscription={"text": "late"}, turnComplete=True))
        await orchestrator.flush()

        assert orchestrator.transcript_history == []


class TestCapture:
    """Microphone blocks reach the transport as frames."""

    @pytest.mark.asyncio
    async def test_one_frame_per_block_in_order(self, orchestrator, transport, audio_io):
        await _connect(orchestrator)

        for value in (0.0, 0.25, 0.5):
            audio_io.capture.feed(np.full(4096, value, dtype=np.float32))
        await _settle(orchestrator)

        sent = transport.last_session.sent
        assert [f.seq for f in sent] == [0, 1, 2]
        assert all(f.mime_type == "audio/pcm;rate=16000" for f in sent)
        assert np.frombuffer(sent[2].pcm, dtype="<i2")[0] == 16384

    @pytest.mark.asyncio
    async def test_blocks_after_stop_not_sent(self, orchestrator, transport, audio_io):
        await _connect(orchestrator)
        capture = audio_io.capture
        await orchestrator.stop_session()

        capture.feed()
        await asyncio.sleep(0.01)
        assert transport.last_session.sent == []


class TestPlayback:
    """Streamed audio scheduling and barge-in."""

    @pytest.mark.asyncio
    async def test_chunks_scheduled_gaplessly(self, orchestrator, transport):
        await _connect(orchestrator)
        session = transport.last_session

        session.push(_audio(0.5))
        session.push(_audio(0.25))
        await orchestrator.flush()

        playback = orchestrator.playback
        starts = sorted(s.start_time for s in playback.active_sources)
        assert starts == pytest.approx([0.0, 0.5])
        assert playback.next_start_time == pytest.approx(0.75)

    @pytest.mark.asyncio
    async def test_interrupted_stops_playback(self, orchestrator, transport, audio_io):
        await _connect(orchestrator)
        session = transport.last_session
        session.push(_audio(0.5))
        session.push(_audio(0.5))
        await orchestrator.flush()

        session.push(_content(interrupted=True))
        await orchestrator.flush()

        playback = orchestrator.playback
        assert playback.active_sources == set()
        assert playback.next_start_time == 0.0
        assert audio_io.playback.render(2400).max() == 0.0
        assert audio_io.playback.pending == 0

    @pytest.mark.asyncio
    async def test_malformed_audio_skipped(self, orchestrator, transport):
        await _connect(orchestrator)
        labels = {"component": "transport", "type": "MalformedMessageError"}
        before = REGISTRY.get_sample_value("kokoro_errors_total", labels) or 0.0

        transport.last_session.push(_content(modelTurn={"parts": [{"text": "no audio"}]}))
        transport.last_session.push(_content(inputTranscription={"text": "still here"}))
        await orchestrator.flush()

        assert orchestrator.connection_state == ConnectionState.CONNECTED
        assert orchestrator.playback.active_sources == set()
        assert orchestrator.current_interim_transcription == "still here"
        assert REGISTRY.get_sample_value("kokoro_errors_total", labels) == before + 1

    @pytest.mark.asyncio
    async def test_undecodable_audio_skipped(self, orchestrator, transport):
        await _connect(orchestrator)
        transport.last_session.push(
            _content(modelTurn={"parts": [{"inlineData": {"data": "!!not-base64!!"}}]})
        )
        await orchestrator.flush()

        assert orchestrator.connection_state == ConnectionState.CONNECTED
        assert orchestrator.playback.active_sources == set()


class TestTranscripts:
    """Deltas become interim text and finalized entries."""

    @pytest.mark.asyncio
    async def test_turn_finalized(self, orchestrator, transport):
        await _connect(orchestrator)
        session = transport.last_session
        entries = []
        interims = []
        orchestrator.on_transcript(entries.append)
        orchestrator.on_interim(interims.append)

        session.push(_content(inputTranscription={"text": "Hel"}))
        session.push(_content(inputTranscription={"text": "lo"}))
        session.push(_content(outputTranscription={"text": "Hi "}))
        session.push(_content(outputTranscription={"text": "there"}, turnComplete=True))
        await orchestrator.flush()

        history = orchestrator.transcript_history
        assert [(e.speaker, e.text) for e in history] == [
            (Speaker.USER, "Hello"),
            (Speaker.AI, "Hi there"),
        ]
        assert history[1].timestamp == history[0].timestamp + 1
        assert entries == history
        assert interims == ["Hel", "Hello", ""]
        assert orchestrator.current_interim_transcription == ""

    @pytest.mark.asyncio
    async def test_empty_turn(self, orchestrator, transport):
        await _connect(orchestrator)
        transport.last_session.push(_content(turnComplete=True))
        await orchestrator.flush()
        assert orchestrator.transcript_history == []

    @pytest.mark.asyncio
    async def test_failing_listener_keeps_session(self, orchestrator, transport):
        def broken(_):
            raise RuntimeError("ui gone")

        await _connect(orchestrator)
        orchestrator.on_transcript(broken)
        orchestrator.on_interim(broken)

        transport.last_session.push(_content(inputTranscription={"text": "hi"}, turnComplete=True))
        await orchestrator.flush()

        assert orchestrator.connection_state == ConnectionState.CONNECTED
        assert [e.text for e in orchestrator.transcript_history] == ["hi"]
        assert orchestrator.last_error is None


class TestSpeaker:
    """Speaker toggle suspends the playback context."""

    @pytest.mark.asyncio
    async def test_mute_and_unmute(self, orchestrator, transport, audio_io):
        await _connect(orchestrator)

        await orchestrator.set_speaker(False)
        assert not orchestrator.speaker_on
        assert audio_io.playback.state.value == "suspended"

        await orchestrator.set_speaker(True)
        assert audio_io.playback.state.value == "running"

    @pytest.mark.asyncio
    async def test_speaker_off_before_start(self, orchestrator, audio_io):
        await orchestrator.set_speaker(False)
        await _connect(orchestrator)
        assert audio_io.playback.state.value == "suspended"

    @pytest.mark.asyncio
    async def test_muted_audio_does_not_advance(self, orchestrator, transport, audio_io):
        await _connect(orchestrator)
        await orchestrator.set_speaker(False)
        transport.last_session.push(_audio(0.1))
        await orchestrator.flush()

        audio_io.playback.advance(1.0)
        assert len(orchestrator.playback.active_sources) == 1


class TestGreeting:
    """Greeting after a quiet period."""

    @pytest.fixture
    def greeting_orch(self, transport, audio_io, synthesizer):
        return VoiceSessionOrchestrator(
            transport, audio_io, synthesizer, _settings(greeting_enabled=True)
        )

    @pytest.mark.asyncio
    async def test_greeting_plays_after_quiet_period(self, greeting_orch, synthesizer):
        await _connect(greeting_orch)
        await asyncio.sleep(0.15)

        history = greeting_orch.transcript_history
        assert len(history) == 1
        assert history[0].speaker == Speaker.AI
        assert history[0].text in GREETINGS
        assert synthesizer.requests == [history[0].text]
        assert len(greeting_orch.playback.active_sources) == 1
        await greeting_orch.aclose()

    @pytest.mark.asyncio
    async def test_user_speech_cancels_greeting(self, greeting_orch, transport, synthesizer):
        await _connect(greeting_orch)
        transport.last_session.push(_content(inputTranscription={"text": "hi"}))
        await greeting_orch.flush()
        await asyncio.sleep(0.15)

        assert synthesizer.requests == []
        assert greeting_orch.transcript_history == []
        await greeting_orch.aclose()

    @pytest.mark.asyncio
    async def test_stop_cancels_greeting(self, greeting_orch, synthesizer):
        await _connect(greeting_orch)
        await greeting_orch.stop_session()
        await asyncio.sleep(0.15)

        assert synthesizer.requests == []
        await greeting_orch.aclose()

    @pytest.mark.asyncio
    async def test_no_greeting_when_speaker_off(self, greeting_orch, synthesizer):
        await greeting_orch.set_speaker(False)
        await _connect(greeting_orch)
        await asyncio.sleep(0.15)

        assert synthesizer.requests == []
        await greeting_orch.aclose()

    @pytest.mark.asyncio
    async def test_synthesis_failure_is_not_fatal(self, transport, audio_io):
        synthesizer = ToneGreetingSynthesizer(fail=True)
        orch = VoiceSessionOrchestrator(
            transport, audio_io, synthesizer, _settings(greeting_enabled=True)
        )
        await _connect(orch)
        await asyncio.sleep(0.15)

        assert orch.connection_state == ConnectionState.CONNECTED
        assert orch.transcript_history == []
        assert synthesizer.requests
        await orch.aclose()

    @pytest.mark.asyncio
    async def test_greeting_disabled(self, orchestrator, synthesizer):
        await _connect(orchestrator)
        await asyncio.sleep(0.15)
        assert synthesizer.requests == []

    @pytest.mark.asyncio
    async def test_greeting_armed_on_connect(self, greeting_orch, transport):
        transport.auto_open = False
        await greeting_orch.start_session()
        assert not greeting_orch.greeting_timer.armed

        transport.last_session.callbacks.on_open()
        await greeting_orch.flush()
        assert greeting_orch.greeting_timer.armed
        await greeting_orch.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_cancels_greeting(self, greeting_orch, transport, synthesizer):
        await _connect(greeting_orch)
        assert greeting_orch.greeting_timer.armed

        transport.last_session.fail()
        await greeting_orch.flush()
        await asyncio.sleep(0.15)

        assert not greeting_orch.greeting_timer.armed
        assert synthesizer.requests == []
        await greeting_orch.aclose()


class TestCreateOrchestrator:
    """Backend selection from settings."""

    @pytest.mark.asyncio
    async def test_mock_and_memory_backends(self):
        orch = create_orchestrator(_settings())
        await _connect(orch)
        assert orch.connection_state == ConnectionState.CONNECTED
        await orch.aclose()

    def test_gemini_without_key_fails_fast(self):
        with pytest.raises(MissingConfigError):
            create_orchestrator(_settings(voice_transport="gemini", gemini_api_key=None))
