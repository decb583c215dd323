"""Voice Session Orchestrator - lifecycle of one real-time voice conversation.

Coordinates, for a single session at a time:
- Connection state machine (Idle → Connecting → Connected → Closed / Error)
- Audio capture: 16 kHz microphone blocks → PCM frames → transport
- Playback: streamed 24 kHz chunks scheduled gaplessly, cut on barge-in
- Transcript reconciliation: deltas → interim text → finalized history
- Greeting: canned spoken welcome after a quiet period

Every transport callback becomes a SessionEvent on one queue, consumed by
a single pump task, so session state is only ever mutated from one flow.
Events stamped with an old epoch, or arriving after stop, are dropped; a
late on_open can never resurrect a stopped session.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from typing import Any

from src.audio.base import AudioIO, CaptureContext
from src.audio.capture import CapturePipeline
from src.audio.clock import monotonic_ms
from src.audio.playback import PlaybackQueue
from src.config.settings import Settings, get_settings
from src.exceptions import (
    AudioError,
    GreetingSynthesisError,
    KokoroError,
    MalformedMessageError,
    TransportError,
)
from src.observability.logging import GreetingLogger, SessionLogger
from src.observability.metrics import (
    record_connect,
    record_error,
    record_greeting,
    record_session_connected,
    record_session_end,
    record_session_start,
    record_turn_complete,
)
from src.orchestrator.events import EventType, SessionEvent
from src.orchestrator.greeting import GreetingSynthesizer, GreetingTimer, choose_greeting
from src.orchestrator.state_machine import (
    ConnectionState,
    ConnectionStateMachine,
    StateChangeCallback,
    StateTransition,
)
from src.orchestrator.transcript import (
    HistoryCallback,
    InterimCallback,
    Speaker,
    TranscriptEntry,
    TranscriptReconciler,
)
from src.transport.base import (
    LiveConnectConfig,
    LiveSession,
    ServerEvent,
    StreamingVoiceTransport,
    TransportCallbacks,
)


class _SessionResources:
    """Everything acquired by one start_session call, released in reverse."""

    def __init__(self, epoch: int) -> None:
        self.epoch = epoch
        self.stack = contextlib.AsyncExitStack()
        self.capture: CaptureContext | None = None
        self.playback: PlaybackQueue | None = None
        self.transport_session: LiveSession | None = None
        self.pipeline: CapturePipeline | None = None

    async def release(self) -> None:
        """Run every pending release callback. Callbacks pushed after an
        earlier release run on the next call."""
        await self.stack.aclose()


class VoiceSessionOrchestrator:
    """Owns one voice conversation at a time.

    Usage:
        orchestrator = VoiceSessionOrchestrator(transport, audio_io, synthesizer)
        orchestrator.on_state_change(render_state)
        orchestrator.on_transcript(render_entry)
        orchestrator.on_interim(render_interim)

        await orchestrator.start_session()
        ...
        await orchestrator.stop_session()
    """

    def __init__(
        self,
        transport: StreamingVoiceTransport,
        audio_io: AudioIO,
        synthesizer: GreetingSynthesizer | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport
        self._audio_io = audio_io
        self._synthesizer = synthesizer

        self._session_id = ""
        self._epoch = 0
        self._fsm = ConnectionStateMachine()
        self._transcript = TranscriptReconciler()
        self._greeting = GreetingTimer(self._settings.greeting_delay_s, self._greet)
        self._resources: _SessionResources | None = None
        self._speaker_on = self._settings.speaker_on
        self._last_error: dict[str, Any] | None = None

        self._events: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._pump_task: asyncio.Task | None = None
        self._started_ms = 0
        self._was_connected = False

        self._logger = SessionLogger("")
        self._greeting_logger = GreetingLogger("")

        self._fsm.on_enter(ConnectionState.CONNECTED, self._arm_greeting)
        self._fsm.on_exit(ConnectionState.CONNECTED, self._disarm_greeting)

    # ------------------------------------------------------------------
    # UI-facing state
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def epoch(self) -> int:
        """Generation counter, bumped by every start_session."""
        return self._epoch

    @property
    def connection_state(self) -> ConnectionState:
        return self._fsm.state

    @property
    def transcript_history(self) -> list[TranscriptEntry]:
        return self._transcript.history

    @property
    def current_interim_transcription(self) -> str:
        return self._transcript.interim

    @property
    def last_error(self) -> dict[str, Any] | None:
        """Detail of the failure that ended the last session, if any."""
        return self._last_error

    @property
    def speaker_on(self) -> bool:
        return self._speaker_on

    @property
    def playback(self) -> PlaybackQueue | None:
        return self._resources.playback if self._resources else None

    @property
    def capture_pipeline(self) -> CapturePipeline | None:
        return self._resources.pipeline if self._resources else None

    @property
    def transcript(self) -> TranscriptReconciler:
        return self._transcript

    @property
    def state_history(self) -> list:
        return self._fsm.history

    @property
    def greeting_timer(self) -> GreetingTimer:
        return self._greeting

    def snapshot(self) -> dict[str, Any]:
        """Everything the UI renders, as plain data."""
        return {
            "session_id": self._session_id,
            "connection_state": self._fsm.state.value,
            "transcription_history": [e.to_dict() for e in self._transcript.history],
            "current_interim_transcription": self._transcript.interim,
            "speaker_on": self._speaker_on,
            "error": self._last_error,
        }

    def on_state_change(self, callback: StateChangeCallback) -> None:
        self._fsm.on_state_change(callback)

    def on_transcript(self, callback: HistoryCallback) -> None:
        self._transcript.on_entry(callback)

    def on_interim(self, callback: InterimCallback) -> None:
        self._transcript.on_interim(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_session(self) -> None:
        """Open a new session.

        No-op while Connecting or Connected. Failures end in the Error
        state followed by teardown; nothing is raised to the caller.
        """
        if self._fsm.is_active:
            return

        self._ensure_pump()
        self._epoch += 1
        epoch = self._epoch
        self._session_id = str(uuid.uuid4())
        self._fsm.session_id = self._session_id
        self._logger = SessionLogger(self._session_id)
        self._greeting_logger = GreetingLogger(self._session_id)
        self._transcript.reset()
        self._last_error = None
        self._was_connected = False
        self._started_ms = monotonic_ms()

        await self._transition(ConnectionState.CONNECTING, "start_session")
        record_session_start()
        self._logger.session_started({"epoch": epoch, "model": self._settings.live_model})

        resources = _SessionResources(epoch)
        self._resources = resources
        try:
            await self._acquire(resources)
        except KokoroError as e:
            await self._fail(epoch, e)
        except Exception as e:
            await self._fail(epoch, TransportError(f"Session setup failed: {e}"))

        if self._is_stale(epoch):
            # Stopped or failed mid-setup: release whatever was acquired after teardown ran
            await self._release(resources)

    async def _acquire(self, res: _SessionResources) -> None:
        settings = self._settings
        epoch = res.epoch

        capture = self._audio_io.open_capture(
            settings.capture_sample_rate, settings.capture_block_size
        )
        res.capture = capture
        res.stack.callback(capture.close)

        playback_ctx = self._audio_io.open_playback(settings.playback_sample_rate)
        playback = PlaybackQueue(playback_ctx, session_id=self._session_id)
        res.playback = playback
        res.stack.callback(playback.close)
        if not self._speaker_on:
            playback.mute()

        await capture.open_microphone()
        res.stack.callback(capture.stop)
        if self._is_stale(epoch):
            return

        config = LiveConnectConfig(
            model=settings.live_model,
            system_instruction=settings.system_instruction,
            response_modalities=("AUDIO",),
            input_audio_transcription=True,
            output_audio_transcription=True,
        )
        session = await self._transport.open(config, self._callbacks_for(epoch))
        res.transport_session = session
        res.stack.push_async_callback(self._close_transport, session)
        if self._is_stale(epoch):
            return

        pipeline = CapturePipeline(
            send=session.send,
            on_error=lambda e: self._post(SessionEvent.capture_failed(epoch, e)),
            clamp=settings.pcm_clamp,
            mime_type=settings.capture_mime_type,
            session_id=self._session_id,
        )
        res.pipeline = pipeline
        res.stack.push_async_callback(pipeline.stop)
        pipeline.start()
        capture.start(pipeline.on_block)

    async def stop_session(self, reason: str = "user_stop") -> None:
        """Tear down the current session. Safe from any state, any number of times."""
        self._greeting.cancel()
        await self._release_current()

        previous = self._fsm.state
        if previous is not ConnectionState.CLOSED:
            await self._transition(ConnectionState.CLOSED, reason)
            # A failure in progress has already recorded its end
            if previous is not ConnectionState.ERROR:
                self._end_metrics(reason)

    async def set_speaker(self, on: bool) -> None:
        """Mute/unmute by suspending or resuming the playback clock."""
        self._speaker_on = on
        playback = self.playback
        if playback is None:
            return
        if on:
            playback.unmute()
        else:
            playback.mute()

    async def aclose(self) -> None:
        """Stop the session and the event pump."""
        await self.stop_session("shutdown")
        task, self._pump_task = self._pump_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def flush(self) -> None:
        """Wait until every queued event has been handled."""
        if self._pump_task is not None:
            await self._events.join()

    # ------------------------------------------------------------------
    # Event pump
    # ------------------------------------------------------------------

    def _callbacks_for(self, epoch: int) -> TransportCallbacks:
        return TransportCallbacks(
            on_open=lambda: self._post(SessionEvent.opened(epoch)),
            on_message=lambda message: self._post(SessionEvent.message(epoch, message)),
            on_error=lambda error: self._post(SessionEvent.error(epoch, error)),
            on_close=lambda reason="": self._post(SessionEvent.closed(epoch, reason)),
        )

    def _post(self, event: SessionEvent) -> None:
        self._events.put_nowait(event)

    def _ensure_pump(self) -> None:
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self._dispatch(event)
            except Exception as e:
                self._logger.session_failed({"error": str(e), "event_kind": event.type.value})
                await self._fail(event.epoch, TransportError(f"Event handling failed: {e}"))
            finally:
                self._events.task_done()

    async def _dispatch(self, event: SessionEvent) -> None:
        """Single entry point for every asynchronous input."""
        if self._is_stale(event.epoch):
            self._logger.stale_event_dropped(event.type.value, event.epoch, self._epoch)
            return

        if event.type is EventType.TRANSPORT_OPENED:
            await self._handle_opened(event.epoch)
        elif event.type is EventType.TRANSPORT_MESSAGE:
            self._handle_message(event.payload)
        elif event.type in (EventType.TRANSPORT_ERROR, EventType.CAPTURE_FAILED):
            error = event.payload
            if not isinstance(error, KokoroError):
                error = TransportError(str(error) or error.__class__.__name__)
            await self._fail(event.epoch, error)
        elif event.type is EventType.TRANSPORT_CLOSED:
            await self._release_current()
            if self._is_stale(event.epoch):
                return
            await self._transition(
                ConnectionState.CLOSED, "remote_close", {"reason": event.reason}
            )
            self._end_metrics("remote_close")

    async def _handle_opened(self, epoch: int) -> None:
        if self._fsm.state is not ConnectionState.CONNECTING:
            return

        connect_ms = self._fsm.get_state_duration_ms()
        self._was_connected = True
        await self._transition(ConnectionState.CONNECTED, "transport_open")
        record_session_connected()
        record_connect(connect_ms)
        self._logger.session_connected(epoch, connect_ms)

    def _arm_greeting(self, transition: StateTransition) -> None:
        if self._settings.greeting_enabled and self._synthesizer is not None:
            self._greeting.arm()
            self._greeting_logger.armed(self._greeting.delay_s)

    def _disarm_greeting(self, transition: StateTransition) -> None:
        self._greeting.cancel()

    def _handle_message(self, message: Any) -> None:
        event = ServerEvent.from_message(message)

        if self._transcript.add_input_delta(event.input_text):
            if self._greeting.cancel():
                record_greeting("cancelled")
                self._greeting_logger.cancelled("user_speech")

        self._transcript.add_output_delta(event.output_text)

        if event.turn_complete:
            user_chars = len(self._transcript.pending_user.text.strip())
            ai_chars = len(self._transcript.pending_ai.text.strip())
            appended = self._transcript.complete_turn()
            record_turn_complete()
            self._logger.turn_completed(user_chars, ai_chars, len(appended))

        playback = self.playback
        if event.interrupted and playback is not None:
            playback.interrupt()

        if event.audio is not None and playback is not None:
            playback.enqueue_encoded(event.audio)
        elif event.malformed_field is not None:
            error = MalformedMessageError(event.malformed_field)
            record_error("transport", error.__class__.__name__)

    # ------------------------------------------------------------------
    # Greeting
    # ------------------------------------------------------------------

    async def _greet(self) -> None:
        epoch = self._epoch
        if (
            not self._speaker_on
            or self._fsm.state is not ConnectionState.CONNECTED
            or self._transcript.pending_user
            or self._synthesizer is None
        ):
            return

        text = choose_greeting()
        try:
            audio = await self._synthesizer.synthesize(text)
        except GreetingSynthesisError as e:
            record_greeting("failed")
            record_error("greeting", e.__class__.__name__)
            self._greeting_logger.failed(str(e))
            return

        playback = self.playback
        if self._is_stale(epoch) or playback is None:
            return

        self._transcript.add_entry(Speaker.AI, text)
        playback.enqueue(audio)
        record_greeting("played")
        self._greeting_logger.played(text, audio.duration)

    # ------------------------------------------------------------------
    # Failure and teardown
    # ------------------------------------------------------------------

    async def _fail(self, epoch: int, error: KokoroError) -> None:
        """Terminal failure: Error state, then full teardown to Closed."""
        if self._is_stale(epoch):
            return

        self._last_error = error.to_dict()
        component = "audio" if isinstance(error, AudioError) else "transport"
        record_error(component, error.__class__.__name__)
        self._logger.session_failed(self._last_error)

        await self._transition(ConnectionState.ERROR, "error", {"error": self._last_error})
        self._end_metrics("error")
        await self._release_current()

        # Error is not active, so a start_session may have taken over during teardown
        if self._epoch == epoch and self._fsm.state is ConnectionState.ERROR:
            await self._transition(ConnectionState.CLOSED, "teardown_after_error")

    async def _release_current(self) -> None:
        resources, self._resources = self._resources, None
        if resources is not None:
            await self._release(resources)

    async def _release(self, resources: _SessionResources) -> None:
        try:
            await resources.release()
        except Exception as e:
            self._logger.session_failed({"error": f"teardown: {e}"})

    async def _close_transport(self, session: LiveSession) -> None:
        try:
            await session.close()
        except Exception as e:
            self._logger.session_failed({"error": f"transport close: {e}"})

    def _is_stale(self, epoch: int) -> bool:
        return epoch != self._epoch or not self._fsm.is_active

    async def _transition(
        self,
        state: ConnectionState,
        reason: str,
        metadata: dict | None = None,
    ) -> None:
        old = self._fsm.state
        transition = await self._fsm.transition_to(state, reason, metadata)
        self._logger.state_change(old.value, state.value, reason, transition.t_ms)

    def _end_metrics(self, reason: str) -> None:
        if not self._epoch:
            return
        duration_s = (monotonic_ms() - self._started_ms) / 1000.0 if self._started_ms else 0.0
        record_session_end(reason, self._was_connected)
        self._was_connected = False
        self._logger.session_ended(reason=reason, duration_s=duration_s)


def create_orchestrator(
    settings: Settings | None = None,
    transport: StreamingVoiceTransport | None = None,
    audio_io: AudioIO | None = None,
    synthesizer: GreetingSynthesizer | None = None,
) -> VoiceSessionOrchestrator:
    """Build an orchestrator from settings.

    Backends not passed explicitly are chosen by settings.voice_transport
    and settings.audio_backend.
    """
    settings = settings or get_settings()

    if transport is None or synthesizer is None:
        if settings.voice_transport == "gemini":
            from src.orchestrator.greeting import GeminiGreetingSynthesizer
            from src.transport.gemini_live import GeminiLiveTransport, create_client

            client = create_client(settings.gemini_api_key)
            transport = transport or GeminiLiveTransport(client=client)
            synthesizer = synthesizer or GeminiGreetingSynthesizer(
                client,
                model=settings.tts_model,
                voice=settings.tts_voice,
                sample_rate=settings.playback_sample_rate,
            )
        else:
            from src.orchestrator.greeting import ToneGreetingSynthesizer
            from src.transport.mock import MockTransport

            transport = transport or MockTransport()
            synthesizer = synthesizer or ToneGreetingSynthesizer(settings.playback_sample_rate)

    if audio_io is None:
        if settings.audio_backend == "sounddevice":
            from src.audio.sounddevice_io import SoundDeviceIO

            audio_io = SoundDeviceIO(settings.input_device, settings.output_device)
        else:
            from src.audio.memory_io import MemoryAudioIO

            audio_io = MemoryAudioIO()

    return VoiceSessionOrchestrator(transport, audio_io, synthesizer, settings)
