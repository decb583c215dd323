"""Session API Routes - control surface for the voice session.

Provides endpoints for the UI layer:
- Start / stop the session
- Read connection state, transcript history and interim text
- Toggle the speaker
- WebSocket stream of state, transcript and interim events
"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from src.api.websocket.events import EventBroadcaster, EventClient
from src.orchestrator.orchestrator import VoiceSessionOrchestrator, create_orchestrator

router = APIRouter(prefix="/session", tags=["session"])

# Global orchestrator (initialized on startup)
_orchestrator: VoiceSessionOrchestrator | None = None
_broadcaster: EventBroadcaster | None = None


def get_orchestrator() -> VoiceSessionOrchestrator:
    """Get global orchestrator, creating it from settings on first use."""
    global _orchestrator
    if _orchestrator is None:
        set_orchestrator(create_orchestrator())
    return _orchestrator


def get_broadcaster() -> EventBroadcaster:
    """Get global event broadcaster."""
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = EventBroadcaster()
    return _broadcaster


def set_orchestrator(orchestrator: VoiceSessionOrchestrator | None) -> None:
    """Install the orchestrator served by these routes and wire its events."""
    global _orchestrator, _broadcaster
    _orchestrator = orchestrator
    _broadcaster = EventBroadcaster()
    if orchestrator is not None:
        _broadcaster.attach(orchestrator)


# Request/Response models
class TranscriptEntryModel(BaseModel):
    """One finalized transcript line."""

    speaker: str
    text: str
    timestamp: int


class SessionStatusResponse(BaseModel):
    """Everything the UI renders."""

    session_id: str
    connection_state: str
    transcription_history: list[TranscriptEntryModel]
    current_interim_transcription: str
    speaker_on: bool
    error: dict | None = None


class SpeakerRequest(BaseModel):
    """Speaker toggle."""

    on: bool = Field(..., description="True to play AI audio, False to mute")


def _status(orchestrator: VoiceSessionOrchestrator) -> SessionStatusResponse:
    return SessionStatusResponse(**orchestrator.snapshot())


# Endpoints
@router.get("", response_model=SessionStatusResponse)
async def get_session() -> SessionStatusResponse:
    """Current connection state and transcript."""
    return _status(get_orchestrator())


@router.post("/start", response_model=SessionStatusResponse)
async def start_session() -> SessionStatusResponse:
    """Start a session.

    No-op while a session is already connecting or connected. Setup
    failures are reported through connection_state and error, not as
    HTTP errors.
    """
    orchestrator = get_orchestrator()
    await orchestrator.start_session()
    return _status(orchestrator)


@router.post("/stop", response_model=SessionStatusResponse)
async def stop_session() -> SessionStatusResponse:
    """Stop the session. Safe to call in any state."""
    orchestrator = get_orchestrator()
    await orchestrator.stop_session()
    return _status(orchestrator)


@router.post("/speaker", response_model=SessionStatusResponse)
async def set_speaker(request: SpeakerRequest) -> SessionStatusResponse:
    """Mute or unmute AI audio."""
    orchestrator = get_orchestrator()
    await orchestrator.set_speaker(request.on)
    return _status(orchestrator)


@router.websocket("/events")
async def session_events(websocket: WebSocket) -> None:
    """Stream session events to a UI client.

    Sends a snapshot on connect, then state, transcript and interim
    events as they happen. Client messages are ignored.
    """
    orchestrator = get_orchestrator()
    broadcaster = get_broadcaster()
    client = EventClient(websocket)
    await client.connect()
    client.publish({"type": "snapshot", **orchestrator.snapshot()})
    broadcaster.add(client)

    try:
        while client.is_connected:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.remove(client)
        await client.disconnect()
