"""WebSocket Events - pushes session state to UI clients.

Every connected client gets its own bounded send queue. The orchestrator's
listeners publish plain dicts to all of them; a slow client drops events
instead of stalling the session.

Event shapes:
    {"type": "state", "state": "connected", "reason": "...", "t_ms": 123}
    {"type": "transcript", "entry": {"speaker": "user", "text": "...", "timestamp": 1}}
    {"type": "interim", "text": "Hel"}
    {"type": "snapshot", ...orchestrator snapshot...}
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from src.observability.logging import get_logger
from src.orchestrator.orchestrator import VoiceSessionOrchestrator
from src.orchestrator.state_machine import StateTransition
from src.orchestrator.transcript import TranscriptEntry

logger = get_logger(__name__)


class EventClient:
    """One connected UI client.

    Usage:
        client = EventClient(websocket)
        await client.connect()
        client.publish({"type": "interim", "text": "Hel"})
        await client.disconnect()
    """

    def __init__(self, websocket: WebSocket, max_queue: int = 256) -> None:
        self._websocket = websocket
        self._connected = False
        self._send_queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._send_task: asyncio.Task | None = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        await self._websocket.accept()
        self._connected = True
        self._send_task = asyncio.create_task(self._send_loop())
        logger.info("events_ws_connected")

    async def disconnect(self) -> None:
        self._connected = False

        if self._send_task:
            self._send_task.cancel()
            try:
                await self._send_task
            except asyncio.CancelledError:
                pass

        if self._websocket.client_state == WebSocketState.CONNECTED:
            try:
                await self._websocket.close()
            except RuntimeError as e:
                logger.debug("events_ws_close_error", error=str(e))

        logger.info("events_ws_disconnected")

    def publish(self, event: dict[str, Any]) -> bool:
        """Queue an event. Returns False if the client is gone or too slow."""
        if not self._connected:
            return False
        try:
            self._send_queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            logger.debug("events_ws_dropped", type=event.get("type"))
            return False

    async def _send_loop(self) -> None:
        while self._connected:
            event = await self._send_queue.get()
            try:
                await self._websocket.send_json(event)
            except WebSocketDisconnect:
                self._connected = False
                break
            except Exception as e:
                logger.warning("events_ws_send_error", error=str(e))
                self._connected = False
                break


class EventBroadcaster:
    """Fans orchestrator events out to every connected client."""

    def __init__(self) -> None:
        self._clients: set[EventClient] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def attach(self, orchestrator: VoiceSessionOrchestrator) -> None:
        """Subscribe to the orchestrator's listeners."""
        orchestrator.on_state_change(self._on_state)
        orchestrator.on_transcript(self._on_entry)
        orchestrator.on_interim(self._on_interim)

    def add(self, client: EventClient) -> None:
        self._clients.add(client)

    def remove(self, client: EventClient) -> None:
        self._clients.discard(client)

    def publish(self, event: dict[str, Any]) -> None:
        for client in list(self._clients):
            if not client.is_connected:
                self._clients.discard(client)
                continue
            client.publish(event)

    def _on_state(self, transition: StateTransition) -> None:
        self.publish({
            "type": "state",
            "state": transition.new_state.value,
            "previous": transition.old_state.value,
            "reason": transition.reason,
            "t_ms": transition.t_ms,
        })

    def _on_entry(self, entry: TranscriptEntry) -> None:
        self.publish({"type": "transcript", "entry": entry.to_dict()})

    def _on_interim(self, text: str) -> None:
        self.publish({"type": "interim", "text": text})
