"""WebSocket API package."""

from src.api.websocket.events import EventBroadcaster, EventClient

__all__ = [
    "EventBroadcaster",
    "EventClient",
]
