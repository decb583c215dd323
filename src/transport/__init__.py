"""Streaming voice transports."""

from src.transport.base import (
    LiveConnectConfig,
    LiveSession,
    ServerEvent,
    StreamingVoiceTransport,
    TransportCallbacks,
)

__all__ = [
    "LiveConnectConfig",
    "LiveSession",
    "ServerEvent",
    "StreamingVoiceTransport",
    "TransportCallbacks",
]
