"""Kokoro Live - Real-time voice companion session core."""

__version__ = "1.0.0"

# Export exception hierarchy for easy importing
from src.exceptions import (
    KokoroError,
    SessionError,
    SessionStateError,
    ConfigurationError,
    MissingConfigError,
    AudioError,
    PermissionDeniedError,
    AudioDeviceError,
    TransportError,
    TransportClosedError,
    MalformedMessageError,
    GreetingSynthesisError,
)

__all__ = [
    "__version__",
    # Base
    "KokoroError",
    # Session
    "SessionError",
    "SessionStateError",
    # Configuration
    "ConfigurationError",
    "MissingConfigError",
    # Audio
    "AudioError",
    "PermissionDeniedError",
    "AudioDeviceError",
    # Transport
    "TransportError",
    "TransportClosedError",
    "MalformedMessageError",
    # Greeting
    "GreetingSynthesisError",
]
