"""Kokoro Live Exception Hierarchy.

Provides structured exception classes for the voice session core.

Hierarchy:
    KokoroError (base)
    ├── SessionError
    │   └── SessionStateError
    ├── ConfigurationError
    │   └── MissingConfigError
    ├── AudioError
    │   ├── PermissionDeniedError
    │   └── AudioDeviceError
    ├── TransportError
    │   ├── TransportClosedError
    │   └── MalformedMessageError
    └── GreetingSynthesisError
"""

from typing import Any


class KokoroError(Exception):
    """Base exception for all Kokoro Live errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the session survives the error
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(KokoroError):
    """Base exception for session-related errors."""

    def __init__(
        self,
        message: str,
        session_id: str | None = None,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        details = details or {}
        if session_id:
            details["session_id"] = session_id
        super().__init__(message, details, recoverable)
        self.session_id = session_id


class SessionStateError(SessionError):
    """Raised for invalid connection state transitions."""

    def __init__(
        self,
        current_state: str,
        target_state: str,
        session_id: str | None = None,
    ) -> None:
        super().__init__(
            message=f"Invalid transition: {current_state} → {target_state}",
            session_id=session_id,
            details={"current_state": current_state, "target_state": target_state},
        )
        self.current_state = current_state
        self.target_state = target_state


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(KokoroError):
    """Base exception for configuration errors."""


class MissingConfigError(ConfigurationError):
    """Raised when a required setting is missing."""

    def __init__(self, key: str) -> None:
        super().__init__(
            message=f"Missing required configuration: {key}",
            details={"key": key},
        )
        self.key = key


# =============================================================================
# Audio Errors
# =============================================================================


class AudioError(KokoroError):
    """Base exception for platform audio errors."""


class PermissionDeniedError(AudioError):
    """Raised when microphone access is refused."""

    def __init__(self, reason: str = "microphone access denied") -> None:
        super().__init__(message=reason, recoverable=False)


class AudioDeviceError(AudioError):
    """Raised when an audio device cannot be opened or driven."""


# =============================================================================
# Transport Errors
# =============================================================================


class TransportError(KokoroError):
    """Any failure reported by the streaming voice transport. Terminal."""


class TransportClosedError(TransportError):
    """Raised when the remote end closed the session gracefully."""

    def __init__(self, reason: str = "") -> None:
        super().__init__(
            message="Transport closed",
            details={"reason": reason} if reason else None,
        )


class MalformedMessageError(TransportError):
    """Raised when a server message lacks an expected field.

    Recoverable: only the affected part of the message is skipped.
    """

    def __init__(self, field_name: str) -> None:
        super().__init__(
            message=f"Malformed server message: {field_name}",
            details={"field": field_name},
            recoverable=True,
        )


# =============================================================================
# Greeting Errors
# =============================================================================


class GreetingSynthesisError(KokoroError):
    """Raised when the canned greeting cannot be synthesized."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details, recoverable=True)
