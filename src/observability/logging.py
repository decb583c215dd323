"""Structured Logging - JSON logs with correlation.

Provides structured logging for:
- Session events (start, stop, state changes)
- Transcript finalization
- Playback scheduling and barge-in
- Greeting synthesis
- Error tracking

All session logs include session_id for correlation.
"""

import logging
import sys
from typing import Any

import structlog


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
) -> None:
    """Configure structured logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON; else human-readable
    """
    level = "WARNING" if level.upper() == "WARN" else level.upper()

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Also configure standard logging so library logs share the stream
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level),
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Bound structlog logger
    """
    return structlog.get_logger(name)



# -----------------------------------------------------------------------------
# Event-specific logging functions
# -----------------------------------------------------------------------------


class SessionLogger:
    """Logger for session-related events."""

    def __init__(self, session_id: str) -> None:
        self._session_id = session_id
        self._log = get_logger("session").bind(session_id=session_id)

    def session_started(self, metadata: dict[str, Any] | None = None) -> None:
        """Log session start."""
        self._log.info(
            "session_started",
            event_type="session.started",
            **(metadata or {}),
        )

    def session_connected(self, epoch: int, connect_ms: float) -> None:
        """Log transport open."""
        self._log.info(
            "session_connected",
            event_type="session.connected",
            epoch=epoch,
            connect_ms=connect_ms,
        )

    def session_ended(self, reason: str, duration_s: float) -> None:
        """Log session end."""
        self._log.info(
            "session_ended",
            event_type="session.ended",
            reason=reason,
            duration_s=duration_s,
        )

    def session_failed(self, error: dict[str, Any]) -> None:
        """Log terminal session failure."""
        self._log.error(
            "session_failed",
            event_type="session.failed",
            **error,
        )

    def state_change(
        self,
        old_state: str,
        new_state: str,
        reason: str,
        t_ms: int,
    ) -> None:
        """Log state transition."""
        self._log.info(
            "state_change",
            event_type="session.state_change",
            old_state=old_state,
            new_state=new_state,
            reason=reason,
            t_ms=t_ms,
        )

    def stale_event_dropped(self, event: str, event_epoch: int, epoch: int) -> None:
        """Log a callback that arrived for a session that was already stopped."""
        self._log.debug(
            "stale_event_dropped",
            event_type="session.stale_event",
            event=event,
            event_epoch=event_epoch,
            epoch=epoch,
        )

    def turn_completed(self, user_chars: int, ai_chars: int, entries: int) -> None:
        """Log turn finalization."""
        self._log.info(
            "turn_completed",
            event_type="turn.completed",
            user_chars=user_chars,
            ai_chars=ai_chars,
            entries=entries,
        )


class PlaybackLogger:
    """Logger for playback scheduling and barge-in events."""

    def __init__(self, session_id: str) -> None:
        self._session_id = session_id
        self._log = get_logger("playback").bind(session_id=session_id)

    def chunk_scheduled(self, start_time: float, duration: float, active: int) -> None:
        """Log a chunk scheduled on the playback clock."""
        self._log.debug(
            "chunk_scheduled",
            event_type="playback.scheduled",
            start_time=start_time,
            duration=duration,
            active=active,
        )

    def chunk_skipped(self, reason: str) -> None:
        """Log a chunk that could not be decoded."""
        self._log.warning(
            "chunk_skipped",
            event_type="playback.skipped",
            reason=reason,
        )

    def interrupted(self, stopped: int) -> None:
        """Log barge-in cutoff."""
        self._log.info(
            "playback_interrupted",
            event_type="playback.interrupted",
            stopped=stopped,
        )


class GreetingLogger:
    """Logger for the canned greeting."""

    def __init__(self, session_id: str) -> None:
        self._session_id = session_id
        self._log = get_logger("greeting").bind(session_id=session_id)

    def armed(self, delay_s: float) -> None:
        """Log greeting timer armed."""
        self._log.debug("greeting_armed", event_type="greeting.armed", delay_s=delay_s)

    def cancelled(self, reason: str) -> None:
        """Log greeting timer cancelled."""
        self._log.debug(
            "greeting_cancelled",
            event_type="greeting.cancelled",
            reason=reason,
        )

    def played(self, text: str, duration_s: float) -> None:
        """Log greeting played."""
        self._log.info(
            "greeting_played",
            event_type="greeting.played",
            text=text,
            duration_s=duration_s,
        )

    def failed(self, error: str) -> None:
        """Log greeting synthesis failure."""
        self._log.error(
            "greeting_failed",
            event_type="greeting.failed",
            error=error,
        )

