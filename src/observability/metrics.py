"""Prometheus Metrics - voice session observability.

Exports:
- Session counts and connect latency
- Uploaded frame and scheduled chunk counts
- Barge-in counts
- Greeting outcomes
- Transport errors
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# -----------------------------------------------------------------------------
# Latency Histograms
# -----------------------------------------------------------------------------

# Connect latency: start_session → transport open
CONNECT_HISTOGRAM = Histogram(
    "kokoro_connect_seconds",
    "Time from start_session to transport open",
    buckets=[0.1, 0.25, 0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 5.0],
)

# Playback chunk durations
CHUNK_DURATION_HISTOGRAM = Histogram(
    "kokoro_playback_chunk_seconds",
    "Duration of scheduled playback chunks",
    buckets=[0.02, 0.04, 0.08, 0.16, 0.32, 0.64, 1.28, 2.56],
)

# -----------------------------------------------------------------------------
# Counters
# -----------------------------------------------------------------------------

# Session lifecycle
SESSION_STARTED = Counter(
    "kokoro_sessions_started_total",
    "Total sessions started",
)

SESSION_ENDED = Counter(
    "kokoro_sessions_ended_total",
    "Total sessions ended",
    ["reason"],  # user_stop, remote_close, error
)

# Audio pipeline
FRAMES_SENT = Counter(
    "kokoro_frames_sent_total",
    "Capture frames pushed to the transport",
)

CHUNKS_SCHEDULED = Counter(
    "kokoro_playback_chunks_total",
    "Playback chunks scheduled",
)

BARGE_IN_EVENTS = Counter(
    "kokoro_barge_in_events_total",
    "Total barge-in interruptions",
)

# Transcript
TURNS_COMPLETED = Counter(
    "kokoro_turns_completed_total",
    "Total conversation turns finalized",
)

# Greeting
GREETINGS = Counter(
    "kokoro_greetings_total",
    "Greeting outcomes",
    ["outcome"],  # played, cancelled, failed
)

# Errors
ERRORS = Counter(
    "kokoro_errors_total",
    "Total errors by component",
    ["component", "type"],  # transport, audio, greeting
)

# -----------------------------------------------------------------------------
# Gauges
# -----------------------------------------------------------------------------

ACTIVE_SESSIONS = Gauge(
    "kokoro_active_sessions",
    "Currently connected sessions",
)

ACTIVE_SOURCES = Gauge(
    "kokoro_active_playback_sources",
    "Playback buffers currently scheduled or playing",
)

# -----------------------------------------------------------------------------
# Info
# -----------------------------------------------------------------------------

BUILD_INFO = Info(
    "kokoro_build",
    "Build information",
)


# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------


def record_connect(latency_ms: float) -> None:
    """Record connect latency in milliseconds."""
    CONNECT_HISTOGRAM.observe(latency_ms / 1000.0)


def record_session_start() -> None:
    """Record session start."""
    SESSION_STARTED.inc()


def record_session_connected() -> None:
    """Record session reaching Connected."""
    ACTIVE_SESSIONS.inc()


def record_session_end(reason: str, was_connected: bool) -> None:
    """Record session end."""
    SESSION_ENDED.labels(reason=reason).inc()
    if was_connected:
        ACTIVE_SESSIONS.dec()


def record_frame_sent() -> None:
    """Record one capture frame dispatched."""
    FRAMES_SENT.inc()


def record_chunk_scheduled(duration_s: float, active: int) -> None:
    """Record one playback chunk scheduled."""
    CHUNKS_SCHEDULED.inc()
    CHUNK_DURATION_HISTOGRAM.observe(duration_s)
    ACTIVE_SOURCES.set(active)


def record_barge_in() -> None:
    """Record barge-in interruption."""
    BARGE_IN_EVENTS.inc()
    ACTIVE_SOURCES.set(0)


def record_turn_complete() -> None:
    """Record turn finalization."""
    TURNS_COMPLETED.inc()


def record_greeting(outcome: str) -> None:
    """Record greeting outcome."""
    GREETINGS.labels(outcome=outcome).inc()


def record_error(component: str, error_type: str) -> None:
    """Record error."""
    ERRORS.labels(component=component, type=error_type).inc()


def set_build_info(version: str, environment: str) -> None:
    """Set build information."""
    BUILD_INFO.info({"version": version, "environment": environment})
