"""Audio Clock - Monotonic time sources for capture, playback and transcripts.

Two clocks live here:

- AudioClock: the playback timeline of one audio context. It only advances
  while frames are actually rendered, so suspending the context (speaker
  mute) freezes it and resuming continues from where it left off. Buffer
  start times are expressed in seconds on this clock.
- monotonic_ms(): process-relative wall-independent milliseconds used for
  transcript timestamps and state transition records.

Platform notes:
- monotonic_ms uses time.monotonic_ns() (CLOCK_MONOTONIC on Linux,
  QueryPerformanceCounter on Windows)
- AudioClock is advanced from the PortAudio callback thread, so all access
  goes through a lock
"""

import threading
import time
from enum import Enum
from typing import Final

NS_PER_MS: Final[int] = 1_000_000

_PROCESS_START_NS: Final[int] = time.monotonic_ns()


def monotonic_ms() -> int:
    """Milliseconds since process start. Never decreases."""
    return (time.monotonic_ns() - _PROCESS_START_NS) // NS_PER_MS


class ContextState(Enum):
    """Lifecycle of an audio context."""

    RUNNING = "running"
    SUSPENDED = "suspended"
    CLOSED = "closed"


class AudioClock:
    """Frame-driven playback clock for one audio context.

    Usage:
        clock = AudioClock(sample_rate=24000)

        # From the render loop
        clock.advance(frames)

        # From the scheduler
        start = max(next_start_time, clock.current_time)
    """

    def __init__(self, sample_rate: int) -> None:
        if sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {sample_rate}")
        self._sample_rate = sample_rate
        self._frames = 0
        self._state = ContextState.RUNNING
        self._lock = threading.Lock()

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def state(self) -> ContextState:
        with self._lock:
            return self._state

    @property
    def frame_position(self) -> int:
        """Frames rendered so far."""
        with self._lock:
            return self._frames

    @property
    def current_time(self) -> float:
        """Seconds of audio rendered so far."""
        with self._lock:
            return self._frames / self._sample_rate

    def advance(self, frames: int) -> int:
        """Advance the clock by rendered frames.

        Ignored unless the context is running.

        Returns:
            Frame position before the advance
        """
        if frames < 0:
            raise ValueError("cannot rewind the audio clock")
        with self._lock:
            before = self._frames
            if self._state is ContextState.RUNNING:
                self._frames += frames
            return before

    def time_to_frame(self, t: float) -> int:
        """Convert clock seconds to a frame index."""
        return int(round(t * self._sample_rate))

    def suspend(self) -> None:
        with self._lock:
            if self._state is ContextState.RUNNING:
                self._state = ContextState.SUSPENDED

    def resume(self) -> None:
        with self._lock:
            if self._state is ContextState.SUSPENDED:
                self._state = ContextState.RUNNING

    def close(self) -> None:
        with self._lock:
            self._state = ContextState.CLOSED

    @property
    def is_closed(self) -> bool:
        return self.state is ContextState.CLOSED
