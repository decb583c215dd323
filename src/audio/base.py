"""Platform Audio Interface - capture devices and playback contexts.

The orchestrator never talks to a sound card directly. It asks an AudioIO
backend for two contexts and drives them through these interfaces:

- CaptureContext (16 kHz): open_microphone() acquires the input device,
  start() attaches the block processor, stop() detaches it and releases
  the microphone, close() closes the context.
- PlaybackContext (24 kHz): schedule() places a decoded buffer on the
  context's AudioClock and returns a PlaybackSource handle.

All callbacks handed to a context are invoked on the asyncio event loop
that created it, never on a device thread.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

import numpy as np

from src.audio.clock import AudioClock, ContextState
from src.audio.pcm import AudioBuffer

BlockCallback = Callable[[np.ndarray], None]
EndedCallback = Callable[["PlaybackSource"], None]


class PlaybackSource:
    """Handle for one buffer scheduled on a playback context.

    Fires its ended callbacks exactly once, either when the buffer has been
    fully rendered or when stop() is called.
    """

    def __init__(self, buffer: AudioBuffer, start_time: float, start_frame: int) -> None:
        self.buffer = buffer
        self.start_time = start_time
        self.start_frame = start_frame
        self._stopped = False
        self._ended = False
        self._callbacks: list[EndedCallback] = []

    @property
    def duration(self) -> float:
        return self.buffer.duration

    @property
    def end_frame(self) -> int:
        return self.start_frame + len(self.buffer)

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def ended(self) -> bool:
        return self._ended

    def on_ended(self, callback: EndedCallback) -> None:
        """Register a callback for the end of playback."""
        if self._ended:
            callback(self)
            return
        self._callbacks.append(callback)

    def stop(self) -> None:
        """Stop playback immediately. Safe to call more than once."""
        self._stopped = True
        self._finish()

    def _finish(self) -> None:
        if self._ended:
            return
        self._ended = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(self)


class CaptureContext(ABC):
    """Microphone capture at a fixed sample rate, processed in fixed blocks."""

    def __init__(self, sample_rate: int, block_size: int) -> None:
        self.sample_rate = sample_rate
        self.block_size = block_size
        self._state = ContextState.RUNNING

    @property
    def state(self) -> ContextState:
        return self._state

    @abstractmethod
    async def open_microphone(self) -> None:
        """Acquire the input device.

        Raises:
            PermissionDeniedError: If access to the microphone is refused
        """

    @abstractmethod
    def start(self, on_block: BlockCallback) -> None:
        """Attach the block processor; on_block receives float32 mono blocks."""

    @abstractmethod
    def stop(self) -> None:
        """Detach the processor and release the microphone. Idempotent."""

    def close(self) -> None:
        """Close the context. Idempotent."""
        self.stop()
        self._state = ContextState.CLOSED


class PlaybackContext(ABC):
    """Scheduled-buffer playback on a suspendable audio clock."""

    def __init__(self, sample_rate: int) -> None:
        self.sample_rate = sample_rate
        self.clock = AudioClock(sample_rate)

    @property
    def state(self) -> ContextState:
        return self.clock.state

    @property
    def current_time(self) -> float:
        return self.clock.current_time

    @abstractmethod
    def schedule(self, buffer: AudioBuffer, when: float) -> PlaybackSource:
        """Schedule a buffer to start at clock time `when` (seconds)."""

    def suspend(self) -> None:
        self.clock.suspend()

    def resume(self) -> None:
        self.clock.resume()

    def close(self) -> None:
        self.clock.close()


class AudioIO(ABC):
    """Factory for the two audio contexts of a voice session."""

    @abstractmethod
    def open_capture(self, sample_rate: int, block_size: int) -> CaptureContext:
        """Create a capture context (does not touch the microphone yet)."""

    @abstractmethod
    def open_playback(self, sample_rate: int) -> PlaybackContext:
        """Create a running playback context."""
