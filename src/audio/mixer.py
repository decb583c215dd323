"""Playback Mixer - renders scheduled buffers against an AudioClock.

The mixer is the render side of a playback context: the device callback
asks it for N frames, it sums every scheduled source overlapping that
window, advances the clock by N and reports sources that finished.

Finished sources are reported through `call_soon` so their ended
callbacks run on the event loop, not on the device thread.
"""

from __future__ import annotations

import threading
from typing import Callable

import numpy as np

from src.audio.base import PlaybackSource
from src.audio.clock import AudioClock, ContextState
from src.audio.pcm import AudioBuffer


def _call_now(callback: Callable[[], None]) -> None:
    callback()


class PlaybackMixer:
    """Sums scheduled mono sources into output blocks.

    Usage:
        mixer = PlaybackMixer(clock, call_soon=loop.call_soon_threadsafe)
        source = mixer.schedule(buffer, when=clock.current_time)

        # Device callback
        outdata[:, 0] = mixer.render(frames)
    """

    def __init__(
        self,
        clock: AudioClock,
        call_soon: Callable[[Callable[[], None]], object] = _call_now,
    ) -> None:
        self._clock = clock
        self._call_soon = call_soon
        self._sources: list[PlaybackSource] = []
        self._lock = threading.Lock()

    @property
    def pending(self) -> int:
        """Sources scheduled and not yet finished."""
        with self._lock:
            return len(self._sources)

    def schedule(self, buffer: AudioBuffer, when: float) -> PlaybackSource:
        """Place a buffer on the timeline starting at clock time `when`."""
        if buffer.sample_rate != self._clock.sample_rate:
            raise ValueError(
                f"buffer rate {buffer.sample_rate} != context rate {self._clock.sample_rate}"
            )
        source = PlaybackSource(buffer, when, self._clock.time_to_frame(when))
        with self._lock:
            self._sources.append(source)
        return source

    def render(self, frames: int) -> np.ndarray:
        """Render the next `frames` samples and advance the clock."""
        out = np.zeros(frames, dtype=np.float32)
        if self._clock.state is not ContextState.RUNNING:
            return out

        pos = self._clock.frame_position
        window_end = pos + frames
        finished: list[PlaybackSource] = []

        with self._lock:
            for source in list(self._sources):
                if source.stopped:
                    self._sources.remove(source)
                    continue

                begin = max(source.start_frame, pos)
                end = min(source.end_frame, window_end)
                if end > begin:
                    offset = begin - source.start_frame
                    out[begin - pos:end - pos] += source.buffer.samples[offset:offset + end - begin]

                if source.end_frame <= window_end:
                    self._sources.remove(source)
                    finished.append(source)

        self._clock.advance(frames)

        for source in finished:
            self._call_soon(source._finish)

        np.clip(out, -1.0, 1.0, out=out)
        return out

    def clear(self) -> None:
        """Drop every scheduled source without firing callbacks."""
        with self._lock:
            self._sources.clear()
