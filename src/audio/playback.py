"""Playback Queue - gapless scheduling of streamed audio with barge-in.

Chunks arrive asynchronously and in varying sizes. Each one is scheduled at
max(next_start_time, clock.current_time) and the cursor advances by the
chunk's duration, so consecutive chunks play back-to-back with no overlap.

An interruption stops every active source, clears the set and resets the
cursor to 0: everything queued for the future is discarded at once.
"""

from __future__ import annotations

from src.audio.base import PlaybackContext, PlaybackSource
from src.audio.pcm import AudioBuffer, decode_audio
from src.observability.logging import PlaybackLogger
from src.observability.metrics import record_barge_in, record_chunk_scheduled


class PlaybackQueue:
    """Schedules decoded buffers on a playback context.

    Usage:
        queue = PlaybackQueue(context, session_id="session-123")
        queue.enqueue_encoded(base64_chunk)
        ...
        queue.interrupt()  # user barged in
    """

    def __init__(self, context: PlaybackContext, session_id: str = "") -> None:
        self._context = context
        self._log = PlaybackLogger(session_id)
        self.active_sources: set[PlaybackSource] = set()
        self.next_start_time: float = 0.0

    @property
    def context(self) -> PlaybackContext:
        return self._context

    @property
    def is_playing(self) -> bool:
        return bool(self.active_sources)

    def enqueue(self, buffer: AudioBuffer) -> PlaybackSource:
        """Schedule a buffer right after everything already queued."""
        self.next_start_time = max(self.next_start_time, self._context.current_time)
        source = self._context.schedule(buffer, self.next_start_time)
        self.active_sources.add(source)
        source.on_ended(self._on_ended)
        self.next_start_time += buffer.duration

        record_chunk_scheduled(buffer.duration, len(self.active_sources))
        self._log.chunk_scheduled(source.start_time, buffer.duration, len(self.active_sources))
        return source

    def enqueue_encoded(self, data: str | bytes) -> PlaybackSource | None:
        """Decode a streamed chunk and schedule it.

        Returns:
            The scheduled source, or None if the payload could not be decoded
        """
        try:
            buffer = decode_audio(data, sample_rate=self._context.sample_rate)
        except ValueError as e:
            self._log.chunk_skipped(str(e))
            return None
        return self.enqueue(buffer)

    def interrupt(self) -> int:
        """Hard barge-in cutoff.

        Returns:
            Number of sources stopped
        """
        stopped = self._stop_all()
        record_barge_in()
        self._log.interrupted(stopped)
        return stopped

    def close(self) -> None:
        """Stop everything and close the playback context."""
        self._stop_all()
        self._context.close()

    def _stop_all(self) -> int:
        sources = list(self.active_sources)
        for source in sources:
            source.stop()
        self.active_sources.clear()
        self.next_start_time = 0.0
        return len(sources)

    def mute(self) -> None:
        """Suspend the playback clock."""
        self._context.suspend()

    def unmute(self) -> None:
        """Resume the playback clock where it left off."""
        self._context.resume()

    def _on_ended(self, source: PlaybackSource) -> None:
        self.active_sources.discard(source)
