"""In-memory audio backend - no sound card required.

Used for:
- Unit tests (blocks are fed by hand, the playback clock is advanced by hand)
- Headless runs of the service (audio_backend=memory)

MemoryPlayback renders through the same PlaybackMixer as the sound card
backend; the only difference is who calls render().
"""

from __future__ import annotations

import numpy as np

from src.audio.base import AudioIO, BlockCallback, CaptureContext, PlaybackContext, PlaybackSource
from src.audio.clock import ContextState
from src.audio.mixer import PlaybackMixer
from src.audio.pcm import AudioBuffer
from src.exceptions import AudioDeviceError, PermissionDeniedError


class MemoryCapture(CaptureContext):
    """Capture context fed through feed()."""

    def __init__(self, sample_rate: int, block_size: int, deny: bool = False) -> None:
        super().__init__(sample_rate, block_size)
        self.deny = deny
        self.mic_open = False
        self.mic_opened_count = 0
        self._on_block: BlockCallback | None = None

    @property
    def processing(self) -> bool:
        return self._on_block is not None

    async def open_microphone(self) -> None:
        if self.deny:
            raise PermissionDeniedError()
        self.mic_open = True
        self.mic_opened_count += 1

    def start(self, on_block: BlockCallback) -> None:
        if not self.mic_open:
            raise AudioDeviceError("microphone not open")
        self._on_block = on_block

    def stop(self) -> None:
        self._on_block = None
        self.mic_open = False

    def feed(self, block: np.ndarray | None = None) -> None:
        """Deliver one block (silence when omitted)."""
        if block is None:
            block = np.zeros(self.block_size, dtype=np.float32)
        if self._on_block is not None:
            self._on_block(np.asarray(block, dtype=np.float32))


class MemoryPlayback(PlaybackContext):
    """Playback context whose clock moves only when render()/advance() is called."""

    def __init__(self, sample_rate: int) -> None:
        super().__init__(sample_rate)
        self._mixer = PlaybackMixer(self.clock)
        self.rendered: list[np.ndarray] = []

    @property
    def pending(self) -> int:
        return self._mixer.pending

    def schedule(self, buffer: AudioBuffer, when: float) -> PlaybackSource:
        if self.state is ContextState.CLOSED:
            raise AudioDeviceError("playback context is closed")
        return self._mixer.schedule(buffer, when)

    def render(self, frames: int) -> np.ndarray:
        out = self._mixer.render(frames)
        self.rendered.append(out)
        return out

    def advance(self, seconds: float) -> np.ndarray:
        """Render `seconds` of audio."""
        return self.render(self.clock.time_to_frame(seconds))

    def close(self) -> None:
        super().close()
        self._mixer.clear()


class MemoryAudioIO(AudioIO):
    """AudioIO that hands out in-memory contexts and remembers them."""

    def __init__(self, deny_microphone: bool = False) -> None:
        self.deny_microphone = deny_microphone
        self.captures: list[MemoryCapture] = []
        self.playbacks: list[MemoryPlayback] = []

    @property
    def capture(self) -> MemoryCapture | None:
        return self.captures[-1] if self.captures else None

    @property
    def playback(self) -> MemoryPlayback | None:
        return self.playbacks[-1] if self.playbacks else None

    def open_capture(self, sample_rate: int, block_size: int) -> CaptureContext:
        capture = MemoryCapture(sample_rate, block_size, deny=self.deny_microphone)
        self.captures.append(capture)
        return capture

    def open_playback(self, sample_rate: int) -> PlaybackContext:
        playback = MemoryPlayback(sample_rate)
        self.playbacks.append(playback)
        return playback
