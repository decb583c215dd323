"""Sound card backend - PortAudio via sounddevice.

Capture: an InputStream with a fixed blocksize delivers float32 blocks on
the PortAudio thread; each block is copied and handed to the event loop.

Playback: an OutputStream pulls frames from a PlaybackMixer. Suspending
the context stops the stream, which freezes the AudioClock because no
frames are rendered.

Requirements:
    pip install sounddevice  (needs the PortAudio shared library)
"""

from __future__ import annotations

import asyncio
from typing import Any

import numpy as np
import sounddevice as sd

from src.audio.base import AudioIO, BlockCallback, CaptureContext, PlaybackContext, PlaybackSource
from src.audio.clock import ContextState
from src.audio.mixer import PlaybackMixer
from src.audio.pcm import AudioBuffer
from src.config.constants import VOICE
from src.exceptions import AudioDeviceError, PermissionDeniedError
from src.observability.logging import get_logger

logger = get_logger(__name__)


class SoundDeviceCapture(CaptureContext):
    """Microphone capture through a PortAudio InputStream."""

    def __init__(
        self,
        sample_rate: int,
        block_size: int,
        device: str | int | None = None,
    ) -> None:
        super().__init__(sample_rate, block_size)
        self._device = device
        self._loop = asyncio.get_running_loop()
        self._stream: sd.InputStream | None = None
        self._on_block: BlockCallback | None = None

    async def open_microphone(self) -> None:
        if self._state is ContextState.CLOSED:
            raise AudioDeviceError("capture context is closed")
        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                blocksize=self.block_size,
                channels=VOICE.CAPTURE_CHANNELS,
                dtype="float32",
                device=self._device,
                callback=self._callback,
            )
        except sd.PortAudioError as e:
            raise PermissionDeniedError(f"microphone unavailable: {e}") from e

    def start(self, on_block: BlockCallback) -> None:
        if self._stream is None:
            raise AudioDeviceError("microphone not open")
        self._on_block = on_block
        self._stream.start()

    def stop(self) -> None:
        self._on_block = None
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()

    def _callback(self, indata: np.ndarray, frames: int, time_info: Any, status: sd.CallbackFlags) -> None:
        if status:
            logger.debug("capture_status", status=str(status))
        block = indata[:, 0].copy()
        self._loop.call_soon_threadsafe(self._deliver, block)

    def _deliver(self, block: np.ndarray) -> None:
        if self._on_block is not None:
            self._on_block(block)


class SoundDevicePlayback(PlaybackContext):
    """Scheduled playback through a PortAudio OutputStream."""

    def __init__(self, sample_rate: int, device: str | int | None = None) -> None:
        super().__init__(sample_rate)
        loop = asyncio.get_running_loop()
        self._mixer = PlaybackMixer(self.clock, call_soon=loop.call_soon_threadsafe)
        try:
            self._stream = sd.OutputStream(
                samplerate=sample_rate,
                channels=VOICE.PLAYBACK_CHANNELS,
                dtype="float32",
                device=device,
                callback=self._callback,
            )
            self._stream.start()
        except sd.PortAudioError as e:
            raise AudioDeviceError(f"speaker unavailable: {e}") from e

    def schedule(self, buffer: AudioBuffer, when: float) -> PlaybackSource:
        return self._mixer.schedule(buffer, when)

    def suspend(self) -> None:
        super().suspend()
        if self._stream.active:
            self._stream.stop()

    def resume(self) -> None:
        if self.state is ContextState.SUSPENDED and not self._stream.active:
            self._stream.start()
        super().resume()

    def close(self) -> None:
        if self.state is ContextState.CLOSED:
            return
        super().close()
        self._mixer.clear()
        self._stream.close()

    def _callback(self, outdata: np.ndarray, frames: int, time_info: Any, status: sd.CallbackFlags) -> None:
        if status:
            logger.debug("playback_status", status=str(status))
        outdata[:, 0] = self._mixer.render(frames)


class SoundDeviceIO(AudioIO):
    """AudioIO backed by the default (or named) PortAudio devices."""

    def __init__(
        self,
        input_device: str | int | None = None,
        output_device: str | int | None = None,
    ) -> None:
        self._input_device = input_device
        self._output_device = output_device

    def open_capture(self, sample_rate: int, block_size: int) -> CaptureContext:
        return SoundDeviceCapture(sample_rate, block_size, device=self._input_device)

    def open_playback(self, sample_rate: int) -> PlaybackContext:
        return SoundDevicePlayback(sample_rate, device=self._output_device)
