"""PCM Framing - float samples <-> 16-bit PCM <-> base64.

Capture side: float32 blocks in [-1.0, 1.0] are quantized to little-endian
int16 (sample * 32768) and base64-encoded for upload.

Playback side: base64 int16 PCM from the transport is decoded back into
float32 samples (sample / 32768) ready for the mixer.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass

import numpy as np

from src.config.constants import VOICE


@dataclass(frozen=True)
class AudioFrame:
    """One uploaded capture block."""

    pcm: bytes  # Little-endian int16 samples
    mime_type: str = VOICE.CAPTURE_MIME_TYPE
    seq: int = 0  # Capture order, starting at 0 per session

    @property
    def data(self) -> str:
        """Base64 payload as sent on the wire."""
        return base64.b64encode(self.pcm).decode("ascii")

    @property
    def num_samples(self) -> int:
        return len(self.pcm) // 2

    def to_dict(self) -> dict:
        """Wire shape: {"data": base64, "mimeType": ...}."""
        return {"data": self.data, "mimeType": self.mime_type}


@dataclass(frozen=True)
class AudioBuffer:
    """Decoded mono playback buffer."""

    samples: np.ndarray  # float32, shape (n,)
    sample_rate: int

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return len(self.samples) / self.sample_rate

    def __len__(self) -> int:
        return len(self.samples)


def float_to_pcm16(samples: np.ndarray, clamp: bool = True) -> bytes:
    """Quantize float samples to 16-bit signed PCM.

    With clamp=False out-of-range input wraps around the int16 range, the
    way a typed-array store of `sample * 32768` does.
    """
    scaled = np.asarray(samples, dtype=np.float32).reshape(-1).astype(np.float64)
    scaled = scaled * VOICE.PCM_SCALE
    if clamp:
        pcm = np.clip(scaled, -32768, 32767).astype(np.int16)
    else:
        pcm = np.trunc(scaled).astype(np.int64).astype(np.int16)
    return pcm.astype("<i2").tobytes()


def pcm16_to_float(pcm: bytes) -> np.ndarray:
    """Convert little-endian 16-bit PCM to float32 in [-1.0, 1.0)."""
    usable = len(pcm) - (len(pcm) % 2)
    ints = np.frombuffer(pcm[:usable], dtype="<i2")
    return (ints.astype(np.float32) / VOICE.PCM_SCALE).astype(np.float32)


def encode_frame(
    samples: np.ndarray,
    seq: int = 0,
    clamp: bool = True,
    mime_type: str = VOICE.CAPTURE_MIME_TYPE,
) -> AudioFrame:
    """Build an upload frame from one capture block."""
    return AudioFrame(pcm=float_to_pcm16(samples, clamp=clamp), mime_type=mime_type, seq=seq)


def decode_audio(
    data: str | bytes,
    sample_rate: int = VOICE.PLAYBACK_SAMPLE_RATE,
) -> AudioBuffer:
    """Decode a streamed audio chunk into a playback buffer.

    Args:
        data: base64 text (wire shape) or raw PCM bytes (SDK objects)
        sample_rate: Sample rate of the chunk

    Raises:
        ValueError: If the payload is empty or not valid base64
    """
    if isinstance(data, str):
        try:
            pcm = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"invalid base64 audio payload: {e}") from e
    else:
        pcm = bytes(data)

    samples = pcm16_to_float(pcm)
    if len(samples) == 0:
        raise ValueError("empty audio payload")
    return AudioBuffer(samples=samples, sample_rate=sample_rate)
