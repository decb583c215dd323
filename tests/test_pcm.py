"""Tests for PCM framing.

Tests cover:
- Float to 16-bit quantization (clamped and wrapping)
- Frame wire shape
- Decoding streamed chunks
"""

import base64

import numpy as np
import pytest

from src.audio.pcm import (
    AudioBuffer,
    AudioFrame,
    decode_audio,
    encode_frame,
    float_to_pcm16,
    pcm16_to_float,
)


def _ints(pcm: bytes) -> list[int]:
    return np.frombuffer(pcm, dtype="<i2").tolist()


class TestFloatToPcm16:
    """Tests for float_to_pcm16."""

    def test_scales_by_32768(self):
        """0.5 maps to 16384, -0.5 to -16384."""
        assert _ints(float_to_pcm16(np.array([0.0, 0.5, -0.5], dtype=np.float32))) == [
            0,
            16384,
            -16384,
        ]

    def test_negative_full_scale(self):
        """-1.0 maps to the int16 minimum."""
        assert _ints(float_to_pcm16(np.array([-1.0], dtype=np.float32))) == [-32768]

    def test_clamps_out_of_range(self):
        """Clamping keeps overdriven samples at the rails."""
        pcm = float_to_pcm16(np.array([1.0, 1.5, -2.0], dtype=np.float32))
        assert _ints(pcm) == [32767, 32767, -32768]

    def test_wraps_without_clamp(self):
        """Without clamping +1.0 wraps to the negative rail."""
        pcm = float_to_pcm16(np.array([1.0], dtype=np.float32), clamp=False)
        assert _ints(pcm) == [-32768]

    def test_two_bytes_per_sample_little_endian(self):
        """Output is little-endian int16."""
        pcm = float_to_pcm16(np.array([1 / 32768], dtype=np.float32))
        assert pcm == b"\x01\x00"

    def test_block_size_preserved(self):
        """A 4096-sample block becomes 8192 bytes."""
        pcm = float_to_pcm16(np.zeros(4096, dtype=np.float32))
        assert len(pcm) == 8192


class TestPcm16ToFloat:
    """Tests for pcm16_to_float."""

    def test_divides_by_32768(self):
        samples = pcm16_to_float(np.array([16384, -32768], dtype="<i2").tobytes())
        assert samples.dtype == np.float32
        assert samples.tolist() == [0.5, -1.0]

    def test_odd_trailing_byte_ignored(self):
        samples = pcm16_to_float(b"\x00\x40\x01")
        assert len(samples) == 1


class TestAudioFrame:
    """Tests for AudioFrame and encode_frame."""

    def test_wire_shape(self):
        """Frames serialize as base64 data plus mime type."""
        frame = encode_frame(np.array([0.5], dtype=np.float32))
        assert frame.to_dict() == {
            "data": base64.b64encode(b"\x00\x40").decode("ascii"),
            "mimeType": "audio/pcm;rate=16000",
        }

    def test_seq_and_samples(self):
        frame = encode_frame(np.zeros(4096, dtype=np.float32), seq=7)
        assert frame.seq == 7
        assert frame.num_samples == 4096

    def test_custom_mime_type(self):
        frame = AudioFrame(pcm=b"", mime_type="audio/pcm;rate=24000")
        assert frame.to_dict()["mimeType"] == "audio/pcm;rate=24000"


class TestDecodeAudio:
    """Tests for decode_audio."""

    def test_decodes_base64(self):
        data = base64.b64encode(b"\x00\x40" * 240).decode("ascii")
        buffer = decode_audio(data)
        assert isinstance(buffer, AudioBuffer)
        assert buffer.sample_rate == 24000
        assert len(buffer) == 240
        assert buffer.duration == pytest.approx(0.01)

    def test_accepts_raw_bytes(self):
        buffer = decode_audio(b"\x00\x00" * 24000)
        assert buffer.duration == pytest.approx(1.0)

    def test_invalid_base64_raises(self):
        with pytest.raises(ValueError, match="invalid base64"):
            decode_audio("not base64!!")

    def test_empty_payload_raises(self):
        with pytest.raises(ValueError, match="empty"):
            decode_audio("")
