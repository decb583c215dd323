"""Tests for voice session constants."""

import pytest

from src.config.constants import (
    DEFAULT_SYSTEM_INSTRUCTION,
    GREETINGS,
    VOICE,
    VoiceConstants,
)


class TestVoiceConstants:
    """Tests for VoiceConstants class."""

    def test_is_frozen(self):
        with pytest.raises(Exception):  # FrozenInstanceError
            VOICE.CAPTURE_SAMPLE_RATE = 8000

    def test_singleton_instance(self):
        assert isinstance(VOICE, VoiceConstants)


class TestAudioFormats:
    """Wire formats of the streaming voice API."""

    def test_capture_format(self):
        assert VOICE.CAPTURE_SAMPLE_RATE == 16000
        assert VOICE.CAPTURE_BLOCK_SIZE == 4096
        assert VOICE.CAPTURE_CHANNELS == 1
        assert VOICE.CAPTURE_MIME_TYPE == "audio/pcm;rate=16000"

    def test_playback_format(self):
        assert VOICE.PLAYBACK_SAMPLE_RATE == 24000
        assert VOICE.PLAYBACK_CHANNELS == 1

    def test_pcm_scale(self):
        assert VOICE.PCM_SCALE == 32768.0


class TestSessionTimings:
    """Greeting and transcript constants."""

    def test_greeting_delay(self):
        assert VOICE.GREETING_DELAY_S == 4.0

    def test_ai_timestamp_offset(self):
        assert VOICE.AI_TIMESTAMP_OFFSET_MS == 1

    def test_greetings_non_empty(self):
        assert len(GREETINGS) == 5
        assert all(g.strip() for g in GREETINGS)

    def test_persona(self):
        assert "Kokoro-chan" in DEFAULT_SYSTEM_INSTRUCTION
