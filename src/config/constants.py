"""Voice Session Constants - Fixed audio formats and session timings.

These values describe the wire formats expected by the streaming voice API
and the companion persona. They are not tunable at runtime; anything an
operator may want to change lives in settings.py.
"""

from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True)
class VoiceConstants:
    """Immutable audio and session constants.

    Sample rates in Hz, durations in seconds unless otherwise noted.
    """

    # Capture (microphone -> transport)
    CAPTURE_SAMPLE_RATE: Final[int] = 16000
    CAPTURE_BLOCK_SIZE: Final[int] = 4096  # Samples per processing block
    CAPTURE_CHANNELS: Final[int] = 1
    CAPTURE_MIME_TYPE: Final[str] = "audio/pcm;rate=16000"

    # Playback (transport -> speaker)
    PLAYBACK_SAMPLE_RATE: Final[int] = 24000
    PLAYBACK_CHANNELS: Final[int] = 1

    # 16-bit PCM quantization scale
    PCM_SCALE: Final[float] = 32768.0

    # Greeting
    GREETING_DELAY_S: Final[float] = 4.0  # Quiet period before the canned greeting
    GREETING_PROMPT_PREFIX: Final[str] = "Say in a gentle and caring tone: "

    # Transcript ordering: AI entry sorts one tick after the user entry of a turn
    AI_TIMESTAMP_OFFSET_MS: Final[int] = 1

    # Transition history kept per state machine
    MAX_TRANSITION_HISTORY: Final[int] = 100


# Singleton instance for import convenience
VOICE = VoiceConstants()


GREETINGS: Final[tuple[str, ...]] = (
    "Hello! It's wonderful to see you. How can I help you today?",
    "Hi there! I'm so glad you're here. What's on your mind?",
    "Greetings! I hope you're having a lovely day. I'm ready to listen whenever you are.",
    "Hey! It feels like a great day for a chat. Feel free to start when you're ready.",
    "Welcome! I'm here to listen. Is there anything I can help you with?",
)


DEFAULT_SYSTEM_INSTRUCTION: Final[str] = (
    "You are Kokoro-chan, an AI with the personality of Tohru Honda from "
    "Fruits Basket. You are exceptionally kind, empathetic, and always see the "
    "good in others. Your goal is to be a supportive and caring friend. "
    "Respond with warmth, gentleness, and unwavering optimism. Keep your "
    "responses in character, concise and helpful."
)
