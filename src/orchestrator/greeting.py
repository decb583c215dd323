"""Greeting - one-shot spoken welcome after a quiet period.

GreetingTimer arms a single delayed action when the session connects. The
first real user speech, or the session closing, cancels it; cancelling
also aborts a greeting that is still being synthesized, so the canned
line never talks over the user.

Synthesizers turn greeting text into 24 kHz PCM:
- GeminiGreetingSynthesizer: Gemini TTS model with a prebuilt voice
- ToneGreetingSynthesizer: short generated chime, no network (tests, headless)
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Sequence

import numpy as np
from google import genai
from google.genai import types

from src.audio.pcm import AudioBuffer, decode_audio
from src.config.constants import GREETINGS, VOICE
from src.exceptions import GreetingSynthesisError
from src.observability.logging import get_logger

logger = get_logger(__name__)


class GreetingTimer:
    """Single pending delayed action; fires at most once per arm().

    Usage:
        timer = GreetingTimer(4.0, play_greeting)
        timer.arm()
        ...
        timer.cancel()  # user started talking
    """

    def __init__(self, delay_s: float, action: Callable[[], Awaitable[None]]) -> None:
        self._delay_s = delay_s
        self._action = action
        self._task: asyncio.Task | None = None
        self._fired = False

    @property
    def delay_s(self) -> float:
        return self._delay_s

    @property
    def armed(self) -> bool:
        """Waiting for the delay to elapse."""
        return self._task is not None and not self._task.done() and not self._fired

    @property
    def fired(self) -> bool:
        return self._fired

    def arm(self) -> None:
        """(Re)start the countdown."""
        self.cancel()
        self._fired = False
        self._task = asyncio.create_task(self._run())

    def cancel(self) -> bool:
        """Cancel the countdown, or the action if it is still running.

        Returns:
            True if something was cancelled
        """
        task, self._task = self._task, None
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def _run(self) -> None:
        await asyncio.sleep(self._delay_s)
        self._fired = True
        await self._action()


def choose_greeting(greetings: Sequence[str] = GREETINGS, rng: random.Random | None = None) -> str:
    """Pick a greeting at random."""
    return (rng or random).choice(list(greetings))


class GreetingSynthesizer(ABC):
    """Turns greeting text into playable audio."""

    @abstractmethod
    async def synthesize(self, text: str) -> AudioBuffer:
        """Synthesize text.

        Raises:
            GreetingSynthesisError: On any failure
        """


class GeminiGreetingSynthesizer(GreetingSynthesizer):
    """Greeting speech from a Gemini TTS model."""

    def __init__(
        self,
        client: genai.Client,
        model: str = "gemini-2.5-flash-preview-tts",
        voice: str = "Kore",
        sample_rate: int = VOICE.PLAYBACK_SAMPLE_RATE,
    ) -> None:
        self._client = client
        self._model = model
        self._voice = voice
        self._sample_rate = sample_rate

    async def synthesize(self, text: str) -> AudioBuffer:
        try:
            response = await self._client.aio.models.generate_content(
                model=self._model,
                contents=f"{VOICE.GREETING_PROMPT_PREFIX}{text}",
                config=types.GenerateContentConfig(
                    response_modalities=["AUDIO"],
                    speech_config=types.SpeechConfig(
                        voice_config=types.VoiceConfig(
                            prebuilt_voice_config=types.PrebuiltVoiceConfig(
                                voice_name=self._voice,
                            )
                        )
                    ),
                ),
            )
        except Exception as e:
            raise GreetingSynthesisError(
                f"Greeting synthesis failed: {e}",
                details={"model": self._model},
            ) from e

        data = _first_inline_audio(response)
        if data is None:
            raise GreetingSynthesisError(
                "Greeting response contained no audio",
                details={"model": self._model},
            )

        try:
            return decode_audio(data, sample_rate=self._sample_rate)
        except ValueError as e:
            raise GreetingSynthesisError(f"Greeting audio undecodable: {e}") from e


def _first_inline_audio(response: types.GenerateContentResponse) -> bytes | str | None:
    candidates = response.candidates or []
    if not candidates or candidates[0].content is None:
        return None
    parts = candidates[0].content.parts or []
    if not parts or parts[0].inline_data is None:
        return None
    return parts[0].inline_data.data or None


class ToneGreetingSynthesizer(GreetingSynthesizer):
    """Two-note chime in place of speech."""

    def __init__(
        self,
        sample_rate: int = VOICE.PLAYBACK_SAMPLE_RATE,
        duration_s: float = 0.4,
        fail: bool = False,
    ) -> None:
        self._sample_rate = sample_rate
        self._duration_s = duration_s
        self.fail = fail
        self.requests: list[str] = []

    async def synthesize(self, text: str) -> AudioBuffer:
        self.requests.append(text)
        if self.fail:
            raise GreetingSynthesisError("tone synthesis disabled")

        n = int(self._sample_rate * self._duration_s)
        t = np.arange(n, dtype=np.float32) / self._sample_rate
        freq = np.where(t < self._duration_s / 2, 660.0, 880.0)
        samples = (0.2 * np.sin(2 * np.pi * freq * t)).astype(np.float32)
        return AudioBuffer(samples=samples, sample_rate=self._sample_rate)
