"""Transcript Reconciliation - incremental deltas to append-only history.

Input (user) deltas accumulate into pending user text, which is also the
interim transcript shown to the UI. Output (AI) deltas accumulate silently.
On turn completion both accumulators are trimmed and finalized: a non-empty
user utterance first, then a non-empty AI utterance stamped one tick later
so the pair sorts stably. Empty turns leave history untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from src.audio.clock import monotonic_ms
from src.config.constants import VOICE
from src.observability.logging import get_logger

logger = get_logger(__name__)


class Speaker(Enum):
    """Who said it."""

    USER = "user"
    AI = "ai"


@dataclass(frozen=True)
class TranscriptEntry:
    """An immutable finalized utterance."""

    speaker: Speaker
    text: str
    timestamp: int  # monotonic ms

    def __post_init__(self) -> None:
        if not self.text.strip():
            raise ValueError("transcript entries must have text")

    def to_dict(self) -> dict:
        return {
            "speaker": self.speaker.value,
            "text": self.text,
            "timestamp": self.timestamp,
        }


class TranscriptAccumulator:
    """Mutable buffer for one not-yet-finalized utterance."""

    def __init__(self) -> None:
        self._parts: list[str] = []

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def append(self, text: str) -> str:
        """Append a delta and return the accumulated text."""
        if text:
            self._parts.append(text)
        return self.text

    def take_final(self) -> str | None:
        """Trim, clear and return the utterance, or None if it was blank."""
        final = self.text.strip()
        self._parts.clear()
        return final or None

    def clear(self) -> None:
        self._parts.clear()

    def __bool__(self) -> bool:
        return bool(self.text)


HistoryCallback = Callable[[TranscriptEntry], None]
InterimCallback = Callable[[str], None]


class TranscriptReconciler:
    """Owns pending accumulators, interim text and finalized history.

    Usage:
        reconciler = TranscriptReconciler()
        reconciler.on_entry(render_entry)
        reconciler.on_interim(render_interim)

        reconciler.add_input_delta("Hel")
        reconciler.add_input_delta("lo")
        reconciler.add_output_delta("Hi")
        reconciler.complete_turn()
    """

    def __init__(self) -> None:
        self.pending_user = TranscriptAccumulator()
        self.pending_ai = TranscriptAccumulator()
        self._history: list[TranscriptEntry] = []
        self._interim = ""
        self._entry_callbacks: list[HistoryCallback] = []
        self._interim_callbacks: list[InterimCallback] = []

    @property
    def history(self) -> list[TranscriptEntry]:
        """Finalized entries, oldest first."""
        return self._history.copy()

    @property
    def interim(self) -> str:
        return self._interim

    def on_entry(self, callback: HistoryCallback) -> None:
        self._entry_callbacks.append(callback)

    def on_interim(self, callback: InterimCallback) -> None:
        self._interim_callbacks.append(callback)

    def reset(self) -> None:
        """Forget everything (new session)."""
        self._history.clear()
        self.pending_user.clear()
        self.pending_ai.clear()
        self._set_interim("")

    def add_input_delta(self, text: str | None) -> bool:
        """Accumulate user speech-to-text.

        Returns:
            True if the delta carried any text
        """
        if not text:
            return False
        self._set_interim(self.pending_user.append(text))
        return True

    def add_output_delta(self, text: str | None) -> None:
        """Accumulate AI speech-to-text. Never shown as interim."""
        if text:
            self.pending_ai.append(text)

    def complete_turn(self, now_ms: int | None = None) -> list[TranscriptEntry]:
        """Finalize the current turn.

        Returns:
            Entries appended (0, 1 or 2)
        """
        timestamp = monotonic_ms() if now_ms is None else now_ms
        appended: list[TranscriptEntry] = []

        user_text = self.pending_user.take_final()
        ai_text = self.pending_ai.take_final()

        if user_text:
            appended.append(TranscriptEntry(Speaker.USER, user_text, timestamp))
        if ai_text:
            appended.append(
                TranscriptEntry(Speaker.AI, ai_text, timestamp + VOICE.AI_TIMESTAMP_OFFSET_MS)
            )

        for entry in appended:
            self._append(entry)
        self._set_interim("")
        return appended

    def add_entry(self, speaker: Speaker, text: str, now_ms: int | None = None) -> TranscriptEntry | None:
        """Append a finalized utterance that did not come from a turn (the greeting)."""
        text = text.strip()
        if not text:
            return None
        entry = TranscriptEntry(speaker, text, monotonic_ms() if now_ms is None else now_ms)
        self._append(entry)
        return entry

    def _append(self, entry: TranscriptEntry) -> None:
        self._history.append(entry)
        for callback in self._entry_callbacks:
            try:
                callback(entry)
            except Exception as e:
                # A broken listener must not end the conversation
                logger.warning("transcript_callback_error", speaker=entry.speaker.value, error=str(e))

    def _set_interim(self, text: str) -> None:
        if text == self._interim:
            return
        self._interim = text
        for callback in self._interim_callbacks:
            try:
                callback(text)
            except Exception as e:
                logger.warning("interim_callback_error", error=str(e))
