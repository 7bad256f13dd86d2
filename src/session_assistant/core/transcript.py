from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

from session_assistant.domain.models import TranscriptEntry

DEFAULT_TRANSCRIPT_CAPACITY = 30


@dataclass(slots=True)
class TranscriptBuffer:
    """Accumulates transcription deltas per turn and keeps the last completed turns.

    The in-progress turn is only visible through ``current_partial``; it never
    enters the log until the remote service marks the turn complete.
    """

    capacity: int = DEFAULT_TRANSCRIPT_CAPACITY
    current_partial: str = ""

    _accumulator: str = ""
    _entries: deque[TranscriptEntry] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._entries = deque(maxlen=self.capacity)

    @property
    def entries(self) -> list[TranscriptEntry]:
        return list(self._entries)

    def append_delta(self, text: str, turn_complete: bool) -> TranscriptEntry | None:
        """Feed one delta; returns the entry pushed to the log, if any."""
        self._accumulator += text or ""

        if not turn_complete:
            self.current_partial = self._accumulator
            return None

        accumulated = self._accumulator
        self._accumulator = ""
        self.current_partial = ""
        if not accumulated.strip():
            return None

        entry = TranscriptEntry(text=accumulated.strip(), turn_complete=True)
        self._entries.append(entry)
        return entry

    def clear(self) -> None:
        self._entries.clear()
        self._accumulator = ""
        self.current_partial = ""
