from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from session_assistant.core.clock import Clock

TRIAL_FEEDBACK_S = 0.8
SUPPORT_HIGHLIGHT_S = 2.5


class FeedbackKind(str, Enum):
    TRIAL = "TRIAL"
    SUPPORT_LEVEL = "SUPPORT_LEVEL"


@dataclass(frozen=True, slots=True)
class FeedbackFlag:
    kind: FeedbackKind
    subject_id: str
    detail: str
    expires_at: float


@dataclass(slots=True)
class FeedbackBoard:
    """Short-lived UI signals raised by intents. Never part of a draft."""

    clock: Clock
    trial_window_s: float = TRIAL_FEEDBACK_S
    support_window_s: float = SUPPORT_HIGHLIGHT_S
    _flags: dict[tuple[FeedbackKind, str], FeedbackFlag] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.trial_window_s <= 0:
            raise ValueError("trial_window_s must be > 0")
        if self.support_window_s <= 0:
            raise ValueError("support_window_s must be > 0")

    def flash_trial(self, subject_id: str, status: str) -> FeedbackFlag:
        return self._raise(FeedbackKind.TRIAL, subject_id, status, self.trial_window_s)

    def highlight_support(self, subject_id: str, level: str) -> FeedbackFlag:
        return self._raise(FeedbackKind.SUPPORT_LEVEL, subject_id, level, self.support_window_s)

    def active(self) -> list[FeedbackFlag]:
        now = self.clock.now()
        return [f for f in self._flags.values() if f.expires_at > now]

    def get(self, kind: FeedbackKind, subject_id: str) -> FeedbackFlag | None:
        flag = self._flags.get((kind, subject_id))
        if flag is None or flag.expires_at <= self.clock.now():
            return None
        return flag

    def process_due(self) -> list[FeedbackFlag]:
        now = self.clock.now()
        expired = [f for f in self._flags.values() if f.expires_at <= now]
        for flag in expired:
            del self._flags[(flag.kind, flag.subject_id)]
        return expired

    def discard_subject(self, subject_id: str) -> None:
        for key in [k for k in self._flags if k[1] == subject_id]:
            del self._flags[key]

    def clear(self) -> None:
        self._flags.clear()

    def _raise(
        self, kind: FeedbackKind, subject_id: str, detail: str, window_s: float
    ) -> FeedbackFlag:
        # Re-raising re-arms the window.
        flag = FeedbackFlag(
            kind=kind,
            subject_id=subject_id,
            detail=detail,
            expires_at=self.clock.now() + window_s,
        )
        self._flags[(kind, subject_id)] = flag
        return flag
