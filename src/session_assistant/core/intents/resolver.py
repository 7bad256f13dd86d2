from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

from session_assistant.domain.models import Subject


class SubjectResolver(Protocol):
    def resolve(self, hint: str, subjects: Sequence[Subject]) -> str | None:
        """Return the id of the subject the spoken hint refers to, or None."""


@dataclass(frozen=True, slots=True)
class SubstringSubjectResolver:
    """Case-insensitive containment in either direction; first subject wins.

    "leo" matches "Leo Martinez", and so does "Leo Martinez's turn". A blank
    hint matches nobody.
    """

    def resolve(self, hint: str, subjects: Sequence[Subject]) -> str | None:
        needle = (hint or "").strip().casefold()
        if not needle:
            return None
        for subject in subjects:
            name = subject.display_name.strip().casefold()
            if not name:
                continue
            if needle in name or name in needle:
                return subject.id
        return None


@dataclass(frozen=True, slots=True)
class ExactNameSubjectResolver:
    """Stricter matching: the hint must equal the full or first name."""

    def resolve(self, hint: str, subjects: Sequence[Subject]) -> str | None:
        needle = " ".join((hint or "").split()).casefold()
        if not needle:
            return None
        for subject in subjects:
            name = " ".join(subject.display_name.split()).casefold()
            first = name.split(" ", 1)[0] if name else ""
            if needle == name or (first and needle == first):
                return subject.id
        return None
