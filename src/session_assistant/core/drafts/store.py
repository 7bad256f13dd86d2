from __future__ import annotations

import copy
import dataclasses
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from session_assistant.domain.models import (
    SessionDraft,
    StructuredNote,
    Subject,
    parse_support_level,
    parse_task_setting,
)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_DEPTH = 10

_DRAFT_FIELDS = frozenset(f.name for f in dataclasses.fields(SessionDraft))


class UnknownSubjectError(KeyError):
    pass


@dataclass(slots=True)
class DraftStore:
    """Per-subject session drafts plus a bounded undo stack for each subject.

    Every history entry is a full copy of a draft, newest first. ``mutate``
    never snapshots on its own; callers snapshot before overwrites they want
    to be revertible (AI note regeneration).
    """

    history_depth: int = DEFAULT_HISTORY_DEPTH

    _subjects: dict[str, Subject] = field(default_factory=dict)
    _drafts: dict[str, SessionDraft] = field(default_factory=dict)
    _history: dict[str, deque[SessionDraft]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.history_depth <= 0:
            raise ValueError("history_depth must be > 0")

    def add_subject(
        self,
        subject: Subject,
        *,
        draft: SessionDraft | None = None,
        linked_plan_id: str | None = None,
    ) -> SessionDraft:
        existing = self._drafts.get(subject.id)
        if existing is not None:
            self._subjects[subject.id] = subject
            return existing

        new_draft = draft or SessionDraft.for_subject(subject, linked_plan_id=linked_plan_id)
        self._subjects[subject.id] = subject
        self._drafts[subject.id] = new_draft
        self._history[subject.id] = deque(maxlen=self.history_depth)
        logger.info(f"[Drafts] Added subject id={subject.id}")
        return new_draft

    def remove_subject(self, subject_id: str) -> None:
        if subject_id not in self._drafts:
            return
        del self._drafts[subject_id]
        del self._subjects[subject_id]
        self._history.pop(subject_id, None)
        logger.info(f"[Drafts] Discarded draft for subject id={subject_id}")

    def set_group(
        self, subjects: Iterable[Subject], *, linked_plan_id: str | None = None
    ) -> None:
        subjects = list(subjects)
        wanted = {s.id for s in subjects}
        for subject_id in [sid for sid in self._drafts if sid not in wanted]:
            self.remove_subject(subject_id)
        for subject in subjects:
            self.add_subject(subject, linked_plan_id=linked_plan_id)

    def subjects(self) -> list[Subject]:
        return list(self._subjects.values())

    def subject(self, subject_id: str) -> Subject:
        self._require(subject_id)
        return self._subjects[subject_id]

    def __contains__(self, subject_id: object) -> bool:
        return subject_id in self._drafts

    def __len__(self) -> int:
        return len(self._drafts)

    def get(self, subject_id: str) -> SessionDraft:
        self._require(subject_id)
        return self._drafts[subject_id]

    def drafts(self) -> dict[str, SessionDraft]:
        return dict(self._drafts)

    def mutate(self, subject_id: str, patch: Mapping[str, Any]) -> SessionDraft:
        """Shallow-merge ``patch`` into the subject's draft and return the result."""
        self._require(subject_id)
        unknown = set(patch) - _DRAFT_FIELDS
        if unknown:
            raise ValueError(f"Unknown draft fields: {sorted(unknown)}")

        values = {name: _coerce_field(name, value) for name, value in patch.items()}
        updated = dataclasses.replace(self._drafts[subject_id], **values)
        self._drafts[subject_id] = updated
        return updated

    def reset_tallies(self, subject_id: str) -> SessionDraft:
        return self.mutate(subject_id, {"correct_count": 0, "incorrect_count": 0})

    def snapshot(self, subject_id: str) -> None:
        self._require(subject_id)
        # deque(maxlen=...) drops the oldest entry from the right end.
        self._history[subject_id].appendleft(copy.deepcopy(self._drafts[subject_id]))
        logger.debug(
            f"[Drafts] Snapshot id={subject_id} depth={len(self._history[subject_id])}"
        )

    def undo(self, subject_id: str) -> bool:
        self._require(subject_id)
        stack = self._history[subject_id]
        if not stack:
            return False
        self._drafts[subject_id] = stack.popleft()
        logger.info(f"[Drafts] Restored previous draft for id={subject_id}")
        return True

    def history_size(self, subject_id: str) -> int:
        self._require(subject_id)
        return len(self._history[subject_id])

    def clear(self) -> None:
        self._subjects.clear()
        self._drafts.clear()
        self._history.clear()

    def _require(self, subject_id: str) -> None:
        if subject_id not in self._drafts:
            raise UnknownSubjectError(subject_id)


def _coerce_field(name: str, value: Any) -> Any:
    if name in ("correct_count", "incorrect_count"):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{name} must be an integer")
        if value < 0:
            raise ValueError(f"{name} must be >= 0")
        return value
    if name == "support_level":
        return parse_support_level(value)
    if name == "task_setting":
        return parse_task_setting(value)
    if name == "structured_note":
        if isinstance(value, StructuredNote):
            return value
        if isinstance(value, Mapping):
            return StructuredNote.from_mapping(dict(value))
        raise ValueError("structured_note must be a StructuredNote or mapping")
    if name in ("narrative", "active_goal_text"):
        return str(value or "")
    if name == "linked_plan_id":
        return str(value) if value else None
    return value
