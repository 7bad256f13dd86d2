from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Mapping, Sequence
from uuid import uuid4

from session_assistant.core.drafts.store import DraftStore
from session_assistant.domain.models import (
    SessionDraft,
    SessionMetrics,
    SessionRecord,
    Subject,
    accuracy_percent,
)

logger = logging.getLogger(__name__)


def _today_iso() -> str:
    return date.today().isoformat()


def _new_record_id(subject_id: str) -> str:
    return f"{uuid4().hex}-{subject_id}"


@dataclass(slots=True)
class SessionFinalizer:
    today: Callable[[], str] = _today_iso
    new_record_id: Callable[[str], str] = _new_record_id

    def finalize(
        self,
        store: DraftStore,
        subjects: Sequence[Subject] | None = None,
        *,
        group_session_id: str | None = None,
        existing_records: Mapping[str, SessionRecord] | None = None,
    ) -> list[SessionRecord]:
        """Build one record per subject, all or nothing.

        Drafts missing from the store finalize with default (empty) fields;
        they are expected to be edited further downstream.
        """
        subjects = list(subjects) if subjects is not None else store.subjects()
        existing_records = existing_records or {}
        drafts = store.drafts()

        records = [
            self._build_record(
                subject,
                drafts.get(subject.id) or SessionDraft.for_subject(subject),
                group_session_id=group_session_id,
                existing=existing_records.get(subject.id),
            )
            for subject in subjects
        ]
        logger.info(f"[Finalize] Built {len(records)} record(s) group={group_session_id}")
        return records

    def _build_record(
        self,
        subject: Subject,
        draft: SessionDraft,
        *,
        group_session_id: str | None,
        existing: SessionRecord | None,
    ) -> SessionRecord:
        note = draft.structured_note
        accuracy = accuracy_percent(draft.correct_count, draft.incorrect_count)
        metrics = None
        if accuracy is not None:
            metrics = SessionMetrics(
                accuracy=accuracy,
                total_trials=draft.total_trials,
                support_level=draft.support_level,
                task_setting=draft.task_setting,
                focus_goal_text=draft.active_goal_text or "",
            )

        return SessionRecord(
            id=existing.id if existing is not None else self.new_record_id(subject.id),
            subject_id=subject.id,
            date=existing.date if existing is not None and existing.date else self.today(),
            subjective=note.subjective or "",
            objective=note.objective or "",
            assessment=note.assessment or "",
            plan=note.plan or "",
            narrative=draft.narrative or "",
            group_session_id=group_session_id,
            linked_plan_id=draft.linked_plan_id or None,
            metrics=metrics,
        )
