from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from session_assistant.core.drafts.store import DraftStore
from session_assistant.core.feedback import FeedbackBoard, FeedbackFlag
from session_assistant.core.intents.resolver import SubjectResolver, SubstringSubjectResolver
from session_assistant.domain.events import IntentKind, IntentMessage, TrialStatus
from session_assistant.domain.models import SessionDraft, parse_support_level

logger = logging.getLogger(__name__)

OBSERVATION_BULLET = "• "


class DispatchStatus(str, Enum):
    APPLIED = "APPLIED"
    UNRESOLVED = "UNRESOLVED"
    MALFORMED = "MALFORMED"


@dataclass(frozen=True, slots=True)
class DispatchOutcome:
    call_id: str
    status: DispatchStatus
    kind: IntentKind | None = None
    subject_id: str | None = None
    detail: str = ""
    draft: SessionDraft | None = None
    feedback: FeedbackFlag | None = None

    @property
    def applied(self) -> bool:
        return self.status == DispatchStatus.APPLIED


class _InvalidPayload(ValueError):
    pass


@dataclass(slots=True)
class IntentDispatcher:
    """Applies intent events to the matched subject's draft, one at a time.

    An event whose subject hint matches nobody in the group is dropped. The
    caller acknowledges it to the remote service anyway.
    """

    store: DraftStore
    feedback: FeedbackBoard
    resolver: SubjectResolver = field(default_factory=SubstringSubjectResolver)

    def dispatch(self, message: IntentMessage) -> DispatchOutcome:
        kind = _parse_kind(message.kind)
        if kind is None:
            logger.warning(f"[Dispatch] Unknown intent kind {message.kind!r} (call={message.call_id})")
            return DispatchOutcome(
                call_id=message.call_id,
                status=DispatchStatus.MALFORMED,
                detail=f"unknown intent kind: {message.kind}",
            )

        subject_id = self.resolver.resolve(message.subject_name_hint, self.store.subjects())
        if subject_id is None:
            # TODO: decide with the product owner whether a misheard name should
            # be reported back to the service instead of acknowledged as ok.
            logger.warning(
                f"[Dispatch] No subject matches hint {message.subject_name_hint!r}; "
                f"dropping {kind.value} (call={message.call_id})"
            )
            return DispatchOutcome(
                call_id=message.call_id,
                status=DispatchStatus.UNRESOLVED,
                kind=kind,
                detail=message.subject_name_hint,
            )

        try:
            if kind == IntentKind.RECORD_TRIAL:
                draft, flag, detail = self._record_trial(subject_id, message.payload)
            elif kind == IntentKind.ADD_OBSERVATION:
                draft, flag, detail = self._add_observation(subject_id, message.payload)
            else:
                draft, flag, detail = self._update_support_level(subject_id, message.payload)
        except _InvalidPayload as exc:
            logger.warning(f"[Dispatch] Ignoring {kind.value} with invalid payload: {exc}")
            return DispatchOutcome(
                call_id=message.call_id,
                status=DispatchStatus.MALFORMED,
                kind=kind,
                subject_id=subject_id,
                detail=str(exc),
            )

        logger.info(f"[Dispatch] {kind.value} -> id={subject_id} ({detail})")
        return DispatchOutcome(
            call_id=message.call_id,
            status=DispatchStatus.APPLIED,
            kind=kind,
            subject_id=subject_id,
            detail=detail,
            draft=draft,
            feedback=flag,
        )

    def _record_trial(
        self, subject_id: str, payload: Mapping[str, Any]
    ) -> tuple[SessionDraft, FeedbackFlag, str]:
        raw = str(payload.get("status", "")).strip().lower()
        try:
            status = TrialStatus(raw)
        except ValueError:
            raise _InvalidPayload(f"status must be 'correct' or 'incorrect', got {raw!r}") from None

        current = self.store.get(subject_id)
        if status == TrialStatus.CORRECT:
            draft = self.store.mutate(subject_id, {"correct_count": current.correct_count + 1})
        else:
            draft = self.store.mutate(subject_id, {"incorrect_count": current.incorrect_count + 1})
        flag = self.feedback.flash_trial(subject_id, status.value)
        return draft, flag, status.value

    def _add_observation(
        self, subject_id: str, payload: Mapping[str, Any]
    ) -> tuple[SessionDraft, None, str]:
        text = payload.get("text")
        if not isinstance(text, str) or not text.strip():
            raise _InvalidPayload("text must be a non-empty string")

        narrative = self.store.get(subject_id).narrative
        line = OBSERVATION_BULLET + text.strip()
        narrative = f"{narrative}\n{line}" if narrative else line
        draft = self.store.mutate(subject_id, {"narrative": narrative})
        return draft, None, text.strip()

    def _update_support_level(
        self, subject_id: str, payload: Mapping[str, Any]
    ) -> tuple[SessionDraft, FeedbackFlag, str]:
        try:
            level = parse_support_level(payload.get("level"))
        except ValueError as exc:
            raise _InvalidPayload(str(exc)) from None

        draft = self.store.mutate(subject_id, {"support_level": level})
        flag = self.feedback.highlight_support(subject_id, level.value)
        return draft, flag, level.value


def _parse_kind(value: str) -> IntentKind | None:
    normalized = (value or "").replace("_", "").replace(" ", "").lower()
    for kind in IntentKind:
        if kind.value.lower() == normalized:
            return kind
    return None
