from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, Protocol

from session_assistant.core.clock import Clock, SystemClock
from session_assistant.core.drafts.store import DraftStore
from session_assistant.core.feedback import FeedbackBoard, FeedbackKind
from session_assistant.core.finalizer import SessionFinalizer
from session_assistant.core.intents.dispatcher import DispatchStatus, IntentDispatcher
from session_assistant.core.live.controller import LiveSessionController
from session_assistant.core.live.errors import LiveSessionError
from session_assistant.core.llm.provider import NoteDrafter
from session_assistant.core.transcript import TranscriptBuffer
from session_assistant.domain.events import (
    ConnectionState,
    ConnectionStateEvent,
    IntentMessage,
    LiveErrorEvent,
    TranscriptionMessage,
    UIEvent,
    UIEventType,
)
from session_assistant.domain.models import SessionDraft, SessionRecord, Subject

logger = logging.getLogger(__name__)


class RecordSink(Protocol):
    def save_records(self, records: list[SessionRecord]) -> None: ...


@dataclass(slots=True)
class SessionHub:
    """Group session coordinator.

    Owns the drafts of every subject in the group and routes live transcription
    and intents into them. UI-facing state changes are published on
    ``ui_events``.
    """

    store: DraftStore = field(default_factory=DraftStore)
    controller: LiveSessionController | None = None
    drafter: NoteDrafter | None = None
    record_sink: RecordSink | None = None
    clock: Clock = field(default_factory=SystemClock)
    finalizer: SessionFinalizer = field(default_factory=SessionFinalizer)
    transcript: TranscriptBuffer = field(default_factory=TranscriptBuffer)
    feedback: FeedbackBoard | None = None
    dispatcher: IntentDispatcher | None = None

    transcript_to_narrative: bool = True
    feedback_poll_s: float = 0.05

    ui_events: asyncio.Queue[UIEvent] = field(default_factory=asyncio.Queue)
    active_subject_id: str | None = None

    _existing_records: dict[str, SessionRecord] = field(default_factory=dict)
    _note_tasks: dict[str, asyncio.Task[None]] = field(default_factory=dict)
    _live_task: asyncio.Task[None] | None = None
    _feedback_task: asyncio.Task[None] | None = None
    _running: bool = False

    def __post_init__(self) -> None:
        if self.feedback is None:
            self.feedback = FeedbackBoard(clock=self.clock)
        if self.dispatcher is None:
            self.dispatcher = IntentDispatcher(store=self.store, feedback=self.feedback)
        if self.controller is not None:
            self.controller.handler = self

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        if self.controller is not None:
            self._live_task = asyncio.create_task(self._run_live_event_loop())
        self._feedback_task = asyncio.create_task(self._run_feedback_loop())

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False

        await self.stop_assistant()

        for task in (self._live_task, self._feedback_task):
            if task is not None:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        self._live_task = None
        self._feedback_task = None

        await self._cancel_note_tasks()

        if self.drafter is not None:
            await self.drafter.close()

    # -- group composition -------------------------------------------------

    def set_group(self, subjects: Iterable[Subject], *, linked_plan_id: str | None = None) -> None:
        subjects = list(subjects)
        wanted = {s.id for s in subjects}
        for subject in self.store.subjects():
            if subject.id not in wanted:
                self._forget(subject.id)
        self.store.set_group(subjects, linked_plan_id=linked_plan_id)
        self._fix_active_subject()
        logger.info(f"[Hub] Group set: {len(self.store)} subject(s) plan={linked_plan_id}")

    def add_subject(self, subject: Subject, *, linked_plan_id: str | None = None) -> SessionDraft:
        draft = self.store.add_subject(subject, linked_plan_id=linked_plan_id)
        self._fix_active_subject()
        return draft

    def remove_subject(self, subject_id: str) -> None:
        self._forget(subject_id)
        self.store.remove_subject(subject_id)
        self._fix_active_subject()

    def resume_from_record(self, subject: Subject, record: SessionRecord) -> SessionDraft:
        """Re-open a saved record for editing; finalizing keeps its id and date."""
        if subject.id in self.store:
            self.remove_subject(subject.id)
        draft = self.store.add_subject(subject, draft=SessionDraft.from_record(record, subject))
        self._existing_records[subject.id] = record
        self._fix_active_subject()
        logger.info(f"[Hub] Resumed record {record.id} for id={subject.id}")
        return draft

    def set_active_subject(self, subject_id: str) -> None:
        self.store.subject(subject_id)
        self.active_subject_id = subject_id

    # -- live assistant ----------------------------------------------------

    @property
    def assistant_state(self) -> ConnectionState:
        if self.controller is None:
            return ConnectionState.IDLE
        return self.controller.state

    async def start_assistant(self) -> bool:
        if self.controller is None:
            logger.warning("[Hub] No live controller configured")
            return False
        if len(self.store) == 0:
            logger.warning("[Hub] Refusing to start the assistant with an empty group")
            return False
        self.transcript.clear()
        try:
            await self.controller.start()
        except LiveSessionError as exc:
            # The controller has already published the matching error event.
            logger.error(f"[Hub] Assistant failed to start: {exc}")
            return False
        return True

    async def stop_assistant(self) -> None:
        if self.controller is not None:
            await self.controller.stop()

    async def handle_transcription(self, message: TranscriptionMessage) -> None:
        entry = self.transcript.append_delta(message.text, message.turn_complete)
        if not message.turn_complete:
            await self._emit(UIEventType.TRANSCRIPT_PARTIAL, payload=self.transcript.current_partial)
            return
        if entry is None:
            # Blank turn: clear whatever partial text is still on screen.
            await self._emit(UIEventType.TRANSCRIPT_PARTIAL, payload=self.transcript.current_partial)
            return

        await self._emit(UIEventType.TRANSCRIPT_FINAL, payload=entry)
        if self.transcript_to_narrative and self.active_subject_id in self.store:
            subject_id = self.active_subject_id
            narrative = self.store.get(subject_id).narrative
            narrative = f"{narrative} {entry.text}" if narrative else entry.text
            draft = self.store.mutate(subject_id, {"narrative": narrative})
            await self._emit(UIEventType.DRAFT_UPDATED, subject_id=subject_id, payload=draft)

    async def handle_intent(self, message: IntentMessage) -> None:
        outcome = self.dispatcher.dispatch(message)
        if outcome.status == DispatchStatus.UNRESOLVED:
            await self._emit(UIEventType.INTENT_UNRESOLVED, payload=outcome)
            return
        if outcome.status == DispatchStatus.MALFORMED:
            await self._emit(UIEventType.ERROR, subject_id=outcome.subject_id, payload=outcome.detail)
            return

        await self._emit(UIEventType.DRAFT_UPDATED, subject_id=outcome.subject_id, payload=outcome.draft)
        flag = outcome.feedback
        if flag is None:
            return
        if flag.kind == FeedbackKind.TRIAL:
            await self._emit(UIEventType.TRIAL_FEEDBACK, subject_id=flag.subject_id, payload=flag)
        else:
            await self._emit(UIEventType.SUPPORT_HIGHLIGHT, subject_id=flag.subject_id, payload=flag)

    # -- manual edits ------------------------------------------------------

    async def edit_draft(self, subject_id: str, **patch: object) -> SessionDraft:
        draft = self.store.mutate(subject_id, patch)
        await self._emit(UIEventType.DRAFT_UPDATED, subject_id=subject_id, payload=draft)
        return draft

    async def reset_tallies(self, subject_id: str) -> SessionDraft:
        draft = self.store.reset_tallies(subject_id)
        await self._emit(UIEventType.DRAFT_UPDATED, subject_id=subject_id, payload=draft)
        return draft

    async def undo(self, subject_id: str) -> bool:
        if not self.store.undo(subject_id):
            return False
        await self._emit(
            UIEventType.DRAFT_UPDATED, subject_id=subject_id, payload=self.store.get(subject_id)
        )
        return True

    # -- AI note drafting --------------------------------------------------

    def request_note_draft(self, subject_id: str) -> asyncio.Task[None]:
        """Schedule ``draft_structured_note`` without blocking the caller."""
        self._check_draftable(subject_id)
        previous = self._note_tasks.get(subject_id)
        if previous is not None and not previous.done():
            return previous
        task = asyncio.create_task(self._draft_note_reporting_errors(subject_id))
        self._note_tasks[subject_id] = task
        task.add_done_callback(lambda t: self._release_note_task(subject_id, t))
        return task

    async def draft_structured_note(self, subject_id: str) -> SessionDraft:
        self._check_draftable(subject_id)
        observations = build_note_context(self.store.subject(subject_id), self.store.get(subject_id))
        logger.info(f"[Hub] Drafting structured note for id={subject_id}")
        note = await self.drafter.draft_note(observations=observations)

        if subject_id not in self.store:
            raise LookupError(f"subject {subject_id} left the group while drafting")
        self.store.snapshot(subject_id)
        draft = self.store.mutate(subject_id, {"structured_note": note})
        await self._emit(UIEventType.NOTE_DRAFTED, subject_id=subject_id, payload=note)
        await self._emit(UIEventType.DRAFT_UPDATED, subject_id=subject_id, payload=draft)
        return draft

    async def _draft_note_reporting_errors(self, subject_id: str) -> None:
        try:
            await self.draft_structured_note(subject_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(f"[Hub] Note drafting failed for id={subject_id}: {exc}")
            await self._emit(UIEventType.ERROR, subject_id=subject_id, payload=str(exc))

    def _check_draftable(self, subject_id: str) -> None:
        if self.drafter is None:
            raise RuntimeError("no note drafter configured")
        draft = self.store.get(subject_id)
        if not draft.narrative.strip() and draft.total_trials == 0:
            raise ValueError("add observations or record at least one trial before drafting")

    # -- session end -------------------------------------------------------

    async def finalize(self, *, group_session_id: str | None = None) -> list[SessionRecord]:
        await self.stop_assistant()
        await self._cancel_note_tasks()

        records = self.finalizer.finalize(
            self.store,
            group_session_id=group_session_id,
            existing_records=self._existing_records,
        )
        if self.record_sink is not None:
            self.record_sink.save_records(records)

        self._discard_all()
        await self._emit(UIEventType.SESSION_FINALIZED, payload=records)
        return records

    async def cancel(self) -> None:
        await self.stop_assistant()
        await self._cancel_note_tasks()
        self._discard_all()
        logger.info("[Hub] Session cancelled; drafts discarded")

    # -- internals ---------------------------------------------------------

    def _forget(self, subject_id: str) -> None:
        self.feedback.discard_subject(subject_id)
        self._existing_records.pop(subject_id, None)
        task = self._note_tasks.pop(subject_id, None)
        if task is not None:
            task.cancel()

    def _discard_all(self) -> None:
        self.store.clear()
        self.feedback.clear()
        self.transcript.clear()
        self._existing_records.clear()
        self.active_subject_id = None

    def _fix_active_subject(self) -> None:
        if self.active_subject_id in self.store:
            return
        subjects = self.store.subjects()
        self.active_subject_id = subjects[0].id if subjects else None

    def _release_note_task(self, subject_id: str, task: asyncio.Task[None]) -> None:
        # A cancelled task can finish after a newer one took its slot.
        if self._note_tasks.get(subject_id) is task:
            del self._note_tasks[subject_id]

    async def _cancel_note_tasks(self) -> None:
        tasks = list(self._note_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._note_tasks.clear()

    async def _emit(
        self, type: UIEventType, *, subject_id: str | None = None, payload: object | None = None
    ) -> None:
        await self.ui_events.put(UIEvent(type=type, subject_id=subject_id, payload=payload))

    async def _run_live_event_loop(self) -> None:
        async for ev in self.controller.events():
            if isinstance(ev, ConnectionStateEvent):
                await self._emit(UIEventType.CONNECTION_STATE_CHANGED, payload=ev.state)
            elif isinstance(ev, LiveErrorEvent):
                await self._emit(UIEventType.ERROR, payload=ev)

    async def _run_feedback_loop(self) -> None:
        while True:
            for flag in self.feedback.process_due():
                await self._emit(UIEventType.FEEDBACK_CLEARED, subject_id=flag.subject_id, payload=flag)
            await asyncio.sleep(self.feedback_poll_s)


def build_note_context(subject: Subject, draft: SessionDraft) -> str:
    goal = draft.active_goal_text or subject.primary_goal_text()
    return (
        f"Context: {draft.narrative}. "
        f"Data: {draft.correct_count}/{draft.total_trials} correct. "
        f"Support: {draft.support_level.value}. "
        f"Goal: {goal}"
    )
