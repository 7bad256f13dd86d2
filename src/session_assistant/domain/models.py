from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SupportLevel(str, Enum):
    MAXIMAL = "Maximal"
    MODERATE = "Moderate"
    MINIMAL = "Minimal"
    INDEPENDENT = "Independent"


class TaskSetting(str, Enum):
    STRUCTURED = "Structured"
    SPONTANEOUS = "Spontaneous"


def parse_support_level(value: object) -> SupportLevel:
    if isinstance(value, SupportLevel):
        return value
    text = str(value or "").strip().lower()
    for level in SupportLevel:
        if level.value.lower() == text:
            return level
    raise ValueError(f"Unknown support level: {value!r}")


def parse_task_setting(value: object) -> TaskSetting:
    if isinstance(value, TaskSetting):
        return value
    text = str(value or "").strip().lower()
    for setting in TaskSetting:
        if setting.value.lower() == text:
            return setting
    raise ValueError(f"Unknown task setting: {value!r}")


@dataclass(frozen=True, slots=True)
class Goal:
    text: str
    is_primary: bool = False


@dataclass(frozen=True, slots=True)
class Subject:
    id: str
    display_name: str
    goals: tuple[Goal, ...] = ()

    def primary_goal_text(self) -> str:
        for goal in self.goals:
            if goal.is_primary:
                return goal.text
        if self.goals:
            return self.goals[0].text
        return ""


@dataclass(frozen=True, slots=True)
class StructuredNote:
    subjective: str = ""
    objective: str = ""
    assessment: str = ""
    plan: str = ""

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "StructuredNote":
        return cls(
            subjective=str(data.get("subjective") or ""),
            objective=str(data.get("objective") or ""),
            assessment=str(data.get("assessment") or ""),
            plan=str(data.get("plan") or ""),
        )


@dataclass(frozen=True, slots=True)
class SessionDraft:
    narrative: str = ""
    structured_note: StructuredNote = field(default_factory=StructuredNote)
    correct_count: int = 0
    incorrect_count: int = 0
    support_level: SupportLevel = SupportLevel.MODERATE
    task_setting: TaskSetting = TaskSetting.STRUCTURED
    active_goal_text: str = ""
    linked_plan_id: str | None = None

    @property
    def total_trials(self) -> int:
        return self.correct_count + self.incorrect_count

    @classmethod
    def for_subject(cls, subject: Subject, *, linked_plan_id: str | None = None) -> "SessionDraft":
        return cls(active_goal_text=subject.primary_goal_text(), linked_plan_id=linked_plan_id or None)

    @classmethod
    def from_record(
        cls,
        record: "SessionRecord",
        subject: Subject,
        *,
        linked_plan_id: str | None = None,
    ) -> "SessionDraft":
        """Seed a draft from a saved record so it can be edited again.

        Tallies are reconstructed from the stored accuracy and trial total.
        """
        metrics = record.metrics
        correct = incorrect = 0
        support_level = SupportLevel.MODERATE
        task_setting = TaskSetting.STRUCTURED
        goal_text = subject.primary_goal_text()
        if metrics is not None:
            if metrics.total_trials > 0:
                correct = _round_half_up(metrics.accuracy * metrics.total_trials, 100)
                correct = min(correct, metrics.total_trials)
                incorrect = metrics.total_trials - correct
            support_level = metrics.support_level
            task_setting = metrics.task_setting
            goal_text = metrics.focus_goal_text or goal_text

        return cls(
            narrative=record.narrative,
            structured_note=StructuredNote(
                subjective=record.subjective,
                objective=record.objective,
                assessment=record.assessment,
                plan=record.plan,
            ),
            correct_count=correct,
            incorrect_count=incorrect,
            support_level=support_level,
            task_setting=task_setting,
            active_goal_text=goal_text,
            linked_plan_id=record.linked_plan_id or linked_plan_id or None,
        )


@dataclass(frozen=True, slots=True)
class TranscriptEntry:
    text: str
    turn_complete: bool = True


@dataclass(frozen=True, slots=True)
class SessionMetrics:
    accuracy: int
    total_trials: int
    support_level: SupportLevel
    task_setting: TaskSetting
    focus_goal_text: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "accuracy": self.accuracy,
            "total_trials": self.total_trials,
            "support_level": self.support_level.value,
            "task_setting": self.task_setting.value,
            "focus_goal_text": self.focus_goal_text,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionMetrics":
        return cls(
            accuracy=int(data.get("accuracy", 0)),
            total_trials=int(data.get("total_trials", 0)),
            support_level=parse_support_level(data.get("support_level", SupportLevel.MODERATE.value)),
            task_setting=parse_task_setting(data.get("task_setting", TaskSetting.STRUCTURED.value)),
            focus_goal_text=str(data.get("focus_goal_text", "")),
        )


@dataclass(frozen=True, slots=True)
class SessionRecord:
    id: str
    subject_id: str
    date: str
    subjective: str = ""
    objective: str = ""
    assessment: str = ""
    plan: str = ""
    narrative: str = ""
    group_session_id: str | None = None
    linked_plan_id: str | None = None
    metrics: SessionMetrics | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "subject_id": self.subject_id,
            "date": self.date,
            "subjective": self.subjective,
            "objective": self.objective,
            "assessment": self.assessment,
            "plan": self.plan,
            "narrative": self.narrative,
            "group_session_id": self.group_session_id,
            "linked_plan_id": self.linked_plan_id,
        }
        if self.metrics is not None:
            data["metrics"] = self.metrics.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionRecord":
        metrics_raw = data.get("metrics")
        return cls(
            id=str(data["id"]),
            subject_id=str(data["subject_id"]),
            date=str(data.get("date", "")),
            subjective=str(data.get("subjective") or ""),
            objective=str(data.get("objective") or ""),
            assessment=str(data.get("assessment") or ""),
            plan=str(data.get("plan") or ""),
            narrative=str(data.get("narrative") or ""),
            group_session_id=data.get("group_session_id"),
            linked_plan_id=data.get("linked_plan_id"),
            metrics=SessionMetrics.from_dict(metrics_raw) if isinstance(metrics_raw, dict) else None,
        )


def _round_half_up(numerator: int, denominator: int) -> int:
    return (2 * numerator + denominator) // (2 * denominator)


def accuracy_percent(correct: int, incorrect: int) -> int | None:
    total = correct + incorrect
    if total <= 0:
        return None
    return _round_half_up(correct * 100, total)
