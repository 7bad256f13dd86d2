"""Roster input and record output as JSON files."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from session_assistant.domain.models import Goal, SessionRecord, Subject

logger = logging.getLogger(__name__)


def subject_from_dict(data: dict[str, Any]) -> Subject:
    subject_id = data.get("id")
    name = data.get("name")
    if not isinstance(subject_id, str) or not subject_id:
        raise ValueError("roster entry requires string `id`")
    if not isinstance(name, str) or not name.strip():
        raise ValueError(f"roster entry {subject_id} requires string `name`")
    goals = tuple(
        Goal(text=str(g.get("text", "")), is_primary=bool(g.get("isPrimary", False)))
        for g in data.get("goals") or []
        if isinstance(g, dict)
    )
    return Subject(id=subject_id, display_name=name.strip(), goals=goals)


def load_roster(path: Path) -> list[Subject]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError("roster file must contain a JSON list")
    subjects = [subject_from_dict(item) for item in raw]
    if len({s.id for s in subjects}) != len(subjects):
        raise ValueError("roster contains duplicate subject ids")
    return subjects


def select_subjects(roster: Sequence[Subject], ids: Sequence[str] | None) -> list[Subject]:
    """Pick the session group from the roster, in the order of ``ids``."""
    if not ids:
        return list(roster)
    by_id = {s.id: s for s in roster}
    missing = [i for i in ids if i not in by_id]
    if missing:
        raise ValueError(f"unknown subject ids: {', '.join(missing)}")
    return [by_id[i] for i in ids]


@dataclass(slots=True)
class JsonRecordSink:
    """Appends finalized records to a JSON list file."""

    path: Path

    def load_records(self) -> list[SessionRecord]:
        if not self.path.exists():
            return []
        raw = json.loads(self.path.read_text(encoding="utf-8"))
        return [SessionRecord.from_dict(item) for item in raw]

    def save_records(self, records: list[SessionRecord]) -> None:
        existing = {r.id: r for r in self.load_records()}
        for record in records:
            existing[record.id] = record
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(
            json.dumps([r.to_dict() for r in existing.values()], ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        tmp.replace(self.path)
        logger.info(f"[Records] Saved {len(records)} record(s) to {self.path}")
