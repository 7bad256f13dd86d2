from __future__ import annotations

import pytest

from session_assistant.core.drafts.store import DraftStore, UnknownSubjectError
from session_assistant.domain.models import (
    Goal,
    SessionDraft,
    StructuredNote,
    Subject,
    SupportLevel,
)

SAM = Subject(
    id="s1",
    display_name="Sam Rivera",
    goals=(Goal("Produce /s/ in words"), Goal("Produce /r/ in sentences", is_primary=True)),
)
ALEX = Subject(id="s2", display_name="Alex Chen")


def test_add_subject_derives_defaults_from_primary_goal():
    store = DraftStore()
    draft = store.add_subject(SAM, linked_plan_id="plan-1")

    assert draft.active_goal_text == "Produce /r/ in sentences"
    assert draft.support_level == SupportLevel.MODERATE
    assert draft.correct_count == draft.incorrect_count == 0
    assert draft.linked_plan_id == "plan-1"


def test_mutate_merges_and_coerces():
    store = DraftStore()
    store.add_subject(SAM)

    draft = store.mutate(
        "s1",
        {"support_level": "minimal", "structured_note": {"subjective": "Alert", "plan": "Continue"}},
    )
    assert draft.support_level == SupportLevel.MINIMAL
    assert draft.structured_note == StructuredNote(subjective="Alert", plan="Continue")
    assert store.get("s1") is draft


def test_mutate_rejects_unknown_fields_and_negative_counts():
    store = DraftStore()
    store.add_subject(SAM)

    with pytest.raises(ValueError):
        store.mutate("s1", {"mood": "happy"})
    with pytest.raises(ValueError):
        store.mutate("s1", {"correct_count": -1})
    assert store.get("s1") == SessionDraft.for_subject(SAM)


def test_snapshot_and_undo_restore_previous_draft():
    store = DraftStore()
    store.add_subject(SAM)
    store.mutate("s1", {"narrative": "first"})
    store.snapshot("s1")
    store.mutate("s1", {"narrative": "second", "structured_note": StructuredNote(plan="x")})

    assert store.undo("s1") is True
    assert store.get("s1").narrative == "first"
    assert store.get("s1").structured_note == StructuredNote()
    assert store.undo("s1") is False
    assert store.get("s1").narrative == "first"


def test_history_keeps_at_most_ten_snapshots():
    store = DraftStore()
    store.add_subject(SAM)
    for i in range(12):
        store.mutate("s1", {"narrative": f"v{i}"})
        store.snapshot("s1")

    assert store.history_size("s1") == 10
    for _ in range(10):
        assert store.undo("s1")
    # v0 and v1 were evicted; the oldest surviving snapshot is v2.
    assert store.get("s1").narrative == "v2"
    assert store.undo("s1") is False


def test_history_is_per_subject():
    store = DraftStore()
    store.set_group([SAM, ALEX])
    store.snapshot("s1")
    assert store.history_size("s1") == 1
    assert store.history_size("s2") == 0


def test_set_group_discards_removed_subjects():
    store = DraftStore()
    store.set_group([SAM, ALEX])
    store.mutate("s1", {"narrative": "keep me"})

    store.set_group([SAM])
    assert "s2" not in store
    assert store.get("s1").narrative == "keep me"
    assert [s.id for s in store.subjects()] == ["s1"]


def test_unknown_subject_raises():
    store = DraftStore()
    with pytest.raises(UnknownSubjectError):
        store.get("missing")
    with pytest.raises(KeyError):
        store.mutate("missing", {"narrative": "x"})


def test_reset_tallies():
    store = DraftStore()
    store.add_subject(SAM)
    store.mutate("s1", {"correct_count": 3, "incorrect_count": 2})
    draft = store.reset_tallies("s1")
    assert (draft.correct_count, draft.incorrect_count) == (0, 0)
