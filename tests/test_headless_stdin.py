from __future__ import annotations

import asyncio
import io
import json

from session_assistant.app.headless_stdin import HeadlessStdinRunner
from session_assistant.app.roster import JsonRecordSink
from session_assistant.config.settings import AppSettings
from session_assistant.main import main

ROSTER = [
    {"id": "s1", "name": "Sam Rivera", "goals": [{"text": "Final /s/", "isPrimary": True}]},
    {"id": "s2", "name": "Leo Martinez"},
]


def _lines(*items) -> str:
    return "".join((item if isinstance(item, str) else json.dumps(item)) + "\n" for item in items)


def _script() -> str:
    return _lines(
        {"transcription": {"text": "Sam got that one", "turnComplete": True}},
        {"intent": {"kind": "RecordTrial", "subjectNameHint": "sam", "payload": {"status": "correct"}, "callId": "c1"}},
        {"intent": {"kind": "RecordTrial", "subjectNameHint": "Sam", "payload": {"status": "incorrect"}, "callId": "c2"}},
        "this is not json",
        {"intent": {"kind": "UpdateSupportLevel", "subjectNameHint": "leo", "payload": {"level": "Minimal"}, "callId": "c3"}},
        {"intent": {"kind": "AddObservation", "subjectNameHint": "Zoe", "payload": {"text": "?"}, "callId": "c4"}},
    )


def test_run_stdin_acks_every_intent_and_prints_records(tmp_path):
    roster = tmp_path / "roster.json"
    roster.write_text(json.dumps(ROSTER), encoding="utf-8")
    stdout = io.StringIO()
    runner = HeadlessStdinRunner(
        settings=AppSettings(),
        roster_path=roster,
        stdin=io.StringIO(_script()),
        stdout=stdout,
    )

    assert asyncio.run(runner.run()) == 0

    lines = [json.loads(line) for line in stdout.getvalue().splitlines()]
    assert lines[:4] == [{"callId": f"c{i}", "result": "ok"} for i in range(1, 5)]

    records = {r["subject_id"]: r for r in lines[4]["records"]}
    assert records["s1"]["metrics"]["accuracy"] == 50
    assert records["s1"]["metrics"]["total_trials"] == 2
    assert records["s1"]["metrics"]["focus_goal_text"] == "Final /s/"
    assert records["s1"]["narrative"] == "Sam got that one"
    assert "metrics" not in records["s2"]


def test_run_stdin_writes_records_to_output_file(tmp_path):
    roster = tmp_path / "roster.json"
    roster.write_text(json.dumps(ROSTER), encoding="utf-8")
    output = tmp_path / "records.json"
    stdout = io.StringIO()
    runner = HeadlessStdinRunner(
        settings=AppSettings(),
        roster_path=roster,
        subject_ids=["s2"],
        output_path=output,
        stdin=io.StringIO(_script()),
        stdout=stdout,
    )

    assert asyncio.run(runner.run()) == 0

    assert len(stdout.getvalue().splitlines()) == 4
    [record] = JsonRecordSink(output).load_records()
    assert record.subject_id == "s2"
    assert record.metrics is None


def test_run_stdin_reports_bad_roster(tmp_path):
    runner = HeadlessStdinRunner(
        settings=AppSettings(),
        roster_path=tmp_path / "missing.json",
        stdin=io.StringIO(""),
        stdout=io.StringIO(),
    )
    assert asyncio.run(runner.run()) == 2


def test_cli_version_and_missing_command(capsys):
    assert main(["--version"]) == 0
    assert capsys.readouterr().out.strip() == "0.3.0"

    assert main([]) == 2


def test_cli_rejects_invalid_settings_file(tmp_path, capsys):
    config = tmp_path / "settings.json"
    config.write_text(json.dumps({"audio": {"sample_rate_hz": 0}}), encoding="utf-8")
    roster = tmp_path / "roster.json"
    roster.write_text(json.dumps(ROSTER), encoding="utf-8")

    code = main(["--config", str(config), "--no-log-file", "run-stdin", "--roster", str(roster)])

    assert code == 2
    assert "invalid settings file" in capsys.readouterr().out
