"""Prompt text for the live assistant and the note drafter.

Built-in defaults can be overridden by ``<name>.txt`` files in a prompts
directory (``./prompts`` or the user config dir).
"""

from __future__ import annotations

from pathlib import Path

from session_assistant.config.paths import user_config_dir

LIVE_SYSTEM_INSTRUCTION = (
    "You are a speech therapy session assistant listening to a group session. "
    "Transcribe what the clinician says. When the clinician scores a trial for a "
    "student, call record_trial with the student's name and 'correct' or 'incorrect'. "
    "When the clinician dictates an observation about a student, call add_observation. "
    "When the clinician changes the level of cueing support for a student, call "
    "update_support_level with one of Maximal, Moderate, Minimal or Independent. "
    "Use the student's name exactly as spoken. Do not speak unless asked."
)

NOTE_DRAFT_PROMPT = (
    "You are a professional Speech-Language Pathologist. Based on these session "
    'observations: "{observations}", draft a structured clinical SOAP note. Even if '
    "the input is short, provide a professional interpretation."
)

_BUILTIN = {
    "live_system": LIVE_SYSTEM_INSTRUCTION,
    "note_draft": NOTE_DRAFT_PROMPT,
}


def get_prompts_dir() -> Path:
    candidates = [
        Path.cwd() / "prompts",
        user_config_dir() / "prompts",
    ]
    for path in candidates:
        if path.exists():
            return path
    return candidates[0]


def load_prompt(name: str) -> str:
    """Return the prompt override file's text, else the built-in prompt."""
    prompt_file = get_prompts_dir() / f"{name}.txt"
    if prompt_file.exists():
        text = prompt_file.read_text(encoding="utf-8").strip()
        if text:
            return text
    return _BUILTIN.get(name, "")
