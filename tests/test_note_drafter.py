from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field

import pytest

from session_assistant.core.llm.provider import SemaphoreNoteDrafter
from session_assistant.domain.models import StructuredNote
from session_assistant.providers.llm.gemini import (
    GeminiNoteDrafter,
    fallback_note,
    note_response_schema,
)


@dataclass(slots=True)
class FakeJsonClient:
    reply: str
    prompts: list = field(default_factory=list)
    schemas: list = field(default_factory=list)

    async def generate_json(self, *, prompt: str, schema: dict) -> str:
        self.prompts.append(prompt)
        self.schemas.append(schema)
        return self.reply

    async def close(self) -> None:
        return None


def test_draft_note_parses_structured_reply():
    async def run():
        client = FakeJsonClient(
            reply=json.dumps(
                {
                    "subjective": "Cooperative",
                    "objective": "4/5 correct",
                    "assessment": "Progressing",
                    "plan": "Fade cues",
                }
            )
        )
        drafter = GeminiNoteDrafter(
            api_key="k", prompt_template="Observations: {observations}", client=client
        )

        note = await drafter.draft_note(observations="Context: named pictures")

        assert note == StructuredNote("Cooperative", "4/5 correct", "Progressing", "Fade cues")
        assert client.prompts == ["Observations: Context: named pictures"]
        assert client.schemas[0]["required"] == ["subjective", "objective", "assessment", "plan"]

    asyncio.run(run())


@pytest.mark.parametrize("reply", ["not json", "[1, 2, 3]"])
def test_unparseable_reply_falls_back(reply):
    async def run():
        drafter = GeminiNoteDrafter(api_key="k", client=FakeJsonClient(reply=reply))
        note = await drafter.draft_note(observations="obs text")
        assert note == fallback_note("obs text")
        assert note.objective == "obs text"

    asyncio.run(run())


def test_schema_declares_string_fields():
    schema = note_response_schema()
    assert schema["type"] == "OBJECT"
    assert {p["type"] for p in schema["properties"].values()} == {"STRING"}


@dataclass(slots=True)
class SlowDrafter:
    active: int = 0
    peak: int = 0
    closed: bool = False

    async def draft_note(self, *, observations: str) -> StructuredNote:
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1
        return StructuredNote(objective=observations)

    async def close(self) -> None:
        self.closed = True


def test_semaphore_drafter_limits_concurrency():
    async def run():
        inner = SlowDrafter()
        drafter = SemaphoreNoteDrafter(inner=inner, semaphore=asyncio.Semaphore(1))

        notes = await asyncio.gather(*(drafter.draft_note(observations=str(i)) for i in range(3)))
        await drafter.close()

        assert [n.objective for n in notes] == ["0", "1", "2"]
        assert inner.peak == 1
        assert inner.closed

    asyncio.run(run())
