from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from session_assistant.config.prompts import NOTE_DRAFT_PROMPT
from session_assistant.domain.models import StructuredNote

logger = logging.getLogger(__name__)

_NOTE_FIELDS = {
    "subjective": "Student's participation, behavior, and self-report",
    "objective": "Specific measurable performance data and trial outcomes",
    "assessment": "Clinical analysis and interpretation of progress",
    "plan": "Immediate recommendations for the next session",
}


class GeminiJsonClient(Protocol):
    async def generate_json(self, *, prompt: str, schema: dict[str, Any]) -> str: ...

    async def close(self) -> None: ...


def fallback_note(observations: str) -> StructuredNote:
    return StructuredNote(
        subjective="Student participated in the session activity.",
        objective=observations,
        assessment="Student demonstrated effort with the targeted skills.",
        plan="Continue monitoring progress in next session.",
    )


def parse_note_json(text: str) -> StructuredNote:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("note response is not a JSON object")
    return StructuredNote.from_mapping(data)


@dataclass(slots=True)
class GeminiNoteDrafter:
    api_key: str
    model: str = "gemini-3-flash-preview"
    prompt_template: str = NOTE_DRAFT_PROMPT
    client: GeminiJsonClient | None = None
    _internal_client: GeminiJsonClient | None = field(init=False, default=None, repr=False)

    def _get_client(self) -> GeminiJsonClient:
        if self.client is not None:
            return self.client
        if self._internal_client is None:
            self._internal_client = GoogleGenaiJsonClient(api_key=self.api_key, model=self.model)
        return self._internal_client

    async def draft_note(self, *, observations: str) -> StructuredNote:
        prompt = self.prompt_template.format(observations=observations)
        text = await self._get_client().generate_json(prompt=prompt, schema=note_response_schema())
        try:
            note = parse_note_json(text)
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError too.
            logger.error(f"[LLM] Failed to parse note JSON, using fallback note: {exc}")
            return fallback_note(observations)
        logger.info("[LLM] Structured note drafted")
        return note

    async def close(self) -> None:
        if self._internal_client is not None:
            await self._internal_client.close()
            self._internal_client = None

    @staticmethod
    async def verify_api_key(api_key: str) -> bool:
        if not api_key:
            return False
        try:
            from google import genai  # type: ignore

            client = genai.Client(api_key=api_key)
            async for _ in await client.aio.models.list(config={"page_size": 1}):
                break
            return True
        except Exception as exc:
            logger.warning(f"[LLM] API key check failed: {exc}")
            return False


def note_response_schema() -> dict[str, Any]:
    return {
        "type": "OBJECT",
        "properties": {
            name: {"type": "STRING", "description": description}
            for name, description in _NOTE_FIELDS.items()
        },
        "required": list(_NOTE_FIELDS),
    }


@dataclass(slots=True)
class GoogleGenaiJsonClient:
    api_key: str
    model: str
    _client: Any = field(init=False, default=None, repr=False)

    def _get_client(self) -> Any:
        if self._client is None:
            from google import genai  # type: ignore

            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def generate_json(self, *, prompt: str, schema: dict[str, Any]) -> str:
        from google.genai import types  # type: ignore

        logger.info(f"[LLM] Request: note draft ({len(prompt)} chars)")
        response = await self._get_client().aio.models.generate_content(
            model=self.model,
            contents=prompt,
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=schema,
            ),
        )
        if getattr(response, "text", None):
            return str(response.text)
        logger.error("[LLM] No text in response")
        raise RuntimeError("Gemini response did not contain text")

    async def close(self) -> None:
        self._client = None
