"""Gemini Live backend using the google-genai SDK.

Audio goes up as realtime input; input transcription and tool calls come back
and are translated into the transcription and intent messages the controller
understands. Tool calls are answered with function responses.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from session_assistant.config.prompts import LIVE_SYSTEM_INSTRUCTION
from session_assistant.core.audio.format import EncodedAudioFrame
from session_assistant.core.live.backend import LiveBackend, LiveBackendSession
from session_assistant.domain.events import (
    IntentAck,
    IntentKind,
    IntentMessage,
    LiveInboundMessage,
    MalformedPayload,
    TranscriptionMessage,
)

logger = logging.getLogger(__name__)

DEFAULT_LIVE_MODEL = "gemini-2.5-flash-native-audio-preview-09-2025"

SUBJECT_ARG = "student_name"

TOOL_KINDS: dict[str, IntentKind] = {
    "record_trial": IntentKind.RECORD_TRIAL,
    "add_observation": IntentKind.ADD_OBSERVATION,
    "update_support_level": IntentKind.UPDATE_SUPPORT_LEVEL,
}

# name -> (description, {arg: (description, enum or None)})
_TOOL_SPECS: dict[str, tuple[str, dict[str, tuple[str, list[str] | None]]]] = {
    "record_trial": (
        "Record one scored trial for a student.",
        {"status": ("Trial outcome.", ["correct", "incorrect"])},
    ),
    "add_observation": (
        "Add a clinical observation about a student to the session notes.",
        {"text": ("The observation, as dictated.", None)},
    ),
    "update_support_level": (
        "Change the cueing support level for a student.",
        {
            "level": (
                "New support level.",
                ["Maximal", "Moderate", "Minimal", "Independent"],
            )
        },
    ),
}


def build_function_declarations() -> list[Any]:
    from google.genai import types  # type: ignore

    declarations = []
    for name, (description, args) in _TOOL_SPECS.items():
        properties = {
            SUBJECT_ARG: types.Schema(
                type=types.Type.STRING, description="The student's name as spoken."
            )
        }
        for arg, (arg_description, enum) in args.items():
            properties[arg] = types.Schema(
                type=types.Type.STRING, description=arg_description, enum=enum
            )
        declarations.append(
            types.FunctionDeclaration(
                name=name,
                description=description,
                parameters=types.Schema(
                    type=types.Type.OBJECT,
                    properties=properties,
                    required=[SUBJECT_ARG, *args],
                ),
            )
        )
    return declarations


def build_live_config(system_instruction: str) -> Any:
    from google.genai import types  # type: ignore

    return types.LiveConnectConfig(
        response_modalities=[types.Modality.AUDIO],
        input_audio_transcription=types.AudioTranscriptionConfig(),
        system_instruction=system_instruction,
        tools=[types.Tool(function_declarations=build_function_declarations())],
    )


def translate_server_message(message: Any) -> list[LiveInboundMessage]:
    """Map one ``LiveServerMessage`` onto zero or more inbound messages."""
    items: list[LiveInboundMessage] = []

    content = getattr(message, "server_content", None)
    if content is not None:
        transcription = getattr(content, "input_transcription", None)
        text = getattr(transcription, "text", None) or ""
        turn_complete = bool(getattr(content, "turn_complete", False))
        if text or turn_complete:
            items.append(TranscriptionMessage(text=text, turn_complete=turn_complete))

    tool_call = getattr(message, "tool_call", None)
    if tool_call is not None:
        for call in getattr(tool_call, "function_calls", None) or []:
            items.append(_translate_function_call(call))

    return items


def _translate_function_call(call: Any) -> LiveInboundMessage:
    call_id = getattr(call, "id", None) or ""
    name = getattr(call, "name", None) or ""
    if not call_id:
        return MalformedPayload(reason=f"function call {name!r} has no id", name=name)

    kind = TOOL_KINDS.get(name)
    if kind is None:
        return MalformedPayload(reason=f"unknown function {name!r}", call_id=call_id, name=name)

    args = dict(getattr(call, "args", None) or {})
    hint = args.pop(SUBJECT_ARG, "")
    return IntentMessage(
        kind=kind.value,
        subject_name_hint=str(hint or ""),
        call_id=call_id,
        payload=args,
        name=name,
    )


@dataclass(slots=True)
class GeminiLiveBackend(LiveBackend):
    api_key: str
    model: str = DEFAULT_LIVE_MODEL
    system_instruction: str = LIVE_SYSTEM_INSTRUCTION
    client: Any = None

    async def open_session(self) -> LiveBackendSession:
        if not self.api_key and self.client is None:
            raise ValueError("api_key must be non-empty")

        client = self.client
        if client is None:
            from google import genai  # type: ignore

            client = genai.Client(api_key=self.api_key)

        session = _GeminiLiveSession(
            client=client, model=self.model, system_instruction=self.system_instruction
        )
        await session.start()
        return session


@dataclass(slots=True)
class _GeminiLiveSession(LiveBackendSession):
    client: Any
    model: str
    system_instruction: str

    _stack: contextlib.AsyncExitStack = field(init=False, repr=False)
    _session: Any = field(init=False, default=None, repr=False)
    _closed: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self._stack = contextlib.AsyncExitStack()

    async def start(self) -> None:
        logger.info(f"[Live] Connecting to Gemini Live model={self.model}")
        self._session = await self._stack.enter_async_context(
            self.client.aio.live.connect(
                model=self.model, config=build_live_config(self.system_instruction)
            )
        )

    async def send_audio(self, frame: EncodedAudioFrame) -> None:
        if self._closed:
            return
        from google.genai import types  # type: ignore

        await self._session.send_realtime_input(
            audio=types.Blob(data=frame.pcm, mime_type=frame.mime_type)
        )

    async def send_ack(self, ack: IntentAck) -> None:
        if self._closed:
            return
        from google.genai import types  # type: ignore

        await self._session.send_tool_response(
            function_responses=[
                types.FunctionResponse(
                    id=ack.call_id, name=ack.name or None, response={"result": ack.result}
                )
            ]
        )

    async def messages(self) -> AsyncIterator[LiveInboundMessage]:
        # receive() ends after each completed turn; an empty pass means the
        # connection is gone.
        while not self._closed:
            received = 0
            async for message in self._session.receive():
                received += 1
                for item in translate_server_message(message):
                    yield item
            if received == 0:
                logger.info("[Live] Gemini Live stream ended")
                return

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._stack.aclose()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug(f"[Live] Error while closing Gemini Live session: {exc}")


import contextlib  # placed at bottom to keep the main logic compact
