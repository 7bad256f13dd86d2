from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from types import SimpleNamespace

import numpy as np

from session_assistant.core.audio.format import encode_pcm_frame
from session_assistant.domain.events import (
    IntentAck,
    IntentMessage,
    MalformedPayload,
    TranscriptionMessage,
)
from session_assistant.providers.live.gemini_live import (
    GeminiLiveBackend,
    build_live_config,
    translate_server_message,
)


def _transcript(text: str | None, *, turn_complete: bool = False):
    transcription = SimpleNamespace(text=text) if text is not None else None
    return SimpleNamespace(
        server_content=SimpleNamespace(input_transcription=transcription, turn_complete=turn_complete),
        tool_call=None,
    )


def _tool_call(*calls):
    return SimpleNamespace(server_content=None, tool_call=SimpleNamespace(function_calls=list(calls)))


def _call(call_id: str, name: str, **args):
    return SimpleNamespace(id=call_id, name=name, args=args)


def test_input_transcription_and_turn_complete():
    assert translate_server_message(_transcript("Sam got")) == [
        TranscriptionMessage(text="Sam got", turn_complete=False)
    ]
    assert translate_server_message(_transcript(None, turn_complete=True)) == [
        TranscriptionMessage(text="", turn_complete=True)
    ]
    assert translate_server_message(_transcript(None)) == []


def test_function_calls_become_intents():
    items = translate_server_message(
        _tool_call(
            _call("f1", "record_trial", student_name="Sam", status="correct"),
            _call("f2", "update_support_level", student_name="Leo", level="Minimal"),
        )
    )
    assert items == [
        IntentMessage(
            kind="RecordTrial",
            subject_name_hint="Sam",
            call_id="f1",
            payload={"status": "correct"},
            name="record_trial",
        ),
        IntentMessage(
            kind="UpdateSupportLevel",
            subject_name_hint="Leo",
            call_id="f2",
            payload={"level": "Minimal"},
            name="update_support_level",
        ),
    ]


def test_unknown_function_is_malformed_but_keeps_call_id():
    [item] = translate_server_message(_tool_call(_call("f3", "play_music", student_name="Sam")))
    assert isinstance(item, MalformedPayload)
    assert item.call_id == "f3"
    assert item.name == "play_music"


def test_live_config_declares_the_three_tools():
    config = build_live_config("be helpful")
    names = [d.name for d in config.tools[0].function_declarations]
    assert names == ["record_trial", "add_observation", "update_support_level"]
    assert config.system_instruction is not None


@dataclass(slots=True)
class FakeLiveSession:
    turns: list
    realtime: list = field(default_factory=list)
    tool_responses: list = field(default_factory=list)

    async def send_realtime_input(self, *, audio) -> None:
        self.realtime.append(audio)

    async def send_tool_response(self, *, function_responses) -> None:
        self.tool_responses.extend(function_responses)

    async def receive(self):
        if not self.turns:
            return
        for message in self.turns.pop(0):
            yield message


@dataclass(slots=True)
class FakeLive:
    session: FakeLiveSession
    connects: list = field(default_factory=list)
    exited: bool = False

    @contextlib.asynccontextmanager
    async def connect(self, *, model, config):
        self.connects.append((model, config))
        try:
            yield self.session
        finally:
            self.exited = True


def test_session_streams_turns_and_answers_tool_calls():
    async def run():
        session = FakeLiveSession(
            turns=[
                [_transcript("Sam "), _transcript("correct", turn_complete=True)],
                [_tool_call(_call("f1", "record_trial", student_name="Sam", status="correct"))],
            ]
        )
        live = FakeLive(session=session)
        backend = GeminiLiveBackend(
            api_key="", model="test-model", client=SimpleNamespace(aio=SimpleNamespace(live=live))
        )

        opened = await backend.open_session()
        assert live.connects[0][0] == "test-model"

        await opened.send_audio(encode_pcm_frame(np.zeros(16, dtype=np.float32)))
        assert session.realtime[0].mime_type == "audio/pcm;rate=16000"
        assert session.realtime[0].data == b"\x00\x00" * 16

        received = [item async for item in opened.messages()]
        assert [type(i) for i in received] == [
            TranscriptionMessage,
            TranscriptionMessage,
            IntentMessage,
        ]

        await opened.send_ack(IntentAck(call_id="f1", name="record_trial"))
        [response] = session.tool_responses
        assert response.id == "f1"
        assert response.name == "record_trial"
        assert response.response == {"result": "ok"}

        await opened.close()
        await opened.close()
        assert live.exited

    asyncio.run(run())
