from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import numpy as np
import pytest

from session_assistant.core.audio.format import encode_pcm_frame
from session_assistant.core.live.controller import LiveSessionController
from session_assistant.core.live.errors import LiveConnectionError, MicrophonePermissionError
from session_assistant.domain.events import (
    ConnectionState,
    ConnectionStateEvent,
    IntentMessage,
    LiveErrorEvent,
    LiveErrorKind,
    MalformedPayload,
    TranscriptionMessage,
)


@dataclass(slots=True)
class FakeSession:
    audio: list = field(default_factory=list)
    acks: list = field(default_factory=list)
    closed: bool = False
    _inbound: asyncio.Queue = field(default_factory=asyncio.Queue)

    def feed(self, item) -> None:
        self._inbound.put_nowait(item)

    def end(self) -> None:
        self._inbound.put_nowait(None)

    def fail(self, exc: BaseException) -> None:
        self._inbound.put_nowait(exc)

    async def send_audio(self, frame) -> None:
        self.audio.append(frame)

    async def send_ack(self, ack) -> None:
        self.acks.append(ack.to_wire())

    async def close(self) -> None:
        self.closed = True

    async def messages(self):
        while True:
            item = await self._inbound.get()
            if item is None:
                return
            if isinstance(item, BaseException):
                raise item
            yield item


@dataclass(slots=True)
class FakeBackend:
    sessions: list = field(default_factory=list)
    error: BaseException | None = None

    async def open_session(self) -> FakeSession:
        if self.error is not None:
            raise self.error
        session = FakeSession()
        self.sessions.append(session)
        return session


@dataclass(slots=True)
class FakeMicHandle:
    closed: bool = False
    _frames: asyncio.Queue = field(default_factory=asyncio.Queue)

    def push(self, frame) -> None:
        self._frames.put_nowait(frame)

    async def frames(self):
        while True:
            item = await self._frames.get()
            if item is None:
                return
            yield item

    async def close(self) -> None:
        self.closed = True
        self._frames.put_nowait(None)


@dataclass(slots=True)
class FakeMicrophone:
    denied: bool = False
    handles: list = field(default_factory=list)

    async def acquire(self) -> FakeMicHandle:
        if self.denied:
            raise PermissionError("microphone access denied")
        handle = FakeMicHandle()
        self.handles.append(handle)
        return handle


@dataclass(slots=True)
class RecordingHandler:
    seen: list = field(default_factory=list)
    fail_on_intent: bool = False

    async def handle_transcription(self, message) -> None:
        await asyncio.sleep(0.01)
        self.seen.append(("text", message.text))

    async def handle_intent(self, message) -> None:
        self.seen.append(("intent", message.call_id))
        if self.fail_on_intent:
            raise RuntimeError("handler blew up")


async def _wait_for(predicate, *, timeout_s: float = 1.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout_s)


def _states(events) -> list[ConnectionState]:
    return [e.state for e in events if isinstance(e, ConnectionStateEvent)]


def _intent(call_id: str, hint: str = "Nobody") -> IntentMessage:
    return IntentMessage(
        kind="RecordTrial", subject_name_hint=hint, call_id=call_id, payload={"status": "correct"}
    )


def test_start_then_stop_walks_states_and_releases_everything():
    async def run():
        backend, mic = FakeBackend(), FakeMicrophone()
        controller = LiveSessionController(backend=backend, microphone=mic)

        await controller.start()
        assert controller.state == ConnectionState.ACTIVE

        await controller.stop()
        assert controller.state == ConnectionState.CLOSED
        assert _states(controller.drain_events()) == [
            ConnectionState.CONNECTING,
            ConnectionState.ACTIVE,
            ConnectionState.CLOSED,
        ]
        assert backend.sessions[0].closed
        assert mic.handles[0].closed
        assert controller.mic_acquired_count == controller.mic_released_count == 1

    asyncio.run(run())


def test_audio_frames_are_forwarded_while_active():
    async def run():
        backend, mic = FakeBackend(), FakeMicrophone()
        controller = LiveSessionController(backend=backend, microphone=mic)
        await controller.start()

        frame = encode_pcm_frame(np.zeros(4096, dtype=np.float32))
        mic.handles[0].push(frame)
        mic.handles[0].push(frame)
        await _wait_for(lambda: len(backend.sessions[0].audio) == 2)

        await controller.stop()
        assert backend.sessions[0].audio[0].mime_type == "audio/pcm;rate=16000"

    asyncio.run(run())


def test_microphone_denied_returns_to_idle_without_connecting():
    async def run():
        backend, mic = FakeBackend(), FakeMicrophone(denied=True)
        controller = LiveSessionController(backend=backend, microphone=mic)

        with pytest.raises(MicrophonePermissionError):
            await controller.start()

        assert controller.state == ConnectionState.IDLE
        assert backend.sessions == []
        events = controller.drain_events()
        assert _states(events) == [ConnectionState.CONNECTING, ConnectionState.IDLE]
        errors = [e for e in events if isinstance(e, LiveErrorEvent)]
        assert [e.kind for e in errors] == [LiveErrorKind.PERMISSION]

    asyncio.run(run())


def test_connection_failure_closes_and_releases_microphone():
    async def run():
        backend = FakeBackend(error=OSError("network unreachable"))
        mic = FakeMicrophone()
        controller = LiveSessionController(backend=backend, microphone=mic)

        with pytest.raises(LiveConnectionError):
            await controller.start()

        assert controller.state == ConnectionState.CLOSED
        assert mic.handles[0].closed
        assert controller.mic_released_count == 1
        errors = [e for e in controller.drain_events() if isinstance(e, LiveErrorEvent)]
        assert [e.kind for e in errors] == [LiveErrorKind.CONNECTION]

    asyncio.run(run())


def test_unmatched_intent_is_still_acknowledged():
    async def run():
        backend, mic = FakeBackend(), FakeMicrophone()
        controller = LiveSessionController(
            backend=backend, microphone=mic, handler=RecordingHandler()
        )
        await controller.start()

        backend.sessions[0].feed(_intent("call-7", hint="Zoe"))
        await _wait_for(lambda: controller.acks_sent == 1)

        assert backend.sessions[0].acks == [{"callId": "call-7", "result": "ok"}]
        await controller.stop()

    asyncio.run(run())


def test_intent_is_acknowledged_even_when_handler_fails():
    async def run():
        backend, mic = FakeBackend(), FakeMicrophone()
        controller = LiveSessionController(
            backend=backend, microphone=mic, handler=RecordingHandler(fail_on_intent=True)
        )
        await controller.start()

        backend.sessions[0].feed(_intent("c1"))
        await _wait_for(lambda: controller.acks_sent == 1)
        assert controller.state == ConnectionState.ACTIVE
        await controller.stop()

    asyncio.run(run())


def test_inbound_messages_are_handled_in_emission_order():
    async def run():
        backend, mic = FakeBackend(), FakeMicrophone()
        handler = RecordingHandler()
        controller = LiveSessionController(backend=backend, microphone=mic, handler=handler)
        await controller.start()

        session = backend.sessions[0]
        session.feed(TranscriptionMessage("a", False))
        session.feed(_intent("c1"))
        session.feed(TranscriptionMessage("b", True))
        session.feed(_intent("c2"))
        await _wait_for(lambda: len(handler.seen) == 4)

        assert handler.seen == [("text", "a"), ("intent", "c1"), ("text", "b"), ("intent", "c2")]
        assert [a["callId"] for a in session.acks] == ["c1", "c2"]
        await controller.stop()

    asyncio.run(run())


def test_malformed_payload_is_skipped_and_acked_when_call_id_known():
    async def run():
        backend, mic = FakeBackend(), FakeMicrophone()
        controller = LiveSessionController(backend=backend, microphone=mic)
        await controller.start()

        session = backend.sessions[0]
        session.feed(MalformedPayload(reason="no kind", call_id="c5"))
        session.feed(MalformedPayload(reason="garbage"))
        session.feed(_intent("c6"))
        await _wait_for(lambda: controller.acks_sent == 2)

        assert [a["callId"] for a in session.acks] == ["c5", "c6"]
        assert controller.state == ConnectionState.ACTIVE
        errors = [e for e in controller.drain_events() if isinstance(e, LiveErrorEvent)]
        assert [e.kind for e in errors] == [LiveErrorKind.MALFORMED_PAYLOAD] * 2
        await controller.stop()

    asyncio.run(run())


def test_remote_close_releases_microphone():
    async def run():
        backend, mic = FakeBackend(), FakeMicrophone()
        handler = RecordingHandler()
        controller = LiveSessionController(backend=backend, microphone=mic, handler=handler)
        await controller.start()

        backend.sessions[0].feed(TranscriptionMessage("last words", True))
        backend.sessions[0].end()
        await _wait_for(lambda: controller.state == ConnectionState.CLOSED)

        assert handler.seen == [("text", "last words")]
        assert mic.handles[0].closed
        assert backend.sessions[0].closed
        assert controller.mic_released_count == 1

    asyncio.run(run())


def test_remote_error_reports_and_releases_microphone():
    async def run():
        backend, mic = FakeBackend(), FakeMicrophone()
        controller = LiveSessionController(backend=backend, microphone=mic)
        await controller.start()

        backend.sessions[0].fail(ConnectionResetError("socket reset"))
        await _wait_for(lambda: controller.state == ConnectionState.CLOSED)

        assert controller.mic_released_count == 1
        errors = [e for e in controller.drain_events() if isinstance(e, LiveErrorEvent)]
        assert [e.kind for e in errors] == [LiveErrorKind.CONNECTION]

    asyncio.run(run())


def test_restart_from_closed_goes_through_idle():
    async def run():
        backend, mic = FakeBackend(), FakeMicrophone()
        controller = LiveSessionController(backend=backend, microphone=mic)
        await controller.start()
        await controller.stop()
        controller.drain_events()

        await controller.start()
        assert _states(controller.drain_events()) == [
            ConnectionState.IDLE,
            ConnectionState.CONNECTING,
            ConnectionState.ACTIVE,
        ]
        await controller.stop()
        assert controller.mic_acquired_count == controller.mic_released_count == 2
        assert len(backend.sessions) == 2

    asyncio.run(run())


def test_start_while_active_replaces_the_connection():
    async def run():
        backend, mic = FakeBackend(), FakeMicrophone()
        controller = LiveSessionController(backend=backend, microphone=mic)
        await controller.start()
        await controller.start()

        assert backend.sessions[0].closed
        assert not backend.sessions[1].closed
        assert controller.mic_released_count == 1
        await controller.stop()

    asyncio.run(run())
