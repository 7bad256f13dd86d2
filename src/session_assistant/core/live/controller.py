from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Protocol

from session_assistant.core.audio.source import Microphone, MicrophoneHandle
from session_assistant.core.live.backend import LiveBackend, LiveBackendSession
from session_assistant.core.live.errors import LiveConnectionError, MicrophonePermissionError
from session_assistant.domain.events import (
    ConnectionState,
    ConnectionStateEvent,
    IntentAck,
    IntentMessage,
    LiveErrorEvent,
    LiveErrorKind,
    LiveEvent,
    LiveInboundMessage,
    MalformedPayload,
    TranscriptionMessage,
)

logger = logging.getLogger(__name__)


class LiveMessageHandler(Protocol):
    async def handle_transcription(self, message: TranscriptionMessage) -> None: ...
    async def handle_intent(self, message: IntentMessage) -> None: ...


@dataclass(frozen=True, slots=True)
class _StreamEnded:
    reason: str


@dataclass(slots=True)
class LiveSessionController:
    """Owns the single live connection of a group session.

    ``start`` and ``stop`` are the only mutators. Inbound messages are queued
    and consumed by one dispatch loop, so they are handled strictly in the
    order the remote service emitted them.
    """

    backend: LiveBackend
    microphone: Microphone
    handler: LiveMessageHandler | None = None
    connect_timeout_s: float = 10.0

    mic_acquired_count: int = 0
    mic_released_count: int = 0
    acks_sent: int = 0

    _state: ConnectionState = ConnectionState.IDLE
    _session: LiveBackendSession | None = None
    _mic: MicrophoneHandle | None = None
    _capture_task: asyncio.Task[None] | None = None
    _receive_task: asyncio.Task[None] | None = None
    _dispatch_task: asyncio.Task[None] | None = None
    _events: asyncio.Queue[LiveEvent] = field(default_factory=asyncio.Queue)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def __post_init__(self) -> None:
        if self.connect_timeout_s <= 0:
            raise ValueError("connect_timeout_s must be > 0")

    @property
    def state(self) -> ConnectionState:
        return self._state

    async def events(self) -> AsyncIterator[LiveEvent]:
        while True:
            item = await self._events.get()
            yield item

    def drain_events(self) -> list[LiveEvent]:
        items: list[LiveEvent] = []
        while not self._events.empty():
            items.append(self._events.get_nowait())
        return items

    async def start(self) -> None:
        async with self._lock:
            if self._state in (ConnectionState.CONNECTING, ConnectionState.ACTIVE):
                logger.info("[Live] Stopping existing connection before starting a new one")
                await self._teardown()
            if self._state == ConnectionState.CLOSED:
                await self._set_state(ConnectionState.IDLE)

            await self._set_state(ConnectionState.CONNECTING)

            try:
                mic = await self.microphone.acquire()
            except Exception as exc:
                logger.error(f"[Live] Microphone acquisition failed: {exc}")
                await self._set_state(ConnectionState.IDLE)
                await self._events.put(
                    LiveErrorEvent(LiveErrorKind.PERMISSION, f"Microphone access failed: {exc}")
                )
                if isinstance(exc, MicrophonePermissionError):
                    raise
                raise MicrophonePermissionError(str(exc)) from exc

            self._mic = mic
            self.mic_acquired_count += 1

            logger.info("[Live] Opening live session...")
            try:
                session = await asyncio.wait_for(
                    self.backend.open_session(), timeout=self.connect_timeout_s
                )
            except asyncio.CancelledError:
                await self._teardown()
                raise
            except Exception as exc:
                logger.error(f"[Live] Failed to open live session: {exc}")
                await self._teardown()
                await self._events.put(
                    LiveErrorEvent(LiveErrorKind.CONNECTION, f"Failed to open live session: {exc}")
                )
                raise LiveConnectionError(f"Failed to open live session: {exc}") from exc

            self._session = session
            inbound: asyncio.Queue[LiveInboundMessage | _StreamEnded] = asyncio.Queue()
            await self._set_state(ConnectionState.ACTIVE)
            self._receive_task = asyncio.create_task(self._receive_loop(session, inbound))
            self._dispatch_task = asyncio.create_task(self._dispatch_loop(session, inbound))
            self._capture_task = asyncio.create_task(self._capture_loop(session, mic))
            logger.info("[Live] Session active")

    async def stop(self) -> None:
        async with self._lock:
            if self._session is None and self._mic is None and self._dispatch_task is None:
                return
            logger.info("[Live] Stopping session (user request)")
            await self._teardown()

    async def _capture_loop(self, session: LiveBackendSession, mic: MicrophoneHandle) -> None:
        frames_sent = 0
        try:
            async for frame in mic.frames():
                if self._state != ConnectionState.ACTIVE:
                    break
                await session.send_audio(frame)
                frames_sent += 1
                if frames_sent == 1:
                    logger.info(f"[Live] First audio frame sent ({len(frame.data)} b64 chars)")
                elif frames_sent % 100 == 0:
                    logger.debug(f"[Live] Audio frames sent: {frames_sent}")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(f"[Live] Audio send failed: {exc}")
            await self._events.put(
                LiveErrorEvent(LiveErrorKind.CONNECTION, f"Live session error: {exc}")
            )
            await self._close_after_remote(session, "audio send failure")
            return

        if self._session is session:
            logger.warning("[Live] Microphone stream ended")
            await self._close_after_remote(session, "microphone stream ended")

    async def _receive_loop(
        self,
        session: LiveBackendSession,
        inbound: asyncio.Queue[LiveInboundMessage | _StreamEnded],
    ) -> None:
        try:
            async for message in session.messages():
                await inbound.put(message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(f"[Live] Remote error: {exc}")
            await self._events.put(
                LiveErrorEvent(LiveErrorKind.CONNECTION, f"Live session error: {exc}")
            )
            await inbound.put(_StreamEnded("remote error"))
            return
        await inbound.put(_StreamEnded("remote close"))

    async def _dispatch_loop(
        self,
        session: LiveBackendSession,
        inbound: asyncio.Queue[LiveInboundMessage | _StreamEnded],
    ) -> None:
        while True:
            item = await inbound.get()
            if isinstance(item, _StreamEnded):
                await self._close_after_remote(session, item.reason)
                return
            await self._dispatch_one(session, item)

    async def _dispatch_one(self, session: LiveBackendSession, item: LiveInboundMessage) -> None:
        handler = self.handler
        if isinstance(item, TranscriptionMessage):
            if handler is not None:
                try:
                    await handler.handle_transcription(item)
                except Exception:
                    logger.exception("[Live] Transcription handler failed")
            return

        if isinstance(item, IntentMessage):
            if handler is not None:
                try:
                    await handler.handle_intent(item)
                except Exception:
                    logger.exception("[Live] Intent handler failed")
            # The remote turn stalls until every call is answered, matched or not.
            await self._acknowledge(session, IntentAck(call_id=item.call_id, name=item.name))
            return

        if isinstance(item, MalformedPayload):
            logger.warning(f"[Live] Ignoring malformed payload: {item.reason}")
            await self._events.put(
                LiveErrorEvent(LiveErrorKind.MALFORMED_PAYLOAD, item.reason, recoverable=True)
            )
            if item.call_id:
                await self._acknowledge(session, IntentAck(call_id=item.call_id, name=item.name))
            return

        logger.warning(f"[Live] Unknown inbound item: {type(item).__name__}")

    async def _acknowledge(self, session: LiveBackendSession, ack: IntentAck) -> None:
        try:
            await session.send_ack(ack)
        except Exception as exc:
            logger.warning(f"[Live] Failed to acknowledge call {ack.call_id}: {exc}")
            return
        self.acks_sent += 1

    async def _close_after_remote(self, session: LiveBackendSession, reason: str) -> None:
        async with self._lock:
            if self._session is not session:
                return
            logger.warning(f"[Live] Session closed ({reason})")
            await self._teardown()

    async def _teardown(self) -> None:
        current = asyncio.current_task()
        tasks = [
            t for t in (self._capture_task, self._receive_task, self._dispatch_task) if t is not None
        ]
        self._capture_task = None
        self._receive_task = None
        self._dispatch_task = None

        others = [t for t in tasks if t is not current]
        for task in others:
            task.cancel()
        if others:
            await asyncio.gather(*others, return_exceptions=True)

        session, self._session = self._session, None
        mic, self._mic = self._mic, None
        try:
            if session is not None:
                with contextlib.suppress(Exception):
                    await session.close()
        finally:
            if mic is not None:
                try:
                    with contextlib.suppress(Exception):
                        await mic.close()
                finally:
                    self.mic_released_count += 1

        await self._set_state(ConnectionState.CLOSED)

    async def _set_state(self, state: ConnectionState) -> None:
        if self._state == state:
            return
        old_state = self._state
        self._state = state
        logger.info(f"[Live] State: {old_state.value} -> {state.value}")
        await self._events.put(ConnectionStateEvent(state))


import contextlib  # placed at bottom to keep the main logic compact
