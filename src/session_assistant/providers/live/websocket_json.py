"""Live backend speaking the plain JSON contract over a WebSocket.

Outbound: ``{"setup": {...}}`` once, then ``{"realtimeInput": {data, mimeType}}``
per audio frame and ``{"intentResponse": {callId, result}}`` per intent.
Inbound: ``{"setupComplete": {}}`` once, then transcription and intent
messages, either bare or wrapped in ``transcription`` / ``intent``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from session_assistant.core.audio.format import PCM_MIME_TYPE, EncodedAudioFrame
from session_assistant.core.live.backend import LiveBackend, LiveBackendSession
from session_assistant.core.live.errors import LiveConnectionError
from session_assistant.core.live.messages import parse_inbound_message
from session_assistant.domain.events import IntentAck, LiveInboundMessage, MalformedPayload

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WebSocketJsonLiveBackend(LiveBackend):
    endpoint: str
    token: str = ""
    system_instruction: str = ""
    open_timeout_s: float = 5.0

    async def open_session(self) -> LiveBackendSession:
        if not self.endpoint:
            raise ValueError("endpoint must be non-empty")
        if self.open_timeout_s <= 0:
            raise ValueError("open_timeout_s must be > 0")

        session = _WebSocketJsonSession(
            endpoint=self.endpoint,
            token=self.token,
            system_instruction=self.system_instruction,
            open_timeout_s=self.open_timeout_s,
        )
        await session.start()
        return session


@dataclass(slots=True)
class _WebSocketJsonSession(LiveBackendSession):
    endpoint: str
    token: str
    system_instruction: str
    open_timeout_s: float

    _ws: Any = field(init=False, default=None, repr=False)
    _closed: bool = field(init=False, default=False)

    async def start(self) -> None:
        import websockets

        headers = {"Authorization": f"Bearer {self.token}"} if self.token else None
        self._ws = await websockets.connect(
            self.endpoint, additional_headers=headers, open_timeout=self.open_timeout_s
        )
        setup = {"setup": {"mimeType": PCM_MIME_TYPE, "systemInstruction": self.system_instruction}}
        await self._ws.send(json.dumps(setup))

        try:
            raw = await asyncio.wait_for(self._ws.recv(), timeout=self.open_timeout_s)
        except Exception:
            await self.close()
            raise
        data = _decode(raw)
        if not isinstance(data, dict) or "setupComplete" not in data:
            await self.close()
            raise LiveConnectionError(f"expected setupComplete, got {str(raw)[:200]!r}")
        logger.info(f"[Live] WebSocket session ready at {self.endpoint}")

    async def send_audio(self, frame: EncodedAudioFrame) -> None:
        if self._closed:
            return
        await self._ws.send(json.dumps({"realtimeInput": frame.to_wire()}))

    async def send_ack(self, ack: IntentAck) -> None:
        if self._closed:
            return
        await self._ws.send(json.dumps({"intentResponse": ack.to_wire()}))

    async def messages(self) -> AsyncIterator[LiveInboundMessage]:
        from websockets.exceptions import ConnectionClosedOK

        try:
            async for raw in self._ws:
                data = _decode(raw)
                if data is None:
                    yield MalformedPayload(reason="message is not valid JSON")
                    continue
                if isinstance(data, dict) and "setupComplete" in data:
                    continue
                yield parse_inbound_message(data)
        except ConnectionClosedOK:
            return

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._ws is not None:
            with contextlib.suppress(Exception):
                await self._ws.close()


def _decode(raw: str | bytes) -> Any:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="ignore")
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("[Live] Inbound message parse error")
        return None


import contextlib  # placed at bottom to keep the main logic compact
