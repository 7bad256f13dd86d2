from __future__ import annotations

from typing import AsyncIterator, Protocol

from session_assistant.core.audio.format import EncodedAudioFrame
from session_assistant.domain.events import IntentAck, LiveInboundMessage


class LiveBackendSession(Protocol):
    async def send_audio(self, frame: EncodedAudioFrame) -> None: ...
    async def send_ack(self, ack: IntentAck) -> None: ...
    async def close(self) -> None: ...

    def messages(self) -> AsyncIterator[LiveInboundMessage]:
        """Yield inbound messages in emission order.

        Returning means the remote side closed the stream; raising means it
        failed.
        """


class LiveBackend(Protocol):
    async def open_session(self) -> LiveBackendSession:
        """Return once the remote service has acknowledged the stream."""
