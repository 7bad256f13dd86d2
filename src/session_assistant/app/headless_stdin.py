"""Replay inbound live messages from JSON lines on stdin.

No audio and no network: each stdin line is fed through the live session
controller as if the remote service had sent it, and every acknowledgement
is written to stdout as a JSON line.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Sequence, TextIO

from session_assistant.app.headless_mic import log_ui_event, run_until_assistant_closed
from session_assistant.app.roster import JsonRecordSink, load_roster, select_subjects
from session_assistant.app.wiring import create_hub
from session_assistant.config.settings import AppSettings
from session_assistant.core.audio.format import EncodedAudioFrame
from session_assistant.core.live.messages import parse_inbound_message
from session_assistant.domain.events import IntentAck, LiveInboundMessage, MalformedPayload

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SilentMicrophone:
    """Acquires instantly and produces no frames until closed."""

    async def acquire(self) -> "_SilentHandle":
        return _SilentHandle()


@dataclass(slots=True)
class _SilentHandle:
    _closed: asyncio.Event = field(default_factory=asyncio.Event)

    async def frames(self) -> AsyncIterator[EncodedAudioFrame]:
        await self._closed.wait()
        return
        yield  # pragma: no cover

    async def close(self) -> None:
        self._closed.set()


@dataclass(slots=True)
class StdinLiveBackend:
    stdin: TextIO
    stdout: TextIO

    async def open_session(self) -> "_StdinLiveSession":
        return _StdinLiveSession(stdin=self.stdin, stdout=self.stdout)


@dataclass(slots=True)
class _StdinLiveSession:
    stdin: TextIO
    stdout: TextIO
    acks: list[IntentAck] = field(default_factory=list)

    async def send_audio(self, frame: EncodedAudioFrame) -> None:
        return None

    async def send_ack(self, ack: IntentAck) -> None:
        self.acks.append(ack)
        self.stdout.write(json.dumps(ack.to_wire()) + "\n")
        self.stdout.flush()

    async def close(self) -> None:
        return None

    async def messages(self) -> AsyncIterator[LiveInboundMessage]:
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, self.stdin.readline)
            if not line:
                return
            text = line.strip()
            if not text:
                continue
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                yield MalformedPayload(reason="line is not valid JSON")
                continue
            yield parse_inbound_message(data)


@dataclass(slots=True)
class HeadlessStdinRunner:
    settings: AppSettings
    roster_path: Path
    subject_ids: Sequence[str] = field(default_factory=list)
    output_path: Path | None = None
    stdin: TextIO = field(default_factory=lambda: sys.stdin)
    stdout: TextIO = field(default_factory=lambda: sys.stdout)

    async def run(self) -> int:
        try:
            subjects = select_subjects(load_roster(self.roster_path), self.subject_ids)
        except (OSError, ValueError) as exc:
            logger.error(f"Failed to load roster {self.roster_path}: {exc}")
            return 2

        hub = create_hub(
            self.settings,
            live_backend=StdinLiveBackend(stdin=self.stdin, stdout=self.stdout),
            microphone=SilentMicrophone(),
            record_sink=JsonRecordSink(self.output_path) if self.output_path else None,
        )
        hub.set_group(subjects)

        await hub.start()
        try:
            if not await hub.start_assistant():
                return 1
            await run_until_assistant_closed(hub, on_event=log_ui_event)
            records = await hub.finalize()
        finally:
            await hub.stop()

        if self.output_path is None:
            self.stdout.write(json.dumps({"records": [r.to_dict() for r in records]}) + "\n")
            self.stdout.flush()
        return 0
