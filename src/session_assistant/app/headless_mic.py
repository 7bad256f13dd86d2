from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Sequence

from session_assistant.app.roster import JsonRecordSink, load_roster, select_subjects
from session_assistant.app.wiring import (
    create_hub,
    create_live_backend,
    create_microphone,
    create_secret_store,
    verify_live_backend,
)
from session_assistant.config.settings import AppSettings
from session_assistant.core.orchestrator.hub import SessionHub
from session_assistant.domain.events import ConnectionState, UIEvent, UIEventType

logger = logging.getLogger(__name__)


async def run_until_assistant_closed(
    hub: SessionHub, *, on_event: Callable[[UIEvent], None] | None = None
) -> None:
    """Consume hub UI events until the live connection reports Closed."""
    while True:
        ev = await hub.ui_events.get()
        if on_event is not None:
            on_event(ev)
        if ev.type == UIEventType.CONNECTION_STATE_CHANGED and ev.payload == ConnectionState.CLOSED:
            return


def log_ui_event(ev: UIEvent) -> None:
    if ev.type == UIEventType.TRANSCRIPT_FINAL:
        logger.info(f"[Session] Transcript: '{ev.payload.text}'")
    elif ev.type == UIEventType.INTENT_UNRESOLVED:
        logger.warning(f"[Session] Unmatched subject: {ev.payload.detail!r}")
    elif ev.type == UIEventType.ERROR:
        logger.error(f"[Session] Error: {ev.payload}")
    else:
        logger.debug(f"[Session] {ev.type.value} id={ev.subject_id}")


@dataclass(slots=True)
class HeadlessMicRunner:
    settings: AppSettings
    config_path: Path
    roster_path: Path
    subject_ids: Sequence[str] = field(default_factory=list)
    linked_plan_id: str | None = None
    output_path: Path | None = None

    async def run(self) -> int:
        try:
            subjects = select_subjects(load_roster(self.roster_path), self.subject_ids)
        except (OSError, ValueError) as exc:
            logger.error(f"Failed to load roster {self.roster_path}: {exc}")
            return 2

        secrets = create_secret_store(self.settings.secrets, config_path=self.config_path)
        backend = create_live_backend(self.settings, secrets=secrets)
        if not await verify_live_backend(backend):
            logger.error("[Session] API key was rejected; check the stored key or GOOGLE_API_KEY")
            return 2
        hub = create_hub(
            self.settings,
            live_backend=backend,
            microphone=create_microphone(self.settings),
            record_sink=JsonRecordSink(self.output_path) if self.output_path else None,
        )
        hub.set_group(subjects, linked_plan_id=self.linked_plan_id)

        await hub.start()
        try:
            if not await hub.start_assistant():
                return 1
            logger.info("Listening. Press Ctrl-C to end the session.")
            try:
                await run_until_assistant_closed(hub, on_event=log_ui_event)
            except (KeyboardInterrupt, asyncio.CancelledError):
                logger.info("Session ended by user")
            records = await hub.finalize()
            logger.info(f"Finalized {len(records)} record(s)")
        finally:
            await hub.stop()

        return 0
