from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol

from session_assistant.domain.models import StructuredNote


class NoteDrafter(Protocol):
    async def draft_note(self, *, observations: str) -> StructuredNote: ...

    async def close(self) -> None: ...


@dataclass(slots=True)
class SemaphoreNoteDrafter:
    inner: NoteDrafter
    semaphore: asyncio.Semaphore

    async def draft_note(self, *, observations: str) -> StructuredNote:
        async with self.semaphore:
            return await self.inner.draft_note(observations=observations)

    async def close(self) -> None:
        await self.inner.close()
