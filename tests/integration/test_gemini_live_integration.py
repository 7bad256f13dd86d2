from __future__ import annotations

import asyncio
import os

import numpy as np
import pytest

from session_assistant.core.audio.format import encode_pcm_frame
from session_assistant.providers.live.gemini_live import GeminiLiveBackend

pytestmark = pytest.mark.skipif(
    os.getenv("INTEGRATION") != "1", reason="set INTEGRATION=1 to run integration tests"
)


@pytest.mark.asyncio
async def test_gemini_live_connect_and_stream_silence() -> None:
    api_key = os.getenv("GOOGLE_API_KEY")
    if not api_key:
        pytest.skip("missing env var GOOGLE_API_KEY")

    backend = GeminiLiveBackend(
        api_key=api_key,
        model=os.getenv("GEMINI_LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-09-2025"),
    )
    session = await backend.open_session()
    try:
        silence = encode_pcm_frame(np.zeros(4096, dtype=np.float32))
        for _ in range(8):
            await session.send_audio(silence)
            await asyncio.sleep(0.256)
    finally:
        await session.close()
