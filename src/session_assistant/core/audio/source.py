from __future__ import annotations

import asyncio
import logging
import queue
from dataclasses import dataclass, field
from typing import AsyncIterator, Protocol

import janus
import numpy as np

from session_assistant.core.audio.format import (
    PCM_SAMPLE_RATE_HZ,
    EncodedAudioFrame,
    encode_pcm_frame,
    normalize_audio_f32,
)
from session_assistant.core.live.errors import MicrophonePermissionError

logger = logging.getLogger(__name__)

DEFAULT_BLOCKSIZE = 4096  # ~256 ms at 16 kHz


class MicrophoneHandle(Protocol):
    def frames(self) -> AsyncIterator[EncodedAudioFrame]: ...
    async def close(self) -> None: ...


class Microphone(Protocol):
    async def acquire(self) -> MicrophoneHandle:
        """Open a live input stream or raise MicrophonePermissionError."""


@dataclass(slots=True)
class SoundDeviceMicrophone:
    """Microphone backed by sounddevice/PortAudio."""

    device: int | str | None = None
    blocksize: int = DEFAULT_BLOCKSIZE
    # Capture format requested from the device; frames are normalized to 16 kHz mono.
    sample_rate_hz: int = PCM_SAMPLE_RATE_HZ
    channels: int = 1
    max_queue_frames: int = 32

    def __post_init__(self) -> None:
        if self.sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0")
        if self.channels <= 0:
            raise ValueError("channels must be > 0")
        if self.blocksize <= 0:
            raise ValueError("blocksize must be > 0")
        if self.max_queue_frames <= 0:
            raise ValueError("max_queue_frames must be > 0")

    async def acquire(self) -> MicrophoneHandle:
        handle = _SoundDeviceCaptureHandle(
            device=self.device,
            blocksize=self.blocksize,
            sample_rate_hz=self.sample_rate_hz,
            channels=self.channels,
            max_queue_frames=self.max_queue_frames,
        )
        try:
            handle.open()
        except Exception as exc:
            await handle.close()
            raise MicrophonePermissionError(f"Microphone unavailable: {exc}") from exc
        return handle


@dataclass(slots=True)
class _SoundDeviceCaptureHandle:
    device: int | str | None
    blocksize: int
    sample_rate_hz: int
    channels: int
    max_queue_frames: int

    _queue: janus.Queue[EncodedAudioFrame | None] = field(init=False, repr=False)
    _stream: object | None = field(init=False, default=None, repr=False)
    _closed: bool = field(init=False, default=False)
    _dropped: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        self._queue = janus.Queue(maxsize=self.max_queue_frames)

    def open(self) -> None:
        import sounddevice as sd  # type: ignore

        def _callback(indata, _frames, _time, status):  # called from PortAudio thread
            if self._closed:
                return
            if status:
                logger.warning("sounddevice input status: %s", status)

            samples = np.asarray(indata, dtype=np.float32)
            if actual_rate != PCM_SAMPLE_RATE_HZ or samples.ndim > 1:
                samples = normalize_audio_f32(samples, input_sample_rate_hz=actual_rate).samples
            frame = encode_pcm_frame(samples)
            try:
                self._queue.sync_q.put_nowait(frame)
            except queue.Full:
                # Never block the audio thread; a late frame is worth less than a glitch.
                self._dropped += 1

        stream = sd.InputStream(
            samplerate=self.sample_rate_hz,
            channels=self.channels,
            dtype="float32",
            callback=_callback,
            device=self.device,
            blocksize=self.blocksize,
        )
        actual_rate = int(stream.samplerate)
        self._stream = stream
        stream.start()
        logger.info(
            f"[Mic] Capture started ({actual_rate} Hz, {self.channels} ch, blocksize={self.blocksize})"
        )

    async def frames(self) -> AsyncIterator[EncodedAudioFrame]:
        while True:
            item = await self._queue.async_q.get()
            if item is None:
                return
            yield item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        stream = self._stream
        self._stream = None
        if stream is not None:
            with contextlib.suppress(Exception):
                stream.stop()
            with contextlib.suppress(Exception):
                stream.close()

        with contextlib.suppress(Exception):
            self._queue.sync_q.put_nowait(None)

        self._queue.close()
        with contextlib.suppress(Exception):
            await asyncio.wait_for(self._queue.wait_closed(), timeout=1.0)
        if self._dropped:
            logger.warning(f"[Mic] Dropped {self._dropped} frames while the consumer lagged")
        logger.info("[Mic] Capture released")


import contextlib  # keep main logic compact
