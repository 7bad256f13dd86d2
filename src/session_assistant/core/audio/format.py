from __future__ import annotations

import base64
import math
from dataclasses import dataclass

import numpy as np

PCM_SAMPLE_RATE_HZ = 16000
PCM_MIME_TYPE = f"audio/pcm;rate={PCM_SAMPLE_RATE_HZ}"


@dataclass(frozen=True, slots=True)
class AudioFrameF32:
    samples: np.ndarray
    sample_rate_hz: int


@dataclass(frozen=True, slots=True)
class EncodedAudioFrame:
    """One capture block in the remote service's wire format."""

    data: str  # base64 of 16-bit signed little-endian PCM
    mime_type: str = PCM_MIME_TYPE

    @property
    def pcm(self) -> bytes:
        return base64.b64decode(self.data)

    def to_wire(self) -> dict[str, str]:
        return {"data": self.data, "mimeType": self.mime_type}


def mixdown_to_mono_f32(samples: np.ndarray) -> np.ndarray:
    if samples.ndim == 1:
        mono = samples
    elif samples.ndim == 2:
        mono = samples.mean(axis=1)
    else:
        raise ValueError("samples must be 1D (mono) or 2D (frames, channels)")

    return np.asarray(mono, dtype=np.float32)


def resample_f32_linear(samples: np.ndarray, *, from_rate_hz: int, to_rate_hz: int) -> np.ndarray:
    if from_rate_hz <= 0 or to_rate_hz <= 0:
        raise ValueError("sample rates must be > 0")
    samples = np.asarray(samples, dtype=np.float32)
    if from_rate_hz == to_rate_hz or samples.size == 0:
        return samples

    src_len = int(samples.shape[0])
    dst_len = max(int(math.floor(src_len * (to_rate_hz / from_rate_hz))), 1)

    x_old = np.arange(src_len, dtype=np.float32)
    x_new = np.linspace(0.0, src_len - 1, num=dst_len, dtype=np.float32)
    return np.interp(x_new, x_old, samples).astype(np.float32)


def normalize_audio_f32(
    raw_samples: np.ndarray,
    *,
    input_sample_rate_hz: int,
    target_sample_rate_hz: int = PCM_SAMPLE_RATE_HZ,
) -> AudioFrameF32:
    mono = mixdown_to_mono_f32(raw_samples)
    if input_sample_rate_hz != target_sample_rate_hz:
        mono = resample_f32_linear(
            mono, from_rate_hz=input_sample_rate_hz, to_rate_hz=target_sample_rate_hz
        )
    return AudioFrameF32(samples=mono, sample_rate_hz=target_sample_rate_hz)


def float32_to_pcm16le_bytes(samples: np.ndarray) -> bytes:
    samples = np.asarray(samples, dtype=np.float32).reshape(-1)
    clipped = np.clip(samples, -1.0, 1.0)
    int16 = np.round(clipped * 32767.0).astype("<i2")
    return int16.tobytes()


def encode_pcm_frame(samples: np.ndarray) -> EncodedAudioFrame:
    """Encode 16 kHz mono float samples for the wire.

    Runs inside the audio callback, so it only does vectorized numpy work and a
    base64 pass. The sample rate is the caller's responsibility.
    """
    pcm = float32_to_pcm16le_bytes(samples)
    return EncodedAudioFrame(data=base64.b64encode(pcm).decode("ascii"))
