from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from session_assistant.config.prompts import LIVE_SYSTEM_INSTRUCTION

DEFAULT_LIVE_MODEL = "gemini-2.5-flash-native-audio-preview-09-2025"
DEFAULT_LLM_MODEL = "gemini-3-flash-preview"
DEFAULT_WEBSOCKET_ENDPOINT = "ws://127.0.0.1:8765/live"


class LiveProviderName(str, Enum):
    GEMINI = "gemini"
    WEBSOCKET = "websocket"


class LLMProviderName(str, Enum):
    GEMINI = "gemini"


class SecretsBackend(str, Enum):
    KEYRING = "keyring"
    ENCRYPTED_FILE = "encrypted_file"


@dataclass(slots=True)
class ProviderSettings:
    live: LiveProviderName = LiveProviderName.GEMINI
    llm: LLMProviderName = LLMProviderName.GEMINI

    def validate(self) -> None:
        if not isinstance(self.live, LiveProviderName):
            raise ValueError("invalid live provider")
        if not isinstance(self.llm, LLMProviderName):
            raise ValueError("invalid llm provider")


@dataclass(slots=True)
class AudioSettings:
    sample_rate_hz: int = 16000
    channels: int = 1
    blocksize: int = 4096
    input_device: str = ""

    def validate(self) -> None:
        if self.sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0")
        if self.channels <= 0:
            raise ValueError("channels must be > 0")
        if self.blocksize <= 0:
            raise ValueError("blocksize must be > 0")
        if self.input_device is None:
            raise ValueError("input_device must be a string")


@dataclass(slots=True)
class GeminiLiveSettings:
    model: str = DEFAULT_LIVE_MODEL
    system_instruction: str = LIVE_SYSTEM_INSTRUCTION

    def validate(self) -> None:
        if not self.model:
            raise ValueError("model must be non-empty")


@dataclass(slots=True)
class WebSocketLiveSettings:
    endpoint: str = DEFAULT_WEBSOCKET_ENDPOINT
    open_timeout_s: float = 5.0

    def validate(self) -> None:
        if not self.endpoint.startswith(("ws://", "wss://")):
            raise ValueError("endpoint must be a ws:// or wss:// URL")
        if self.open_timeout_s <= 0:
            raise ValueError("open_timeout_s must be > 0")


@dataclass(slots=True)
class SessionSettings:
    history_depth: int = 10
    transcript_capacity: int = 30
    trial_feedback_s: float = 0.8
    support_highlight_s: float = 2.5
    connect_timeout_s: float = 10.0
    transcript_to_narrative: bool = True

    def validate(self) -> None:
        if self.history_depth <= 0:
            raise ValueError("history_depth must be > 0")
        if self.transcript_capacity <= 0:
            raise ValueError("transcript_capacity must be > 0")
        if self.trial_feedback_s <= 0:
            raise ValueError("trial_feedback_s must be > 0")
        if self.support_highlight_s <= 0:
            raise ValueError("support_highlight_s must be > 0")
        if self.connect_timeout_s <= 0:
            raise ValueError("connect_timeout_s must be > 0")


@dataclass(slots=True)
class LLMSettings:
    model: str = DEFAULT_LLM_MODEL
    concurrency_limit: int = 1

    def validate(self) -> None:
        if not self.model:
            raise ValueError("model must be non-empty")
        if self.concurrency_limit <= 0:
            raise ValueError("concurrency_limit must be > 0")


@dataclass(slots=True)
class SecretsSettings:
    backend: SecretsBackend = SecretsBackend.KEYRING
    encrypted_file_path: str = "secrets.json"

    def validate(self) -> None:
        if not isinstance(self.backend, SecretsBackend):
            raise ValueError("invalid secrets backend")
        if self.backend == SecretsBackend.ENCRYPTED_FILE and not self.encrypted_file_path:
            raise ValueError("encrypted_file_path must be set for encrypted_file backend")


@dataclass(slots=True)
class LoggingSettings:
    level: str = "INFO"
    file_name: str = "session-assistant.log"
    max_bytes: int = 1024 * 1024
    backup_count: int = 1

    def validate(self) -> None:
        if self.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError("level must be a standard logging level name")
        if self.max_bytes < 0:
            raise ValueError("max_bytes must be >= 0")
        if self.backup_count < 0:
            raise ValueError("backup_count must be >= 0")


@dataclass(slots=True)
class AppSettings:
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    audio: AudioSettings = field(default_factory=AudioSettings)
    gemini_live: GeminiLiveSettings = field(default_factory=GeminiLiveSettings)
    websocket_live: WebSocketLiveSettings = field(default_factory=WebSocketLiveSettings)
    session: SessionSettings = field(default_factory=SessionSettings)
    llm: LLMSettings = field(default_factory=LLMSettings)
    secrets: SecretsSettings = field(default_factory=SecretsSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def validate(self) -> None:
        self.provider.validate()
        self.audio.validate()
        self.gemini_live.validate()
        self.websocket_live.validate()
        self.session.validate()
        self.llm.validate()
        self.secrets.validate()
        self.logging.validate()


def to_dict(settings: AppSettings) -> dict[str, Any]:
    return {
        "provider": {"live": settings.provider.live.value, "llm": settings.provider.llm.value},
        "audio": {
            "sample_rate_hz": settings.audio.sample_rate_hz,
            "channels": settings.audio.channels,
            "blocksize": settings.audio.blocksize,
            "input_device": settings.audio.input_device,
        },
        "gemini_live": {
            "model": settings.gemini_live.model,
            "system_instruction": settings.gemini_live.system_instruction,
        },
        "websocket_live": {
            "endpoint": settings.websocket_live.endpoint,
            "open_timeout_s": settings.websocket_live.open_timeout_s,
        },
        "session": {
            "history_depth": settings.session.history_depth,
            "transcript_capacity": settings.session.transcript_capacity,
            "trial_feedback_s": settings.session.trial_feedback_s,
            "support_highlight_s": settings.session.support_highlight_s,
            "connect_timeout_s": settings.session.connect_timeout_s,
            "transcript_to_narrative": settings.session.transcript_to_narrative,
        },
        "llm": {
            "model": settings.llm.model,
            "concurrency_limit": settings.llm.concurrency_limit,
        },
        "secrets": {
            "backend": settings.secrets.backend.value,
            "encrypted_file_path": settings.secrets.encrypted_file_path,
        },
        "logging": {
            "level": settings.logging.level,
            "file_name": settings.logging.file_name,
            "max_bytes": settings.logging.max_bytes,
            "backup_count": settings.logging.backup_count,
        },
    }


def _parse_live_provider(value: str) -> LiveProviderName:
    """Parse live provider, falling back to GEMINI for unknown values."""
    try:
        return LiveProviderName(value)
    except ValueError:
        return LiveProviderName.GEMINI


def from_dict(data: dict[str, Any]) -> AppSettings:
    provider = data.get("provider") or {}
    audio = data.get("audio") or {}
    gemini_live = data.get("gemini_live") or {}
    websocket_live = data.get("websocket_live") or {}
    session = data.get("session") or {}
    llm = data.get("llm") or {}
    secrets = data.get("secrets") or {}
    log = data.get("logging") or {}

    input_device_raw = audio.get("input_device")

    settings = AppSettings(
        provider=ProviderSettings(
            live=_parse_live_provider(provider.get("live", LiveProviderName.GEMINI.value)),
            llm=LLMProviderName(provider.get("llm", LLMProviderName.GEMINI.value)),
        ),
        audio=AudioSettings(
            sample_rate_hz=int(audio.get("sample_rate_hz", 16000)),
            channels=int(audio.get("channels", 1)),
            blocksize=int(audio.get("blocksize", 4096)),
            input_device=str(input_device_raw) if input_device_raw is not None else "",
        ),
        gemini_live=GeminiLiveSettings(
            model=str(gemini_live.get("model", DEFAULT_LIVE_MODEL)),
            system_instruction=str(
                gemini_live.get("system_instruction", LIVE_SYSTEM_INSTRUCTION)
            ),
        ),
        websocket_live=WebSocketLiveSettings(
            endpoint=str(websocket_live.get("endpoint", DEFAULT_WEBSOCKET_ENDPOINT)),
            open_timeout_s=float(websocket_live.get("open_timeout_s", 5.0)),
        ),
        session=SessionSettings(
            history_depth=int(session.get("history_depth", 10)),
            transcript_capacity=int(session.get("transcript_capacity", 30)),
            trial_feedback_s=float(session.get("trial_feedback_s", 0.8)),
            support_highlight_s=float(session.get("support_highlight_s", 2.5)),
            connect_timeout_s=float(session.get("connect_timeout_s", 10.0)),
            transcript_to_narrative=bool(session.get("transcript_to_narrative", True)),
        ),
        llm=LLMSettings(
            model=str(llm.get("model", DEFAULT_LLM_MODEL)),
            concurrency_limit=int(llm.get("concurrency_limit", 1)),
        ),
        secrets=SecretsSettings(
            backend=SecretsBackend(secrets.get("backend", SecretsBackend.KEYRING.value)),
            encrypted_file_path=secrets.get("encrypted_file_path", "secrets.json"),
        ),
        logging=LoggingSettings(
            level=str(log.get("level", "INFO")),
            file_name=str(log.get("file_name", "session-assistant.log")),
            max_bytes=int(log.get("max_bytes", 1024 * 1024)),
            backup_count=int(log.get("backup_count", 1)),
        ),
    )
    settings.validate()
    return settings


def load_settings(path: Path) -> AppSettings:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("settings file must contain a JSON object")
    return from_dict(raw)


def save_settings(path: Path, settings: AppSettings) -> None:
    settings.validate()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(to_dict(settings), ensure_ascii=False, indent=2), encoding="utf-8")
