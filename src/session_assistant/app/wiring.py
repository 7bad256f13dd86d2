from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from session_assistant.config.prompts import load_prompt
from session_assistant.config.settings import (
    AppSettings,
    LiveProviderName,
    LLMProviderName,
    SecretsBackend,
    SecretsSettings,
)
from session_assistant.core.audio.source import Microphone, SoundDeviceMicrophone
from session_assistant.core.clock import Clock, SystemClock
from session_assistant.core.drafts.store import DraftStore
from session_assistant.core.feedback import FeedbackBoard
from session_assistant.core.live.backend import LiveBackend
from session_assistant.core.live.controller import LiveSessionController
from session_assistant.core.llm.provider import NoteDrafter, SemaphoreNoteDrafter
from session_assistant.core.orchestrator.hub import RecordSink, SessionHub
from session_assistant.core.storage.secrets import (
    EncryptedFileSecretStore,
    KeyringSecretStore,
    SecretStore,
    mask_secret,
)
from session_assistant.core.transcript import TranscriptBuffer
from session_assistant.providers.live.gemini_live import GeminiLiveBackend
from session_assistant.providers.live.websocket_json import WebSocketJsonLiveBackend
from session_assistant.providers.llm.gemini import GeminiNoteDrafter

logger = logging.getLogger(__name__)

SECRETS_PASSPHRASE_ENV = "SESSION_ASSISTANT_SECRETS_PASSPHRASE"


def create_secret_store(
    settings: SecretsSettings,
    *,
    config_path: Path,
    passphrase: str | None = None,
) -> SecretStore:
    passphrase = passphrase or os.getenv(SECRETS_PASSPHRASE_ENV)

    if settings.backend == SecretsBackend.KEYRING:
        return KeyringSecretStore()

    if settings.backend == SecretsBackend.ENCRYPTED_FILE:
        if not passphrase:
            raise ValueError(
                "encrypted_file secrets backend requires a passphrase; "
                f"set {SECRETS_PASSPHRASE_ENV} or pass passphrase explicitly"
            )
        path = Path(settings.encrypted_file_path)
        if not path.is_absolute():
            path = config_path.parent / path
        return EncryptedFileSecretStore(path=path, passphrase=passphrase)

    raise ValueError(f"Unsupported secrets backend: {settings.backend}")


def get_secret(secrets: SecretStore, *, key: str, env_var: str) -> str | None:
    return secrets.get(key) or os.getenv(env_var) or None


def require_secret(secrets: SecretStore, *, key: str, env_var: str) -> str:
    value = get_secret(secrets, key=key, env_var=env_var)
    if value:
        logger.info(f"[Secrets] Using {key}={mask_secret(value)}")
        return value
    raise ValueError(f"Missing secret `{key}` (or env var {env_var})")


def create_live_backend(settings: AppSettings, *, secrets: SecretStore) -> LiveBackend:
    if settings.provider.live == LiveProviderName.GEMINI:
        api_key = require_secret(secrets, key="gemini_api_key", env_var="GOOGLE_API_KEY")
        return GeminiLiveBackend(
            api_key=api_key,
            model=settings.gemini_live.model,
            system_instruction=settings.gemini_live.system_instruction,
        )

    if settings.provider.live == LiveProviderName.WEBSOCKET:
        token = get_secret(
            secrets, key="live_websocket_token", env_var="SESSION_ASSISTANT_LIVE_TOKEN"
        )
        return WebSocketJsonLiveBackend(
            endpoint=settings.websocket_live.endpoint,
            token=token or "",
            system_instruction=load_prompt("live_system"),
            open_timeout_s=settings.websocket_live.open_timeout_s,
        )

    raise ValueError(f"Unsupported live provider: {settings.provider.live}")


def create_note_drafter(settings: AppSettings, *, secrets: SecretStore) -> NoteDrafter:
    if settings.provider.llm == LLMProviderName.GEMINI:
        api_key = require_secret(secrets, key="gemini_api_key", env_var="GOOGLE_API_KEY")
        base: NoteDrafter = GeminiNoteDrafter(
            api_key=api_key,
            model=settings.llm.model,
            prompt_template=load_prompt("note_draft"),
        )
    else:
        raise ValueError(f"Unsupported LLM provider: {settings.provider.llm}")

    return SemaphoreNoteDrafter(
        inner=base,
        semaphore=asyncio.Semaphore(settings.llm.concurrency_limit),
    )


def create_microphone(settings: AppSettings) -> SoundDeviceMicrophone:
    device: int | str | None = settings.audio.input_device or None
    if isinstance(device, str) and device.isdigit():
        device = int(device)
    return SoundDeviceMicrophone(
        device=device,
        blocksize=settings.audio.blocksize,
        sample_rate_hz=settings.audio.sample_rate_hz,
        channels=settings.audio.channels,
    )


def create_hub(
    settings: AppSettings,
    *,
    live_backend: LiveBackend | None,
    microphone: Microphone | None = None,
    drafter: NoteDrafter | None = None,
    record_sink: RecordSink | None = None,
    clock: Clock | None = None,
) -> SessionHub:
    clock = clock or SystemClock()
    controller = None
    if live_backend is not None:
        controller = LiveSessionController(
            backend=live_backend,
            microphone=microphone or create_microphone(settings),
            connect_timeout_s=settings.session.connect_timeout_s,
        )
    return SessionHub(
        store=DraftStore(history_depth=settings.session.history_depth),
        controller=controller,
        drafter=drafter,
        record_sink=record_sink,
        clock=clock,
        transcript=TranscriptBuffer(capacity=settings.session.transcript_capacity),
        feedback=FeedbackBoard(
            clock=clock,
            trial_window_s=settings.session.trial_feedback_s,
            support_window_s=settings.session.support_highlight_s,
        ),
        transcript_to_narrative=settings.session.transcript_to_narrative,
    )


async def verify_live_backend(backend: LiveBackend) -> bool:
    """Check the Gemini API key before a session opens; other backends pass."""
    if isinstance(backend, GeminiLiveBackend) and backend.client is None:
        return await GeminiNoteDrafter.verify_api_key(backend.api_key)
    return True
