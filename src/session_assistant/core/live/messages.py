"""Parsing of inbound live-service messages in the JSON wire contract.

Transcription: ``{"text": str, "turnComplete": bool}``
Intent:        ``{"kind": str, "subjectNameHint": str, "payload": object, "callId": str}``

Both may also arrive wrapped as ``{"transcription": {...}}`` / ``{"intent": {...}}``.
"""

from __future__ import annotations

from typing import Any, Mapping

from session_assistant.core.live.errors import MalformedPayloadError
from session_assistant.domain.events import (
    IntentMessage,
    LiveInboundMessage,
    MalformedPayload,
    TranscriptionMessage,
)


def parse_transcription(data: Mapping[str, Any]) -> TranscriptionMessage:
    text = data.get("text")
    if not isinstance(text, str):
        raise MalformedPayloadError("transcription message requires string `text`")
    turn_complete = data.get("turnComplete", False)
    if not isinstance(turn_complete, bool):
        raise MalformedPayloadError("`turnComplete` must be a boolean")
    return TranscriptionMessage(text=text, turn_complete=turn_complete)


def parse_intent(data: Mapping[str, Any]) -> IntentMessage:
    call_id = data.get("callId")
    if not isinstance(call_id, str) or not call_id:
        raise MalformedPayloadError("intent message requires non-empty string `callId`")
    kind = data.get("kind")
    if not isinstance(kind, str) or not kind:
        raise MalformedPayloadError("intent message requires string `kind`")
    hint = data.get("subjectNameHint", "")
    if not isinstance(hint, str):
        raise MalformedPayloadError("`subjectNameHint` must be a string")
    payload = data.get("payload") or {}
    if not isinstance(payload, Mapping):
        raise MalformedPayloadError("`payload` must be an object")
    return IntentMessage(
        kind=kind,
        subject_name_hint=hint,
        call_id=call_id,
        payload=dict(payload),
    )


def parse_inbound_message(data: object) -> LiveInboundMessage:
    """Classify and parse one decoded JSON message.

    Never raises: anything unusable comes back as ``MalformedPayload`` so the
    caller can drop it without tearing the connection down. The call id is
    preserved when present so the intent can still be acknowledged.
    """
    if not isinstance(data, Mapping):
        return MalformedPayload(reason="message is not a JSON object")

    if isinstance(data.get("transcription"), Mapping):
        data = data["transcription"]
    elif isinstance(data.get("intent"), Mapping):
        data = data["intent"]

    try:
        if "callId" in data or "kind" in data:
            return parse_intent(data)
        if "text" in data:
            return parse_transcription(data)
    except MalformedPayloadError as exc:
        call_id = data.get("callId")
        return MalformedPayload(
            reason=str(exc), call_id=call_id if isinstance(call_id, str) and call_id else None
        )
    return MalformedPayload(reason="unrecognized message shape")
