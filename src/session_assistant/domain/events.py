from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ConnectionState(str, Enum):
    IDLE = "Idle"
    CONNECTING = "Connecting"
    ACTIVE = "Active"
    CLOSED = "Closed"


class IntentKind(str, Enum):
    RECORD_TRIAL = "RecordTrial"
    ADD_OBSERVATION = "AddObservation"
    UPDATE_SUPPORT_LEVEL = "UpdateSupportLevel"


class TrialStatus(str, Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"


@dataclass(frozen=True, slots=True)
class TranscriptionMessage:
    text: str
    turn_complete: bool = False


@dataclass(frozen=True, slots=True)
class IntentMessage:
    kind: str
    subject_name_hint: str
    call_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    # Provider-side function name, echoed back in the acknowledgement when set.
    name: str = ""


@dataclass(frozen=True, slots=True)
class MalformedPayload:
    reason: str
    call_id: str | None = None
    name: str = ""


LiveInboundMessage = TranscriptionMessage | IntentMessage | MalformedPayload


@dataclass(frozen=True, slots=True)
class IntentAck:
    call_id: str
    result: str = "ok"
    name: str = ""

    def to_wire(self) -> dict[str, str]:
        return {"callId": self.call_id, "result": self.result}


class LiveErrorKind(str, Enum):
    PERMISSION = "PERMISSION"
    CONNECTION = "CONNECTION"
    MALFORMED_PAYLOAD = "MALFORMED_PAYLOAD"


class LiveEventType(str, Enum):
    CONNECTION_STATE = "LIVE_CONNECTION_STATE"
    ERROR = "LIVE_ERROR"


@dataclass(frozen=True, slots=True)
class ConnectionStateEvent:
    state: ConnectionState
    type: LiveEventType = LiveEventType.CONNECTION_STATE


@dataclass(frozen=True, slots=True)
class LiveErrorEvent:
    kind: LiveErrorKind
    message: str
    recoverable: bool = True
    type: LiveEventType = LiveEventType.ERROR


LiveEvent = ConnectionStateEvent | LiveErrorEvent


class UIEventType(str, Enum):
    CONNECTION_STATE_CHANGED = "CONNECTION_STATE_CHANGED"
    TRANSCRIPT_PARTIAL = "TRANSCRIPT_PARTIAL"
    TRANSCRIPT_FINAL = "TRANSCRIPT_FINAL"
    DRAFT_UPDATED = "DRAFT_UPDATED"
    TRIAL_FEEDBACK = "TRIAL_FEEDBACK"
    SUPPORT_HIGHLIGHT = "SUPPORT_HIGHLIGHT"
    FEEDBACK_CLEARED = "FEEDBACK_CLEARED"
    INTENT_UNRESOLVED = "INTENT_UNRESOLVED"
    NOTE_DRAFTED = "NOTE_DRAFTED"
    SESSION_FINALIZED = "SESSION_FINALIZED"
    ERROR = "ERROR"


@dataclass(frozen=True, slots=True)
class UIEvent:
    type: UIEventType
    subject_id: str | None = None
    payload: object | None = None
