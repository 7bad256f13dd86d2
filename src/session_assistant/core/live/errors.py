from __future__ import annotations


class LiveSessionError(RuntimeError):
    """Base class for failures of the live assistant.

    None of these are fatal to the rest of the application; manual note entry
    keeps working when the assistant is unavailable.
    """


class MicrophonePermissionError(LiveSessionError):
    """The microphone could not be opened (denied, missing or busy)."""


class LiveConnectionError(LiveSessionError):
    """The remote service could not be reached or dropped the stream."""


class MalformedPayloadError(LiveSessionError, ValueError):
    """An inbound message is missing required fields."""
