"""Domain-specific exceptions for call sessions.

These exceptions are safe to import from API layers and carry everything the
HTTP and WebSocket surfaces need to report them.
"""

from __future__ import annotations

from collections.abc import Sequence


class CallError(Exception):
    status_code: int = 500
    close_code: int = 1011
    default_detail: str = "Call session error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class MissingParametersError(CallError):
    status_code = 400
    close_code = 4000
    default_detail = "Missing required parameters"


class InvalidTokenError(CallError):
    close_code = 4001
    default_detail = "Invalid or expired admission token"


class AlreadyBoundError(CallError):
    close_code = 4009
    default_detail = "Session already has a live connection"


class SessionEndedError(CallError):
    status_code = 409
    close_code = 4010
    default_detail = "Session has already ended"


class UnknownSessionError(CallError):
    status_code = 404
    default_detail = "Unknown session"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Unknown session: {session_id}")
        self.session_id = session_id


class DecodeError(CallError):
    default_detail = "Could not decode message"


class InvalidFormatError(DecodeError):
    default_detail = "Invalid message format"


class MissingFieldsError(DecodeError):
    def __init__(self, kind: str, fields: Sequence[str]) -> None:
        super().__init__(f"Missing required fields for {kind}: {', '.join(fields)}")
        self.kind = kind
        self.fields = list(fields)


class UnknownEventError(DecodeError):
    def __init__(self, kind: str) -> None:
        super().__init__(f"Unknown event: {kind}")
        self.kind = kind


class InvalidStateError(CallError):
    def __init__(self, kind: str, status: str) -> None:
        super().__init__(f"Event {kind} is not allowed in state {status}")
        self.kind = kind
        self.status = status


class SinkWriteError(CallError):
    default_detail = "Audio sink write failed"
