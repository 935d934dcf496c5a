"""In-memory session record for a single call."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class SessionStatus(str, Enum):
    INITIATED = "initiated"
    CONNECTED = "connected"
    STARTED = "started"
    STOPPED = "stopped"
    TRANSFERRED = "transferred"
    DISCONNECTED = "disconnected"
    ERRORED = "errored"


@dataclass(frozen=True, slots=True)
class MediaFormatInfo:
    encoding: str
    sample_rate: int
    bit_rate: int


@dataclass(frozen=True, slots=True)
class EventLogEntry:
    kind: str
    sequence_number: int | None
    stream_sid: str | None
    received_at: datetime
    payload: dict[str, Any]


@dataclass(frozen=True, slots=True)
class AudioChunkInfo:
    chunk: int
    size: int
    received_at: datetime


@dataclass
class SessionRecord:
    """Everything known about one call.

    Raw audio is never kept here; only chunk metadata. Once ``end_time`` is set
    the record is read-only.
    """

    session_id: str
    from_number: str
    to_number: str
    start_time: datetime
    connect_time: datetime | None = None
    end_time: datetime | None = None
    status: SessionStatus = SessionStatus.INITIATED
    stream_sid: str | None = None
    call_sid: str | None = None
    account_sid: str | None = None
    custom_parameters: dict[str, Any] = field(default_factory=dict)
    media_format: MediaFormatInfo | None = None
    events: list[EventLogEntry] = field(default_factory=list)
    audio_chunks: list[AudioChunkInfo] = field(default_factory=list)
    terminal_reason: str | None = None

    @property
    def is_ended(self) -> bool:
        return self.end_time is not None

    @property
    def duration(self) -> int | None:
        if self.end_time is None:
            return None
        return math.floor((self.end_time - self.start_time).total_seconds())

    def finish(self, status: SessionStatus, at: datetime, reason: str | None = None) -> None:
        if self.is_ended:
            return
        self.status = status
        self.end_time = at
        self.terminal_reason = reason

    def to_summary(self) -> dict[str, Any]:
        media_format = None
        if self.media_format is not None:
            media_format = {
                "encoding": self.media_format.encoding,
                "sample_rate": self.media_format.sample_rate,
                "bit_rate": self.media_format.bit_rate,
            }
        return {
            "session_id": self.session_id,
            "from": self.from_number,
            "to": self.to_number,
            "status": self.status.value,
            "stream_sid": self.stream_sid,
            "call_sid": self.call_sid,
            "account_sid": self.account_sid,
            "custom_parameters": self.custom_parameters,
            "media_format": media_format,
            "start_time": self.start_time.isoformat(),
            "connect_time": self.connect_time.isoformat() if self.connect_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "terminal_reason": self.terminal_reason,
            "audio_chunks": f"{len(self.audio_chunks)} chunks",
            "audio_bytes": sum(chunk.size for chunk in self.audio_chunks),
            "events": [
                {
                    "kind": entry.kind,
                    "sequence_number": entry.sequence_number,
                    "stream_sid": entry.stream_sid,
                    "received_at": entry.received_at.isoformat(),
                    "payload": entry.payload,
                }
                for entry in self.events
            ],
        }
