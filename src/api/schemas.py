"""API-facing Pydantic models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class SetupResponse(BaseModel):
    websocket: str = Field(description="Connection address embedding a single-use token.")


class EventLogEntryResponse(BaseModel):
    kind: str
    sequence_number: int | None
    stream_sid: str | None
    received_at: str
    payload: dict[str, Any]


class SessionSummaryResponse(BaseModel):
    session_id: str
    from_number: str = Field(alias="from")
    to: str
    status: str
    stream_sid: str | None
    call_sid: str | None
    account_sid: str | None
    custom_parameters: dict[str, Any]
    media_format: dict[str, Any] | None
    start_time: str
    connect_time: str | None
    end_time: str | None
    duration: int | None
    terminal_reason: str | None
    audio_chunks: str
    audio_bytes: int
    events: list[EventLogEntryResponse]


class HangupResponse(BaseModel):
    session_id: str
    closed: bool = True


class HealthResponse(BaseModel):
    status: str = "ok"
    live_connections: int
    sessions: int
