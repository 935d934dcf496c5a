"""Pydantic models for the carrier wire envelopes.

Field declaration order is the wire order: outbound models are serialized with
``model_dump_json(by_alias=True)`` and must not be reordered.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt

EventKind = Literal["start", "media", "stop", "transfer", "error"]


class MediaFormat(BaseModel):
    encoding: str
    sample_rate: int
    bit_rate: int


class StartPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stream_sid: str
    call_sid: str
    account_sid: str
    from_: str = Field(alias="from")
    to: str
    custom_parameters: dict[str, Any] = Field(default_factory=dict)
    media_format: MediaFormat


class MediaPayload(BaseModel):
    chunk: int
    payload: str
    timestamp: int | str


class StopPayload(BaseModel):
    call_sid: str
    account_sid: str
    reason: str


class TransferPayload(BaseModel):
    call_sid: str
    account_sid: str
    reason: str


class InboundEnvelope(BaseModel):
    event: str
    sequence_number: NonNegativeInt | None = None
    stream_sid: str | None = None


class StartEvent(InboundEnvelope):
    event: Literal["start"]
    start: StartPayload


class MediaEvent(InboundEnvelope):
    event: Literal["media"]
    media: MediaPayload


class StopEvent(InboundEnvelope):
    event: Literal["stop"]
    stop: StopPayload


class TransferEvent(InboundEnvelope):
    event: Literal["transfer"]
    xfer: TransferPayload


class CarrierErrorEvent(InboundEnvelope):
    event: Literal["error"]


class OutboundEnvelope(BaseModel):
    event: EventKind
    sequence_number: int
    stream_sid: str | None


class StartAck(OutboundEnvelope):
    event: Literal["start"] = "start"
    start: StartPayload


class MediaAckPayload(BaseModel):
    chunk: int
    timestamp: str
    payload: str


class MediaAck(OutboundEnvelope):
    event: Literal["media"] = "media"
    media: MediaAckPayload


class StopAck(OutboundEnvelope):
    event: Literal["stop"] = "stop"
    stop: StopPayload


class TransferAck(OutboundEnvelope):
    event: Literal["transfer"] = "transfer"
    xfer: TransferPayload


class ErrorEnvelope(OutboundEnvelope):
    event: Literal["error"] = "error"
    error: str
