"""Parsing and serialization of carrier protocol frames.

Decoding is a pure function of the raw frame; nothing here touches session state.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import NonNegativeInt, TypeAdapter, ValidationError

from calls.errors import InvalidFormatError, MissingFieldsError, UnknownEventError
from calls.schemas import (
    CarrierErrorEvent,
    InboundEnvelope,
    MediaEvent,
    OutboundEnvelope,
    StartEvent,
    StopEvent,
    TransferEvent,
)

LOGGER = logging.getLogger(__name__)

# Same coercion the envelope models apply, so acks and error envelopes agree.
_SEQUENCE_NUMBER = TypeAdapter(NonNegativeInt)

EVENT_MODELS: dict[str, type[InboundEnvelope]] = {
    "start": StartEvent,
    "media": MediaEvent,
    "stop": StopEvent,
    "transfer": TransferEvent,
    "error": CarrierErrorEvent,
}


def parse_frame(raw: str | bytes) -> dict[str, Any]:
    """Parse a transport frame into a JSON object carrying an ``event`` string."""

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidFormatError("Frame is not valid UTF-8") from exc
    try:
        message = json.loads(raw)
    except (ValueError, RecursionError) as exc:
        raise InvalidFormatError(f"Invalid JSON: {exc}") from exc

    if not isinstance(message, dict):
        raise InvalidFormatError("Frame must be a JSON object")
    if not isinstance(message.get("event"), str) or not message["event"]:
        raise InvalidFormatError("Frame is missing the event field")
    return message


def _field_path(loc: tuple[Any, ...]) -> str:
    return ".".join(str(part) for part in loc)


def validate_message(message: dict[str, Any]) -> InboundEnvelope:
    """Validate a parsed frame against the schema for its event kind."""

    kind = message.get("event")
    model = EVENT_MODELS.get(kind) if isinstance(kind, str) else None
    if model is None:
        raise UnknownEventError(str(kind))

    try:
        return model.model_validate(message)
    except ValidationError as exc:
        errors = exc.errors()
        missing = [_field_path(err["loc"]) for err in errors if err["type"] == "missing"]
        if missing:
            raise MissingFieldsError(kind, missing) from exc
        invalid = ", ".join(_field_path(err["loc"]) for err in errors)
        raise InvalidFormatError(f"Invalid fields for {kind}: {invalid}") from exc


def decode(raw: str | bytes) -> InboundEnvelope:
    return validate_message(parse_frame(raw))


def encode(envelope: OutboundEnvelope) -> str:
    return envelope.model_dump_json(by_alias=True)


def raw_sequence_number(message: dict[str, Any] | None) -> int | None:
    """Best-effort sequence number of a frame that may have failed validation."""

    if not message:
        return None
    value = message.get("sequence_number")
    if value is None:
        return None
    try:
        return _SEQUENCE_NUMBER.validate_python(value)
    except ValidationError:
        return None
