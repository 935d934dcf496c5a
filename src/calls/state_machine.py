"""Call session protocol state machine.

One machine per live connection. Frames are processed strictly one at a time in
arrival order; the connection runner owns the channel and only asks the machine
what to send back and whether to close.

Status flow::

    initiated -> connected -> started -> (media)* -> stopped | transferred
    any non-terminal status -> disconnected | errored
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from calls import codec
from calls.errors import CallError, InvalidFormatError, InvalidStateError, SessionEndedError
from calls.records import AudioChunkInfo, EventLogEntry, MediaFormatInfo, SessionRecord, SessionStatus
from calls.schemas import (
    CarrierErrorEvent,
    ErrorEnvelope,
    InboundEnvelope,
    MediaAck,
    MediaAckPayload,
    MediaEvent,
    OutboundEnvelope,
    StartAck,
    StartEvent,
    StopAck,
    StopEvent,
    TransferAck,
    TransferEvent,
)
from calls.session_store import utcnow
from integrations.audio_sink import AudioHandle, AudioSink

LOGGER = logging.getLogger(__name__)

CONTROL_ACK_OFFSET = 1
# Media acks live in their own numbering band; carriers rely on this offset.
MEDIA_ACK_OFFSET = 1000

_STARTABLE = frozenset({SessionStatus.INITIATED, SessionStatus.CONNECTED})


class CallSessionMachine:
    def __init__(
        self,
        record: SessionRecord,
        sink: AudioSink,
        handle: AudioHandle,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.record = record
        self._sink = sink
        self._handle = handle
        self._clock = clock
        self._stream_started_at: datetime | None = None
        self.close_requested = False

    @property
    def status(self) -> SessionStatus:
        return self.record.status

    def on_connected(self) -> None:
        self.record.connect_time = self._clock()
        if self.record.status is SessionStatus.INITIATED:
            self.record.status = SessionStatus.CONNECTED
        LOGGER.info("Session %s connected", self.record.session_id)

    async def handle_frame(self, raw: str | bytes) -> list[OutboundEnvelope]:
        """Process one inbound frame and return the envelopes to send back."""

        try:
            message = codec.parse_frame(raw)
        except InvalidFormatError as exc:
            LOGGER.warning("Malformed frame on session %s: %s", self.record.session_id, exc.detail)
            return [self._error_envelope(exc, None)]

        if self.record.is_ended:
            exc = SessionEndedError(f"Session {self.record.session_id} is {self.record.status.value}")
            return [self._error_envelope(exc, message)]

        self._append_event(message)

        try:
            envelope = codec.validate_message(message)
            reply = await self._dispatch(envelope)
        except CallError as exc:
            LOGGER.warning(
                "Rejected %s event on session %s: %s",
                message.get("event"),
                self.record.session_id,
                exc.detail,
            )
            return [self._error_envelope(exc, message)]

        return [reply] if reply is not None else []

    async def on_channel_closed(self) -> None:
        if not self.record.is_ended:
            self.record.finish(SessionStatus.DISCONNECTED, self._clock())
            LOGGER.info(
                "Session %s disconnected after %ss",
                self.record.session_id,
                self.record.duration,
            )
        await self._release_sink()

    async def fail(self, reason: str) -> None:
        if not self.record.is_ended:
            self.record.finish(SessionStatus.ERRORED, self._clock(), reason)
            LOGGER.error("Session %s errored: %s", self.record.session_id, reason)
        await self._release_sink()

    async def _dispatch(self, envelope: InboundEnvelope) -> OutboundEnvelope | None:
        if isinstance(envelope, StartEvent):
            return self._on_start(envelope)
        if isinstance(envelope, MediaEvent):
            return await self._on_media(envelope)
        if isinstance(envelope, StopEvent):
            await self._finish(SessionStatus.STOPPED, envelope.stop.reason)
            return StopAck(
                sequence_number=self._base_sequence(envelope) + CONTROL_ACK_OFFSET,
                stream_sid=self._stream_sid(envelope),
                stop=envelope.stop,
            )
        if isinstance(envelope, TransferEvent):
            await self._finish(SessionStatus.TRANSFERRED, envelope.xfer.reason)
            return TransferAck(
                sequence_number=self._base_sequence(envelope) + CONTROL_ACK_OFFSET,
                stream_sid=self._stream_sid(envelope),
                xfer=envelope.xfer,
            )
        if isinstance(envelope, CarrierErrorEvent):
            LOGGER.warning("Carrier reported an error on session %s", self.record.session_id)
            return None
        raise InvalidStateError(envelope.event, self.record.status.value)

    def _on_start(self, envelope: StartEvent) -> StartAck:
        if self.record.status not in _STARTABLE:
            raise InvalidStateError("start", self.record.status.value)

        start = envelope.start
        fmt = start.media_format
        self.record.media_format = MediaFormatInfo(
            encoding=fmt.encoding,
            sample_rate=fmt.sample_rate,
            bit_rate=fmt.bit_rate,
        )
        self.record.stream_sid = start.stream_sid
        self.record.call_sid = start.call_sid
        self.record.account_sid = start.account_sid
        self.record.custom_parameters = dict(start.custom_parameters)
        self.record.status = SessionStatus.STARTED
        self._stream_started_at = self._clock()
        LOGGER.info(
            "Audio stream started for %s (%s @ %s Hz)",
            self.record.session_id,
            fmt.encoding,
            fmt.sample_rate,
        )

        return StartAck(
            sequence_number=self._base_sequence(envelope) + CONTROL_ACK_OFFSET,
            stream_sid=self._stream_sid(envelope),
            start=start,
        )

    async def _on_media(self, envelope: MediaEvent) -> MediaAck:
        if self.record.status is not SessionStatus.STARTED:
            raise InvalidStateError("media", self.record.status.value)

        media = envelope.media
        await self._sink.write(self._handle, media.payload)
        now = self._clock()
        self.record.audio_chunks.append(
            AudioChunkInfo(chunk=media.chunk, size=len(media.payload), received_at=now)
        )
        LOGGER.debug("Received chunk #%s for call %s", media.chunk, self.record.session_id)

        return MediaAck(
            sequence_number=self._base_sequence(envelope) + MEDIA_ACK_OFFSET,
            stream_sid=self._stream_sid(envelope),
            media=MediaAckPayload(
                chunk=media.chunk,
                timestamp=self._media_timestamp(now),
                payload=media.payload,
            ),
        )

    async def _finish(self, status: SessionStatus, reason: str) -> None:
        self.record.finish(status, self._clock(), reason)
        self.close_requested = True
        LOGGER.info(
            "Session %s %s (%s) after %ss",
            self.record.session_id,
            status.value,
            reason,
            self.record.duration,
        )
        await self._release_sink()

    async def _release_sink(self) -> None:
        try:
            await self._sink.close(self._handle)
        except OSError:
            LOGGER.exception("Failed to close audio sink for session %s", self.record.session_id)

    def _append_event(self, message: dict[str, Any]) -> None:
        stream_sid = message.get("stream_sid")
        self.record.events.append(
            EventLogEntry(
                kind=str(message["event"]),
                sequence_number=codec.raw_sequence_number(message),
                stream_sid=stream_sid if isinstance(stream_sid, str) else None,
                received_at=self._clock(),
                payload=message,
            )
        )

    def _media_timestamp(self, now: datetime) -> str:
        origin = self._stream_started_at or self.record.connect_time or self.record.start_time
        return str(max(0, (now - origin) // timedelta(milliseconds=1)))

    def _stream_sid(self, envelope: InboundEnvelope) -> str | None:
        if envelope.stream_sid:
            return envelope.stream_sid
        if isinstance(envelope, StartEvent):
            return envelope.start.stream_sid
        return self.record.stream_sid

    @staticmethod
    def _base_sequence(envelope: InboundEnvelope) -> int:
        return envelope.sequence_number or 0

    def _error_envelope(self, exc: CallError, message: dict[str, Any] | None) -> ErrorEnvelope:
        sequence = codec.raw_sequence_number(message)
        stream_sid = message.get("stream_sid") if message else None
        return ErrorEnvelope(
            sequence_number=sequence + CONTROL_ACK_OFFSET if sequence is not None else 0,
            stream_sid=stream_sid if isinstance(stream_sid, str) else self.record.stream_sid,
            error=exc.detail,
        )
